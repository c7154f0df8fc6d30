from reposync.fanout import ProjectPathBroadcaster


class Recorder:
    def __init__(self):
        self.paths = []

    def set_project_path(self, path):
        self.paths.append(path)


def test_broadcast_reaches_every_capable_component():
    broadcaster = ProjectPathBroadcaster()
    first, second = Recorder(), Recorder()

    broadcaster.register("sync", first)
    broadcaster.register("indexer", second)
    broadcaster.register("dashboard", object())

    outcomes = broadcaster.broadcast("/srv/site")

    assert first.paths == ["/srv/site"]
    assert second.paths == ["/srv/site"]
    assert outcomes == {"sync": None, "indexer": None}
    assert broadcaster.names == ["sync", "indexer", "dashboard"]


def test_one_failing_component_does_not_block_the_rest():
    class Broken:
        def set_project_path(self, path):
            raise ValueError("no such project")

    broadcaster = ProjectPathBroadcaster()
    healthy = Recorder()
    broadcaster.register("broken", Broken())
    broadcaster.register("healthy", healthy)

    outcomes = broadcaster.broadcast("/srv/site")

    assert isinstance(outcomes["broken"], ValueError)
    assert outcomes["healthy"] is None
    assert healthy.paths == ["/srv/site"]


def test_unregister():
    broadcaster = ProjectPathBroadcaster()
    recorder = Recorder()
    broadcaster.register("sync", recorder)
    broadcaster.unregister("sync")
    broadcaster.unregister("never-registered")

    assert broadcaster.broadcast("/srv/site") == {}
    assert recorder.paths == []
