from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from loguru import logger


class ProjectPathBroadcaster:
    """A lightweight, synchronous fan-out of active-project changes to cooperating components."""

    def __init__(self):
        self._components: Dict[str, Any] = {}

    def register(self, name: str, component: Any) -> None:
        """Register a component; only those exposing set_project_path are ever called."""
        self._components[name] = component

    def unregister(self, name: str) -> None:
        self._components.pop(name, None)

    @property
    def names(self) -> list[str]:
        return list(self._components)

    def broadcast(self, path: Path | str) -> Dict[str, Exception | None]:
        """
        Call set_project_path(path) on every capable component.

        Returns name -> exception (or None on success). One component
        failing never stops the rest from being notified.
        """
        outcomes: Dict[str, Exception | None] = {}
        for name, component in list(self._components.items()):
            setter = getattr(component, "set_project_path", None)
            if not callable(setter):
                continue
            try:
                setter(path)
                outcomes[name] = None
            except Exception as e:
                logger.error(f"[FANOUT] {name} rejected project path {path}: {e}")
                outcomes[name] = e
        return outcomes
