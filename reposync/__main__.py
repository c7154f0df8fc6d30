from reposync.cli import app

app()
