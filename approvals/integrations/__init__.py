"""approvals.integrations — adapters for collaborators outside the engine.

All outbound HTTP calls to other ERP services must go through an adapter
in this package, never via bare `requests` calls in services or blueprints.

Current adapters:
  directory.HttpDirectory / StaticDirectory — user → designation / manager lookups
"""

from flask import current_app

from approvals.integrations.directory import DirectoryAdapter


def init_directory(app, directory: DirectoryAdapter | None = None) -> None:
    """Attach the directory adapter to the app (explicit instance wins over config)."""
    from approvals.integrations.directory import build_directory

    app.extensions["directory"] = directory if directory is not None else build_directory(app.config)


def get_directory() -> DirectoryAdapter:
    """Return the directory adapter of the current app."""
    return current_app.extensions["directory"]
