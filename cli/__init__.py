"""Command-line client for the river monitor service.

The Typer application is ``cli.app.app``; it is not re-exported here so that
``cli.app`` keeps resolving to the module, which tests patch attributes on.
"""

__all__: list[str] = []
