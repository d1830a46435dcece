"""querydesk command line interface."""

from querydesk.cli.main import main

__all__ = ["main"]
