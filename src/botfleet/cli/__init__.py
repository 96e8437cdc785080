"""botfleet command-line interface (``botfleet ...``)."""

from botfleet.cli.app import app

__all__ = ["app"]
