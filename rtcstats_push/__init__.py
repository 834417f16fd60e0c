"""Relay that pushes Jicofo conference stats to an rtcstats server."""

__version__ = "0.1.0"
