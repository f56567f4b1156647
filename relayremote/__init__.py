"""Relay remote: control local media playback from a paired remote via a relay."""

__version__ = "0.3.0"
