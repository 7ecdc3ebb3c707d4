"""Bridge a Home Assistant media_player to the MPRIS D-Bus interface."""

__version__ = "0.3.0"
