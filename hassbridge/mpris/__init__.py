"""MPRIS front for the bridged media_player."""

from .bridge import MPRISBridge
from .player import MediaPlayer2Interface, PlayerInterface

__all__ = ["MPRISBridge", "MediaPlayer2Interface", "PlayerInterface"]
