"""TCP chat server and console client with group chat, private chat and image transfer."""

__version__ = "2.1.0"

__all__ = ["__version__"]