"""Minecraft-aware TCP relay with access lists, TLS SNI routing and SOCKS outbound."""

__version__ = "3.0rc5"