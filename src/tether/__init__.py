"""Tether: drive ACP agents behind a WebSocket bridge from Python."""

__version__ = "0.1.0"
