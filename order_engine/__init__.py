"""Order engine - asynchronous DEX order execution with live status streaming."""

__version__ = "0.1.0"
