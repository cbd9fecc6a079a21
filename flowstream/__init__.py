"""Backpressure-aware channels, lazy streams and asynchronous buffered writers."""

__version__ = "0.1.0"
__all__ = ["channel", "sources", "operations", "stream", "writer"]