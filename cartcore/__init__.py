"""Cart core: cart state persistence, locking and event publishing."""

__version__ = "1.0.0"
