"""Read-only HTTP gateway over the AMP JSON Lines query protocol."""

__version__ = "0.1.0"
