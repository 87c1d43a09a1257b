"""Whale Observer - Real-time large-swap alerts for a single on-chain pool."""

__version__ = "0.1.0"
