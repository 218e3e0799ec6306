"""Slipstream keeps a background worker warm and binds terminals to sessions."""

__version__ = "0.1.0"

__all__ = ["__version__"]
