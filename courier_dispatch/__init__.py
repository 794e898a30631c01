"""Courier dispatch: availability, order matching and delivery lifecycle."""

__version__ = "1.0.0"
