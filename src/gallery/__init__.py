"""Paywalled gallery: payment lifecycle and content-unlock core."""

__version__ = "0.1.0"
