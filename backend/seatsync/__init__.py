"""Seat-based subscription billing for organizations on LemonSqueezy."""

__version__ = "0.1.0"
