"""HQ Rentals partner webhook receiver for the rental site."""

__version__ = "0.1.0"
