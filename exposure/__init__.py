"""Open exposure analytics for insurance claim inventories."""

__version__ = "0.1.0"
