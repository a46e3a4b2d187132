"""Live FPL match and player data sync."""

__version__ = "0.1.0"
