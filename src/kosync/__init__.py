"""kosync: reading progress and annotation sync server for KOReader devices."""

__version__ = "0.1.0"
