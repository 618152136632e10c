"""KOSync-compatible HTTP API."""
