"""Embedded transactional key-value store."""
