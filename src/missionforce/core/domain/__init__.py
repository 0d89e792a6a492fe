"""Domain models, events and parsing helpers."""
