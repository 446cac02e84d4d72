"""Internal helpers shared across templar engines. Not public API."""
