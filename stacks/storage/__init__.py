"""Release artifact storage."""
