"""Infrastructure package - Persistence and the storage boundary."""
