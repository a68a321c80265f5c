"""Festival chat backend."""
