"""Service layer: source readers and migration jobs."""
