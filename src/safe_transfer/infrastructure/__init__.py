"""Infrastructure adapters — persistence, Redis, in-memory doubles."""
