"""Process-wide concurrency primitives and ambient concerns."""
