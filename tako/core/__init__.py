"""Tako core engines."""
