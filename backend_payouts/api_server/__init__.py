"""Read-only HTTP API over period aggregates and warm-cache rows."""
