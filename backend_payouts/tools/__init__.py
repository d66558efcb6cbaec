"""Command-line tools: snapshot backfill and warm-cache sync."""
