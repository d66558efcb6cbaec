"""Core shared pieces: exceptions."""
