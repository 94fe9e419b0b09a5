"""Command-line interface for fieldgate."""
