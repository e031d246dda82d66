"""Command-line interface for Protean."""
