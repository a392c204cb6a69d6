"""Command-line interface for shipyard."""
