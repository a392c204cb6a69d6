"""Shared library code for shipyard (errors, logging)."""
