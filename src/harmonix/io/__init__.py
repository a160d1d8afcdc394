"""Notation encoding and export."""
