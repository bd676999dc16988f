"""Markdown section editing and core-file records."""
