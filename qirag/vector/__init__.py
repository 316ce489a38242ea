"""Passage storage and embedding."""
