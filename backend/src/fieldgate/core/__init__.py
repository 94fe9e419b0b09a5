"""Semantic field types."""
