"""Feedback intake service."""
