"""Utility helpers for Captain."""
