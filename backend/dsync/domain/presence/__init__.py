"""Presence registry and live fan-out."""
