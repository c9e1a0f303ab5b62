"""Shared helpers for the tap-attend kiosk."""
