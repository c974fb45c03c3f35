"""Notification transports for accessgate."""
