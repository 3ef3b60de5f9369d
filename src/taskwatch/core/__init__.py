"""Ports, transport routing and shared application state."""
