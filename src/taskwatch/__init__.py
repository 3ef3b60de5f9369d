"""Team task tracker bot."""
