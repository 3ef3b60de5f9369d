"""Entrypoint, composition root and chat commands."""
