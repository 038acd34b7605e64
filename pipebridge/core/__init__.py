"""Relay core: descriptor parsing, connection management, session lifecycle."""
