"""Relaydesk stream worker."""
