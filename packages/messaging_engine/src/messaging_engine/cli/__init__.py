"""Relay admin command line (entry point: relay)."""
