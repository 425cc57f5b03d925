"""
Relaydesk shared infrastructure.

Settings, logging, database sessions, Redis client and token handling used by
every Relaydesk service.
"""
