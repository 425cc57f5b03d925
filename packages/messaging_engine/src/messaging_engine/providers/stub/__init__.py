"""Stub provider for development and tests."""

from messaging_engine.providers.stub.client import StubProvider

__all__ = ["StubProvider"]
