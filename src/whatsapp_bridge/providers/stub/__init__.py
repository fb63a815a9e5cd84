"""Stub adapter for development and tests."""

from whatsapp_bridge.providers.stub.client import StubAdapter

__all__ = ["StubAdapter"]
