"""Standalone worker: connection monitor and webhook dispatch."""
