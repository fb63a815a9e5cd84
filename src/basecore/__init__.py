"""
Shared infrastructure for the bridge services: settings, logging, DB, Redis.
"""
