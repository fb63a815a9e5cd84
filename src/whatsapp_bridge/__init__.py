"""
WhatsApp Bridge

Multi-tenant bridge between upstream WhatsApp backends (Evolution API QR
sessions and the Meta Cloud API) and tenant-configured webhooks.

Modules:
- contracts: Event envelope, webhook payloads, enums
- providers: Upstream adapters (Evolution, Meta Cloud, stub)
- persistence: Bindings, webhook endpoints and messages
- routing: Tenant settings cache, callback routing, conversations
- monitor: Connection state polling and edge detection
- dispatch: Per-tenant webhook delivery
- streams: Failed-delivery stream
- service: Message store, handlers and runtime
- api: FastAPI surface
- worker: Standalone monitor/dispatch process
- cli: Administration commands
"""

__version__ = "1.0.0"
