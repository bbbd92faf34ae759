"""
Integrations module for connecting user accounts at third-party providers.

Architecture:
- app/models/integration.py: Provider catalog, per-user links, stored credentials
- app/models/list_item.py: Lists, categories and items that syncs write into
- config.py: Typed per-provider configuration
- state_token.py: OAuth state tokens binding a callback to its user
- callbacks.py: Parsing raw callback payloads into typed variants
- credentials.py: Credential storage (Fernet-encrypted at rest)
- persistence.py: Link state, watermarks and item upserts
- sync_engine.py: Stream-driven sync runs with per-link serialization
- base.py: ProviderAdapter, the shared connect/callback/sync/status/disconnect flow
- providers/: One adapter per provider, registered in PROVIDER_REGISTRY
- service.py: Dispatch by provider name plus combined views
- router.py: FastAPI endpoints
- tasks.py: Celery background syncs

Design Principles:
- Credentials never leave the credential store
- Every sync resumes from a forward-only watermark
- Items are upserted by (list, provider, external id)
- Adding a provider means writing an adapter and registering it
"""

from app.models.integration import Integration, IntegrationProvider, LinkStatus, UserIntegration

__all__ = [
    "Integration",
    "IntegrationProvider",
    "LinkStatus",
    "UserIntegration",
]
