from __future__ import annotations

import os
from collections.abc import Callable

from relgraph.core.config import Settings, get_settings
from relgraph.core.errors import ValidationError
from relgraph.db.pg.models import Connection
from relgraph.integrations.fireflies_client import FirefliesClient
from relgraph.integrations.gmail_client import GmailClient
from relgraph.services.sync.types import ProviderClient

SUPPORTED_PROVIDERS = ("fireflies", "gmail")


def resolve_credentials(credentials_ref: str) -> str:
    """``env:NAME`` reads an environment variable; anything else is the credential itself."""
    ref = (credentials_ref or "").strip()
    if ref.startswith("env:"):
        name = ref[4:].strip()
        value = os.getenv(name, "").strip()
        if not value:
            raise ValidationError("Credential environment variable is not set", details={"variable": name})
        return value
    if not ref:
        raise ValidationError("credentials_ref is required")
    return ref


def _fireflies(secret: str, settings: Settings) -> ProviderClient:
    return FirefliesClient(secret, base_url=settings.fireflies_api_url, timeout=settings.provider_timeout_seconds)


def _gmail(secret: str, settings: Settings) -> ProviderClient:
    return GmailClient(secret, base_url=settings.gmail_api_url, timeout=settings.provider_timeout_seconds)


PROVIDER_FACTORIES: dict[str, Callable[[str, Settings], ProviderClient]] = {
    "fireflies": _fireflies,
    "gmail": _gmail,
}


def build_provider_client(provider: str, credentials_ref: str) -> ProviderClient:
    factory = PROVIDER_FACTORIES.get(provider)
    if factory is None:
        raise ValidationError(f"Unsupported provider: {provider}", details={"supported": list(SUPPORTED_PROVIDERS)})
    return factory(resolve_credentials(credentials_ref), get_settings())


def client_for_connection(connection: Connection) -> ProviderClient:
    return build_provider_client(connection.provider, connection.credentials_ref)
