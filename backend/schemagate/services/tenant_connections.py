"""Resolve tenant ids to RPC clients bound to the tenant database."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from schemagate.config import get_settings
from schemagate.drift.errors import ConfigurationError, ValidationError
from schemagate.drift.tenant_rpc import SqlAlchemyTenantRpc, TenantSchemaRpc


class TenantRpcResolver(Protocol):
    """Protocol for turning a tenant id into a fresh RPC client."""

    def resolve(self, tenant_id: str) -> TenantSchemaRpc:
        """Return a client the caller must close."""


def validate_tenant_id(tenant_id: str | None) -> str:
    """Return the canonical lower-case UUID or raise ``invalid_tenant_id``."""

    try:
        return str(uuid.UUID(str(tenant_id or "").strip()))
    except ValueError as exc:
        raise ValidationError("invalid_tenant_id") from exc


@dataclass(slots=True)
class TenantConnectionResolver:
    """Look tenant database URLs up in ``TENANT_DATABASE_URLS``."""

    database_urls: Mapping[str, str] = field(default_factory=dict)
    connect_timeout_seconds: int = 10

    @classmethod
    def from_settings(cls) -> TenantConnectionResolver:
        settings = get_settings()
        return cls(
            database_urls={str(key).lower(): value for key, value in settings.tenant_database_urls.items()},
            connect_timeout_seconds=settings.tenant_connect_timeout_seconds,
        )

    def resolve(self, tenant_id: str) -> TenantSchemaRpc:
        url = self.database_urls.get(tenant_id.lower())
        if not url:
            raise ConfigurationError("missing_connection_settings")
        return SqlAlchemyTenantRpc.from_url(url, connect_timeout_seconds=self.connect_timeout_seconds)
