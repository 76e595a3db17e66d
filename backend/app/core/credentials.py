"""Device credential resolution for the GPS ingest endpoint.

Resolvers are tried in a fixed order: the static table from configuration
first, then the ``device_api_keys`` table. Production deployments normally
configure just one of them.
"""

import abc
import hashlib
import hmac
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import StorageError
from app.models.tables import DeviceApiKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DevicePrincipal:
    label: str
    source: str


def hash_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


class CredentialResolver(abc.ABC):
    @abc.abstractmethod
    async def resolve(self, key: str) -> DevicePrincipal | None:
        """Return the principal for ``key`` or None when it is not recognised."""


class StaticCredentialResolver(CredentialResolver):
    """Shared secrets from configuration, mapped to a label."""

    def __init__(self, secrets: dict[str, str]) -> None:
        self._secrets = {s: label for s, label in secrets.items() if s}

    async def resolve(self, key: str) -> DevicePrincipal | None:
        match = None
        # No early exit: every entry is compared.
        for secret, label in self._secrets.items():
            if hmac.compare_digest(secret.encode(), key.encode()):
                match = label
        return DevicePrincipal(label=match, source="static") if match else None


class DatabaseCredentialResolver(CredentialResolver):
    """Hashed device keys stored in the relational store."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def resolve(self, key: str) -> DevicePrincipal | None:
        try:
            async with self.session_factory() as session:
                row = (await session.execute(
                    select(DeviceApiKey).where(
                        DeviceApiKey.key_hash == hash_key(key),
                        DeviceApiKey.is_active.is_(True),
                    )
                )).scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Credential lookup failed: %s", e)
            raise StorageError("Credential directory unavailable") from e
        return DevicePrincipal(label=row.label, source="database") if row else None


class ChainedCredentialResolver(CredentialResolver):
    def __init__(self, resolvers: list[CredentialResolver]) -> None:
        self.resolvers = resolvers

    async def resolve(self, key: str) -> DevicePrincipal | None:
        for resolver in self.resolvers:
            principal = await resolver.resolve(key)
            if principal is not None:
                return principal
        return None


def create_resolver(source: str, api_key_secret: str, session_factory=None) -> CredentialResolver:
    static = StaticCredentialResolver({api_key_secret: "device"})
    if source == "static":
        return static
    if session_factory is None:
        raise ValueError(f"Credential source {source!r} needs a database")
    database = DatabaseCredentialResolver(session_factory)
    if source == "database":
        return database
    if source == "chained":
        return ChainedCredentialResolver([static, database])
    raise ValueError(f"Unknown credential source: {source}")
