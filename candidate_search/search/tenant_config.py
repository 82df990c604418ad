"""Per-tenant scoring configuration.

Values live as key/value rows in ``client_config (client_id, config_key,
config_value)``. Resolution layers the tenant's rows over the ``GLOBAL``
rows over built-in defaults; invalid values are logged and replaced by the
default for that field, so a bad row never breaks search.

The resolved ``ScoringConfig`` is passed into the orchestrator per request.
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import asyncpg
import structlog

from candidate_search.vector_store.base import (
    StorageTimeoutError,
    VectorStoreConnectionError,
    VectorStoreQueryError,
)

from .errors import InvalidConfigError
from .scoring import DEFAULT_STRATEGY, canonical_strategy_name, is_known_strategy

logger = structlog.get_logger("search.tenant_config")

GLOBAL_TENANT = "GLOBAL"

STRATEGY_KEY = "search.scoring_strategy"
SEMANTIC_WEIGHT_KEY = "search.semantic_weight"
KEYWORD_WEIGHT_KEY = "search.keyword_weight"
SIMILARITY_THRESHOLD_KEY = "search.similarity_threshold"

_FIELD_BY_KEY = {
    STRATEGY_KEY: "strategy_name",
    SEMANTIC_WEIGHT_KEY: "semantic_weight",
    KEYWORD_WEIGHT_KEY: "keyword_weight",
    SIMILARITY_THRESHOLD_KEY: "similarity_threshold",
}


@dataclass(frozen=True)
class ScoringConfig:
    """Resolved scoring settings for one tenant."""
    strategy_name: str = DEFAULT_STRATEGY
    semantic_weight: float = 0.6
    keyword_weight: float = 0.4
    similarity_threshold: float = 0.3

    def validate(self) -> None:
        """Raise ``InvalidConfigError`` when a value is out of range."""
        if not is_known_strategy(self.strategy_name):
            raise InvalidConfigError(f"Unknown scoring strategy: {self.strategy_name}")
        for name in ("semantic_weight", "keyword_weight", "similarity_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidConfigError(f"{name} must be between 0 and 1, got {value}")

    def to_rows(self) -> Dict[str, str]:
        return {
            STRATEGY_KEY: self.strategy_name,
            SEMANTIC_WEIGHT_KEY: repr(float(self.semantic_weight)),
            KEYWORD_WEIGHT_KEY: repr(float(self.keyword_weight)),
            SIMILARITY_THRESHOLD_KEY: repr(float(self.similarity_threshold)),
        }

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _normalize_key(key: str) -> Optional[str]:
    key = key.strip().lower()
    if not key.startswith("search."):
        key = f"search.{key}"
    return key if key in _FIELD_BY_KEY else None


def _parse_value(field_name: str, raw: str):
    if field_name == "strategy_name":
        if not is_known_strategy(raw):
            raise InvalidConfigError(f"Unknown scoring strategy '{raw}'")
        return canonical_strategy_name(raw)

    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise InvalidConfigError(f"{field_name}='{raw}' is not a number") from e
    if not 0.0 <= value <= 1.0:
        raise InvalidConfigError(f"{field_name}={value} is outside [0, 1]")
    return value


def parse_scoring_rows(rows: Mapping[str, str], tenant_id: str, base: Optional[ScoringConfig] = None) -> ScoringConfig:
    """Overlay key/value rows onto ``base`` (defaults when omitted).

    Accepts both ``search.``-prefixed and bare keys; unrelated keys are
    ignored and invalid values keep the base value.
    """
    values = asdict(base or ScoringConfig())
    for key, raw in rows.items():
        normalized = _normalize_key(key)
        if normalized is None:
            continue
        field_name = _FIELD_BY_KEY[normalized]
        try:
            values[field_name] = _parse_value(field_name, raw)
        except InvalidConfigError as e:
            logger.warning(
                "Invalid scoring config value; keeping default",
                tenant_id=tenant_id,
                config_key=key,
                config_value=raw,
                error=str(e)
            )
    return ScoringConfig(**values)


class ScoringConfigStore(ABC):
    """Storage for raw ``client_config`` rows."""

    @abstractmethod
    async def get_rows(self, tenant_id: str) -> Dict[str, str]:
        """Return ``config_key -> config_value`` for a tenant."""

    @abstractmethod
    async def upsert_rows(self, tenant_id: str, rows: Mapping[str, str]) -> None:
        """Insert or update rows for a tenant."""

    async def close(self) -> None:
        """Release resources."""


class InMemoryScoringConfigStore(ScoringConfigStore):
    """Dictionary-backed store for tests and local runs."""

    def __init__(self, rows: Optional[Dict[str, Dict[str, str]]] = None):
        self.rows: Dict[str, Dict[str, str]] = {
            tenant: dict(values) for tenant, values in (rows or {}).items()
        }

    async def get_rows(self, tenant_id: str) -> Dict[str, str]:
        return dict(self.rows.get(tenant_id, {}))

    async def upsert_rows(self, tenant_id: str, rows: Mapping[str, str]) -> None:
        self.rows.setdefault(tenant_id, {}).update(rows)


class PgScoringConfigStore(ScoringConfigStore):
    """Reads and writes ``client_config`` through a small asyncpg pool."""

    def __init__(self, dsn: str, command_timeout: float = 30.0, pool_size: int = 2):
        self.dsn = dsn
        self.command_timeout = command_timeout
        self.pool_size = pool_size
        self._pool: Optional[asyncpg.Pool] = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                )
            except (OSError, asyncpg.PostgresError) as e:
                logger.error("Failed to create client config connection pool", error=str(e))
                raise VectorStoreConnectionError(f"Failed to create connection pool: {e}") from e
            logger.info("Created client config connection pool", pool_size=self.pool_size)
        return self._pool

    async def _run(self, operation: Callable[[asyncpg.Connection], Awaitable[Any]]) -> Any:
        """Run ``operation`` on a pooled connection with the storage error mapping."""
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await asyncio.wait_for(operation(conn), timeout=self.command_timeout)
        except (asyncio.TimeoutError, asyncpg.QueryCanceledError) as e:
            logger.error("Client config query timed out", timeout=self.command_timeout)
            raise StorageTimeoutError(f"Client config query exceeded {self.command_timeout}s") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Client config query failed", error=str(e))
            raise VectorStoreQueryError(f"Client config query failed: {e}") from e

    async def get_rows(self, tenant_id: str) -> Dict[str, str]:
        records = await self._run(lambda conn: conn.fetch(
            "SELECT config_key, config_value FROM client_config WHERE client_id = $1",
            tenant_id
        ))
        return {record["config_key"]: record["config_value"] for record in records}

    async def upsert_rows(self, tenant_id: str, rows: Mapping[str, str]) -> None:
        async def upsert(conn: asyncpg.Connection) -> None:
            async with conn.transaction():
                await conn.executemany(
                    """
                    INSERT INTO client_config (client_id, config_key, config_value, config_type)
                    VALUES ($1, $2, $3, 'string')
                    ON CONFLICT (client_id, config_key)
                    DO UPDATE SET config_value = EXCLUDED.config_value,
                                  updated_at = CURRENT_TIMESTAMP
                    """,
                    [(tenant_id, key, value) for key, value in rows.items()]
                )

        await self._run(upsert)

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None


class TenantConfigResolver:
    """Resolves and updates per-tenant ``ScoringConfig`` values."""

    def __init__(self, store: ScoringConfigStore, global_tenant: str = GLOBAL_TENANT):
        self.store = store
        self.global_tenant = global_tenant

    async def resolve(self, tenant_id: Optional[str] = None) -> ScoringConfig:
        """Defaults, then ``GLOBAL`` rows, then the tenant's own rows."""
        tenant_id = tenant_id or self.global_tenant
        config = parse_scoring_rows(await self.store.get_rows(self.global_tenant), self.global_tenant)
        if tenant_id != self.global_tenant:
            config = parse_scoring_rows(await self.store.get_rows(tenant_id), tenant_id, base=config)

        logger.debug("Resolved scoring config", tenant_id=tenant_id, **config.to_dict())
        return config

    async def update(self, tenant_id: str, config: ScoringConfig) -> ScoringConfig:
        """Validate and persist a tenant's scoring configuration."""
        config.validate()
        canonical = ScoringConfig(
            strategy_name=canonical_strategy_name(config.strategy_name),
            semantic_weight=config.semantic_weight,
            keyword_weight=config.keyword_weight,
            similarity_threshold=config.similarity_threshold,
        )
        await self.store.upsert_rows(tenant_id, canonical.to_rows())
        logger.info("Updated scoring config", tenant_id=tenant_id, **canonical.to_dict())
        return await self.resolve(tenant_id)
