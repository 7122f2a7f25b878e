"""Access to the datastore through its privileged ``exec_sql`` procedure.

Two backends speak to the same procedure:
    - RpcDatastore: PostgREST ``POST /rest/v1/rpc/<function>`` with the service key
    - SqlDatastore: ``SELECT <function>(:query)`` over an async SQLAlchemy engine

The process keeps one datastore handle, built on first use by ``get_datastore``.
"""

import json
import logging
import threading
from typing import Any, Dict, List, Optional, Protocol

import httpx
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)


class DatastoreError(Exception):
    """The remote procedure rejected the query or could not be reached."""


class DatastoreConfigError(DatastoreError):
    """Connection settings for the datastore are missing."""


class Datastore(Protocol):
    async def execute(self, query: str) -> Any: ...

    async def aclose(self) -> None: ...


def normalize_rows(payload: Any) -> List[Dict[str, Any]]:
    """
    Turn whatever the procedure returned into a list of row dicts.

    Handles:
        - [...]                 direct array
        - {"result": [...]}     wrapped result
        - {"json_agg": [...]}   aggregate wrapper
        - [{"json_agg": [...]}] aggregate wrapper inside a one-row array
        - null                  no rows
    """
    if payload is None:
        return []
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            return [{"value": payload}]
        return normalize_rows(payload)

    if isinstance(payload, dict):
        if "result" in payload:
            return normalize_rows(payload["result"])
        if "json_agg" in payload:
            return normalize_rows(payload["json_agg"])
        return [payload]

    if isinstance(payload, list):
        if len(payload) == 1 and isinstance(payload[0], dict):
            only = payload[0]
            if set(only) == {"json_agg"}:
                return normalize_rows(only["json_agg"])
            if set(only) == {"exec_sql"}:
                return normalize_rows(only["exec_sql"])
        return [row if isinstance(row, dict) else {"value": row} for row in payload]

    return [{"value": payload}]


class RpcDatastore:
    def __init__(
        self,
        base_url: Optional[str],
        service_key: Optional[str],
        function: str = "exec_sql",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.service_key = service_key
        self.function = function
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if not self.base_url or not self.service_key:
            raise DatastoreConfigError(
                "SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY not configured"
            )
        # Two concurrent first calls may both build a client; the extra one is harmless
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "apikey": self.service_key,
                    "Authorization": f"Bearer {self.service_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def execute(self, query: str) -> Any:
        client = self._get_client()
        try:
            response = await client.post(
                f"/rest/v1/rpc/{self.function}", json={"query": query}
            )
        except httpx.HTTPError as e:
            raise DatastoreError(f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise DatastoreError(f"{response.status_code} {response.text}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DatastoreError(f"Unreadable response from {self.function}: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class SqlDatastore:
    def __init__(self, database_url: Optional[str], function: str = "exec_sql"):
        self.database_url = database_url
        self.function = function
        self._engine: Optional[AsyncEngine] = None

    def _get_engine(self) -> AsyncEngine:
        if not self.database_url:
            raise DatastoreConfigError("DATABASE_URL not configured")
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, echo=False)
        return self._engine

    async def execute(self, query: str) -> Any:
        engine = self._get_engine()
        try:
            async with engine.connect() as conn:
                result = await conn.execute(
                    text(f"SELECT {self.function}(:query)"), {"query": query}
                )
                return result.scalar()
        except SQLAlchemyError as e:
            raise DatastoreError(str(e)) from e

    async def aclose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None


def build_datastore(config: Settings) -> Datastore:
    if config.DATASTORE_BACKEND == "database":
        return SqlDatastore(config.DATABASE_URL, function=config.EXEC_SQL_FUNCTION)
    if config.DATASTORE_BACKEND != "rpc":
        raise DatastoreConfigError(
            f"Unknown DATASTORE_BACKEND: {config.DATASTORE_BACKEND}"
        )
    return RpcDatastore(
        config.SUPABASE_URL,
        config.SUPABASE_SERVICE_ROLE_KEY,
        function=config.EXEC_SQL_FUNCTION,
        timeout=config.DATASTORE_TIMEOUT_SECONDS,
    )


_datastore: Optional[Datastore] = None
_datastore_lock = threading.Lock()


# The one datastore my routes and the query pipeline share
def get_datastore() -> Datastore:
    global _datastore
    if _datastore is None:
        with _datastore_lock:
            if _datastore is None:
                _datastore = build_datastore(settings)
                logger.info(f"Datastore initialized ({settings.DATASTORE_BACKEND})")
    return _datastore


async def close_datastore() -> None:
    global _datastore
    if _datastore is not None:
        await _datastore.aclose()
        _datastore = None
