import logging
import time
from typing import Callable, Dict, NamedTuple, Tuple

from databases import Database

logger = logging.getLogger(__name__)


class SchemaCapabilities(NamedTuple):
    password: bool
    blocks: bool
    files: bool

    @property
    def is_bare(self) -> bool:
        return not (self.password and self.blocks and self.files)


RICH = SchemaCapabilities(password=True, blocks=True, files=True)


class SchemaProbe:
    def __init__(self, database: Database, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.database = database
        self.ttl = ttl
        self.clock = clock
        self._cache: Dict[Tuple[str, ...], Tuple[float, bool]] = {}
        self._last_capabilities = None

    def invalidate(self):
        self._cache.clear()

    def _cached(self, key):
        hit = self._cache.get(key)
        if hit is None:
            return None
        checked_at, value = hit
        if self.ttl <= 0 or self.clock() - checked_at >= self.ttl:
            return None
        return value

    def _remember(self, key, value: bool) -> bool:
        self._cache[key] = (self.clock(), value)
        return value

    @property
    def dialect(self) -> str:
        return self.database.url.dialect

    async def table_exists(self, table: str) -> bool:
        key = ("table", table)
        cached = self._cached(key)
        if cached is not None:
            return cached
        if self.dialect == "sqlite":
            query = "SELECT name FROM sqlite_master WHERE type = 'table' AND name = :table"
        else:
            query = ("SELECT table_name FROM information_schema.tables "
                     "WHERE table_name = :table AND table_schema = current_schema()")
        row = await self.database.fetch_one(query=query, values={"table": table})
        return self._remember(key, row is not None)

    async def column_exists(self, table: str, column: str) -> bool:
        key = ("column", table, column)
        cached = self._cached(key)
        if cached is not None:
            return cached
        if self.dialect == "sqlite":
            query = "SELECT name FROM pragma_table_info(:table) WHERE name = :column"
        else:
            query = ("SELECT column_name FROM information_schema.columns "
                     "WHERE table_name = :table AND column_name = :column "
                     "AND table_schema = current_schema()")
        row = await self.database.fetch_one(query=query, values={"table": table, "column": column})
        return self._remember(key, row is not None)

    async def capabilities(self) -> SchemaCapabilities:
        caps = SchemaCapabilities(
            password=await self.column_exists("pastes", "password_hash"),
            blocks=await self.table_exists("blocks"),
            files=await self.table_exists("files"),
        )
        if caps != self._last_capabilities:
            if caps.is_bare:
                logger.warning(f"Schema is missing optional elements, using bare query shapes: {caps}")
            else:
                logger.info("Schema has all optional elements")
            self._last_capabilities = caps
        return caps
