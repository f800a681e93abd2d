from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from databases import Database
from sqlalchemy import and_, delete, func, insert, or_, select, update

from db_sqlalchemy import DEFAULT_LANGUAGE, blocks, files, pastes
from models import Block, Paste
from schema_probe import SchemaCapabilities

_BASE_COLUMNS = (
    "id", "title", "flat_content", "alias", "expires_at", "is_private",
    "is_editable", "view_count", "created_at", "updated_at",
)


# capabilities pick the query shape; bare queries leave out the password
# column and the blocks/files tables
class PasteStore:
    def __init__(self, database: Database, capabilities: SchemaCapabilities):
        self.database = database
        self.caps = capabilities

    def _paste_columns(self):
        names = list(_BASE_COLUMNS)
        if self.caps.password:
            names.append("password_hash")
        return [pastes.c[name] for name in names]

    def _to_paste(self, row) -> Paste:
        return Paste(
            id=row["id"],
            title=row["title"],
            flat_content=row["flat_content"],
            alias=row["alias"],
            expires_at=row["expires_at"],
            is_private=bool(row["is_private"]),
            is_editable=bool(row["is_editable"]),
            password_hash=row["password_hash"] if self.caps.password else None,
            view_count=row["view_count"] or 0,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # -- pastes ---------------------------------------------------------

    async def fetch_by_id(self, paste_id: str) -> Optional[Paste]:
        q = select(*self._paste_columns()).where(pastes.c.id == paste_id)
        row = await self.database.fetch_one(q)
        return self._to_paste(row) if row else None

    async def fetch_by_alias(self, alias: str) -> Optional[Paste]:
        q = select(*self._paste_columns()).where(func.lower(pastes.c.alias) == alias.lower())
        row = await self.database.fetch_one(q)
        return self._to_paste(row) if row else None

    async def exists(self, paste_id: str) -> bool:
        q = select(pastes.c.id).where(pastes.c.id == paste_id)
        return await self.database.fetch_one(q) is not None

    async def alias_taken(self, alias: str) -> bool:
        q = select(pastes.c.id).where(func.lower(pastes.c.alias) == alias.lower())
        return await self.database.fetch_one(q) is not None

    async def insert_paste(self, values: Dict) -> None:
        values = dict(values)
        if not self.caps.password:
            values.pop("password_hash", None)
        await self.database.execute(insert(pastes).values(**values))

    async def update_paste(self, paste_id: str, values: Dict) -> None:
        await self.database.execute(update(pastes).where(pastes.c.id == paste_id).values(**values))

    async def increment_views(self, paste_id: str) -> None:
        q = update(pastes).where(pastes.c.id == paste_id).values(view_count=pastes.c.view_count + 1)
        await self.database.execute(q)

    async def delete_paste(self, paste_id: str) -> None:
        await self.delete_blocks(paste_id)
        if self.caps.files:
            await self.database.execute(delete(files).where(files.c.paste_id == paste_id))
        await self.database.execute(delete(pastes).where(pastes.c.id == paste_id))

    async def list_recent(self, now: datetime, limit: int, offset: int = 0) -> List[Paste]:
        q = (
            select(*self._paste_columns())
            .where(and_(pastes.c.is_private == False,  # noqa: E712
                        or_(pastes.c.expires_at == None, pastes.c.expires_at > now)))  # noqa: E711
            .order_by(pastes.c.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        rows = await self.database.fetch_all(q)
        return [self._to_paste(r) for r in rows]

    async def expired_ids(self, now: datetime) -> List[str]:
        q = select(pastes.c.id).where(and_(pastes.c.expires_at != None, pastes.c.expires_at <= now))  # noqa: E711
        rows = await self.database.fetch_all(q)
        return [r["id"] for r in rows]

    # -- blocks ---------------------------------------------------------

    async def fetch_blocks(self, paste_id: str) -> List[Block]:
        if not self.caps.blocks:
            return []
        q = (
            select(blocks.c.id, blocks.c.content, blocks.c.language, blocks.c.position)
            .where(blocks.c.paste_id == paste_id)
            .order_by(blocks.c.position)
        )
        rows = await self.database.fetch_all(q)
        return [
            Block(id=r["id"], content=r["content"], language=r["language"] or DEFAULT_LANGUAGE, order=r["position"])
            for r in rows
        ]

    async def first_blocks(self, paste_ids: Sequence[str]) -> Dict[str, Block]:
        """First block of each given paste, for list previews."""
        if not self.caps.blocks or not paste_ids:
            return {}
        q = (
            select(blocks.c.id, blocks.c.paste_id, blocks.c.content, blocks.c.language, blocks.c.position)
            .where(and_(blocks.c.paste_id.in_(list(paste_ids)), blocks.c.position == 0))
        )
        rows = await self.database.fetch_all(q)
        return {
            r["paste_id"]: Block(id=r["id"], content=r["content"], language=r["language"], order=r["position"])
            for r in rows
        }

    async def foreign_block_ids(self, paste_id: str, candidate_ids: Iterable[str]) -> set:
        """Which of ``candidate_ids`` already belong to some other paste."""
        candidate_ids = list(candidate_ids)
        if not self.caps.blocks or not candidate_ids:
            return set()
        q = select(blocks.c.id).where(and_(blocks.c.id.in_(candidate_ids), blocks.c.paste_id != paste_id))
        rows = await self.database.fetch_all(q)
        return {r["id"] for r in rows}

    async def delete_blocks(self, paste_id: str) -> None:
        if not self.caps.blocks:
            return
        await self.database.execute(delete(blocks).where(blocks.c.paste_id == paste_id))

    async def insert_blocks(self, paste_id: str, new_blocks: Sequence[Block], now: datetime) -> None:
        for block in new_blocks:
            q = insert(blocks).values(
                id=block.id,
                paste_id=paste_id,
                content=block.content,
                language=block.language,
                position=block.order,
                created_at=now,
                updated_at=now,
            )
            await self.database.execute(q)

    async def replace_blocks(self, paste_id: str, new_blocks: Sequence[Block], now: datetime) -> None:
        await self.delete_blocks(paste_id)
        await self.insert_blocks(paste_id, new_blocks, now)

