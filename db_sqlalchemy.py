from sqlalchemy import (MetaData, Table, Column, Integer, String, Text, DateTime, Boolean,
                        LargeBinary, ForeignKey, Index, UniqueConstraint, func)
from sqlalchemy.ext.asyncio import create_async_engine
from databases import Database

DEFAULT_TITLE = "Untitled Paste"
DEFAULT_LANGUAGE = "text"

metadata = MetaData()

pastes = Table(
    "pastes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(255), nullable=False, default=DEFAULT_TITLE),
    Column("flat_content", Text, nullable=True),
    Column("alias", String(50), nullable=True),
    Column("expires_at", DateTime(timezone=True), index=True, nullable=True),
    Column("is_private", Boolean, nullable=False, default=False),
    Column("is_editable", Boolean, nullable=False, default=False),
    # optional: older deployments predate password protection
    Column("password_hash", String(128), nullable=True),
    Column("view_count", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_pastes_private_created", "is_private", "created_at"),
)

# case-insensitive alias uniqueness is enforced by the database itself
ALIAS_INDEX = "ux_pastes_alias_lower"
Index(ALIAS_INDEX, func.lower(pastes.c.alias), unique=True)

# names a duplicate alias is reported under; legacy schemas carry a plain unique column
ALIAS_CONSTRAINTS = (ALIAS_INDEX, "pastes.alias", "pastes_alias_key")

# optional: notebook-style pastes
blocks = Table(
    "blocks",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("paste_id", String(36), ForeignKey("pastes.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("content", Text, nullable=False),
    Column("language", String(50), nullable=False, default=DEFAULT_LANGUAGE),
    Column("position", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("paste_id", "position", name="uq_blocks_paste_position"),
)

# optional: attachments, bytes stored inline
files = Table(
    "files",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("paste_id", String(36), ForeignKey("pastes.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("original_name", String(255), nullable=False),
    Column("mime_type", String(255), nullable=False),
    Column("size", Integer, nullable=False),
    Column("content", LargeBinary, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


def make_database(db_url: str) -> Database:
    """Use 'databases' for async query execution."""
    return Database(db_url)


async def init_db(db_url: str):
    """Create missing tables using SQLAlchemy async engine. Call this at application startup.

    create_all only adds whole tables; a column missing from an existing
    table stays missing and is handled by the schema probe.
    """
    async_engine = create_async_engine(db_url, echo=False)
    async with async_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    await async_engine.dispose()
