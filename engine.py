import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple

from databases import Database

from access import hash_password, require_read_access, require_write_access
from clock import utcnow
from content import assemble, body_from_submission, preview
from db_sqlalchemy import ALIAS_CONSTRAINTS, DEFAULT_TITLE
from errors import (Conflict, NotFound, PasteError, PersistenceInvariantViolation,
                    StorageUnavailable, ValidationFailed, is_lock_error, is_schema_error,
                    is_unique_violation)
from file_store import DatabaseFileStore, validate_uploads
from models import Block, BlockBody, FileInfo, FileUpload, FlatBody, Paste, PasteView
from resolver import looks_like_alias, looks_like_id, new_id, resolve_paste
from schema_probe import SchemaCapabilities, SchemaProbe
from store import PasteStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
MAX_RECENT_LIMIT = 100


def _clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationFailed(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return title or DEFAULT_TITLE


def _check_invariant(flat_content: Optional[str], blocks: Sequence[Block]) -> None:
    has_text = bool(flat_content and flat_content.strip())
    if has_text == bool(blocks):
        # validation should have made this impossible; never commit it
        raise PersistenceInvariantViolation("Paste must have either flat content or blocks, not both or neither")


def _ensure_representable(caps: SchemaCapabilities, block_style: bool = False,
                          password: bool = False, uploads: bool = False) -> None:
    if block_style and not caps.blocks:
        raise StorageUnavailable("Notebook-style pastes are not supported by the current storage schema")
    if password and not caps.password:
        raise StorageUnavailable("Password protection is not supported by the current storage schema")
    if uploads and not caps.files:
        raise StorageUnavailable("File attachments are not supported by the current storage schema")


class PasteEngine:
    def __init__(self, database: Database, settings, probe: Optional[SchemaProbe] = None,
                 file_store: Optional[DatabaseFileStore] = None, clock=utcnow):
        self.database = database
        self.settings = settings
        self.probe = probe or SchemaProbe(database, ttl=settings.schema_probe_ttl)
        self.files = file_store or DatabaseFileStore(database)
        self.clock = clock

    # -- plumbing -------------------------------------------------------

    async def _capabilities(self) -> SchemaCapabilities:
        try:
            return await self.probe.capabilities()
        except Exception as exc:
            logger.error(f"Schema probe failed: {type(exc).__name__}: {exc}")
            raise StorageUnavailable("Storage is unavailable", retryable=True) from exc

    @asynccontextmanager
    async def _transaction(self):
        async with self.database.connection() as connection:
            if self.database.url.dialect == "sqlite":
                # per connection, and ignored once a transaction is open
                await connection.execute("PRAGMA foreign_keys = ON")
            async with connection.transaction():
                yield

    # A schema error part way through means the schema changed under us:
    # drop the probe cache and run the unit once more with fresh capabilities.
    async def _run(self, unit, action: str, write: bool = False,
                   failure: str = "Storage is unavailable", conflict: Optional[str] = None):
        timeout = self.settings.write_timeout_seconds if write else None
        for attempt in (1, 2):
            store = PasteStore(self.database, await self._capabilities())
            try:
                if timeout and timeout > 0:
                    return await asyncio.wait_for(unit(store), timeout=timeout)
                return await unit(store)
            except PasteError:
                raise
            except asyncio.TimeoutError as exc:
                logger.error(f"{action} timed out after {timeout}s")
                raise StorageUnavailable("The operation timed out, please retry", retryable=True) from exc
            except Exception as exc:
                if is_schema_error(exc) and attempt == 1:
                    logger.warning(f"Schema changed during {action}, re-probing: {exc}")
                    self.probe.invalidate()
                    continue
                if conflict and is_unique_violation(exc, *ALIAS_CONSTRAINTS):
                    raise Conflict(conflict) from exc
                if is_lock_error(exc):
                    logger.warning(f"{action} hit a locked database: {exc}")
                    raise StorageUnavailable("Storage is busy, please retry", retryable=True) from exc
                logger.exception(f"{action} failed")
                raise StorageUnavailable(failure) from exc

    @staticmethod
    async def _resolve(store: PasteStore, ref: str) -> Paste:
        paste = await resolve_paste(store, ref)
        if paste is None:
            raise NotFound()
        return paste

    async def _assemble(self, store: PasteStore, paste: Paste) -> PasteView:
        blocks = await store.fetch_blocks(paste.id)
        files = await self.files.list_for_paste(paste.id) if store.caps.files else []
        return PasteView(paste=paste, body=assemble(paste, blocks), files=files)

    async def _reconcile_block_ids(self, store: PasteStore, paste_id: str, body: BlockBody) -> List[Block]:
        """Keep each submitted block id unless it is missing, repeated or owned by another paste."""
        foreign = await store.foreign_block_ids(paste_id, [b.id for b in body.blocks if b.id])
        seen = set()
        result = []
        for block in body.blocks:
            block_id = block.id
            if not block_id or block_id in seen or block_id in foreign:
                block_id = new_id()
            seen.add(block_id)
            result.append(block.model_copy(update={"id": block_id}))
        return result

    async def load(self, paste_id: str) -> PasteView:
        """Reload a paste as persisted, without access checks or a view bump."""
        async def unit(store):
            paste = await store.fetch_by_id(paste_id)
            if paste is None:
                raise NotFound()
            return await self._assemble(store, paste)

        return await self._run(unit, action=f"load paste {paste_id}")

    # -- operations -----------------------------------------------------

    async def create(self, *, title: Optional[str] = None, content: Optional[str] = None,
                     blocks: Optional[Sequence] = None, alias: Optional[str] = None,
                     expires_in: Optional[int] = None, is_private: bool = False,
                     is_editable: bool = False, password: Optional[str] = None,
                     uploads: Sequence[FileUpload] = ()) -> PasteView:
        settings = self.settings
        body = body_from_submission(content, blocks, settings.max_char_content)
        if body is None:
            raise ValidationFailed("Content is required")
        title = _clean_title(title)
        alias = (alias or "").strip() or None
        if alias is not None and not looks_like_alias(alias):
            raise ValidationFailed(
                "Alias must be 3-50 characters of letters, numbers, underscores and hyphens")
        uploads = list(uploads)
        validate_uploads(uploads, settings)

        now = self.clock()
        expires_at = None
        if expires_in is not None and expires_in > 0:
            try:
                expires_at = now + timedelta(seconds=expires_in)
            except OverflowError:
                raise ValidationFailed("Invalid expiration value") from None
        password_hash = await hash_password(password, settings.bcrypt_rounds) if password else None
        paste_id = new_id()

        async def unit(store: PasteStore):
            _ensure_representable(store.caps, block_style=isinstance(body, BlockBody),
                                  password=password_hash is not None, uploads=bool(uploads))
            async with self._transaction():
                if alias and await store.alias_taken(alias):
                    raise Conflict("Alias is already taken")
                new_blocks = []
                flat_content = None
                if isinstance(body, BlockBody):
                    new_blocks = await self._reconcile_block_ids(store, paste_id, body)
                else:
                    flat_content = body.text
                _check_invariant(flat_content, new_blocks)
                await store.insert_paste({
                    "id": paste_id,
                    "title": title,
                    "flat_content": flat_content,
                    "alias": alias,
                    "expires_at": expires_at,
                    "is_private": bool(is_private),
                    "is_editable": bool(is_editable),
                    "password_hash": password_hash,
                    "view_count": 0,
                    "created_at": now,
                    "updated_at": now,
                })
                if new_blocks:
                    await store.insert_blocks(paste_id, new_blocks, now)
                for upload in uploads:
                    await self.files.store(paste_id, upload, upload.data, now)

        await self._run(unit, action=f"create paste {paste_id}", write=True,
                        failure="Server error creating paste", conflict="Alias is already taken")
        logger.info(f"Paste {paste_id} created ({body.kind}, {len(uploads)} files)")
        return await self.load(paste_id)

    async def edit(self, ref: str, *, title: Optional[str] = None, content: Optional[str] = None,
                   blocks: Optional[Sequence] = None, password: Optional[str] = None) -> PasteView:
        body = body_from_submission(content, blocks, self.settings.max_char_content)
        if title is None and body is None:
            raise ValidationFailed("Nothing to update")
        new_title = _clean_title(title) if title is not None else None

        async def unit(store: PasteStore) -> str:
            _ensure_representable(store.caps, block_style=isinstance(body, BlockBody))
            async with self._transaction():
                paste = await self._resolve(store, ref)
                now = self.clock()
                await require_write_access(paste, password, now)
                values = {"updated_at": now}
                if new_title is not None:
                    values["title"] = new_title
                new_blocks = None
                if isinstance(body, BlockBody):
                    new_blocks = await self._reconcile_block_ids(store, paste.id, body)
                    _check_invariant(None, new_blocks)
                    values["flat_content"] = None
                elif isinstance(body, FlatBody):
                    _check_invariant(body.text, [])
                    values["flat_content"] = body.text
                await store.update_paste(paste.id, values)
                # the row is write-locked from here on; it must still be there
                if not await store.exists(paste.id):
                    raise NotFound()
                if new_blocks is not None:
                    await store.replace_blocks(paste.id, new_blocks, now)
                elif isinstance(body, FlatBody):
                    await store.delete_blocks(paste.id)
            return paste.id

        paste_id = await self._run(unit, action=f"edit paste {ref!r}", write=True, failure="Update failed")
        logger.info(f"Paste {paste_id} updated" + (f" ({body.kind})" if body is not None else ""))
        return await self.load(paste_id)

    async def read(self, ref: str, password: Optional[str] = None) -> PasteView:
        async def unit(store: PasteStore) -> PasteView:
            paste = await self._resolve(store, ref)
            await require_read_access(paste, password, self.clock())
            return await self._assemble(store, paste)

        view = await self._run(unit, action=f"read paste {ref!r}", failure="Server error retrieving paste")
        # best effort, outside the read: concurrent reads may lose increments
        try:
            store = PasteStore(self.database, await self.probe.capabilities())
            await store.increment_views(view.paste.id)
        except Exception as exc:
            logger.warning(f"Failed to update views for {view.paste.id}: {exc}")
        view.paste.view_count += 1
        return view

    async def verify_password(self, ref: str, password: Optional[str]) -> Paste:
        if not password:
            raise ValidationFailed("Password is required")

        async def unit(store: PasteStore) -> Paste:
            paste = await self._resolve(store, ref)
            now = self.clock()
            if paste.is_expired(now):
                raise NotFound()
            if not paste.is_protected:
                raise ValidationFailed("This paste is not password protected")
            await require_read_access(paste, password, now)
            return paste

        return await self._run(unit, action=f"verify password for {ref!r}",
                               failure="Server error verifying password")

    async def delete(self, ref: str, password: Optional[str] = None) -> str:
        async def unit(store: PasteStore) -> str:
            async with self._transaction():
                paste = await self._resolve(store, ref)
                await require_write_access(paste, password, self.clock())
                await store.delete_paste(paste.id)
            return paste.id

        paste_id = await self._run(unit, action=f"delete paste {ref!r}", write=True,
                                   failure="Server error deleting paste")
        logger.info(f"Paste {paste_id} deleted")
        return paste_id

    async def download_file(self, ref: str, file_id: str, password: Optional[str] = None) -> Tuple[FileInfo, bytes]:
        async def unit(store: PasteStore):
            paste = await self._resolve(store, ref)
            await require_read_access(paste, password, self.clock())
            if not store.caps.files or not looks_like_id(file_id):
                raise NotFound("File not found")
            info = await self.files.describe(paste.id, file_id.lower())
            stored = await self.files.retrieve(paste.id, file_id.lower()) if info else None
            if stored is None:
                raise NotFound("File not found")
            return info, stored[1]

        return await self._run(unit, action=f"download file {file_id!r}", failure="Server error retrieving file")

    async def list_recent(self, limit: Optional[int] = None, page: int = 1) -> List[Tuple[Paste, Optional[str]]]:
        """Recent public pastes with a short content preview.

        Protected pastes are listed without a preview.
        """
        limit = max(1, min(limit or self.settings.recent_limit, MAX_RECENT_LIMIT))
        offset = (max(1, page) - 1) * limit

        async def unit(store: PasteStore):
            pastes = await store.list_recent(self.clock(), limit, offset)
            firsts = await store.first_blocks([p.id for p in pastes])
            result = []
            for paste in pastes:
                if paste.is_protected:
                    result.append((paste, None))
                    continue
                first = firsts.get(paste.id)
                body = assemble(paste, [first] if first else [])
                result.append((paste, preview(body)))
            return result

        return await self._run(unit, action="list recent pastes", failure="Server error retrieving pastes")

    async def purge_expired(self) -> int:
        async def unit(store: PasteStore) -> int:
            ids = await store.expired_ids(self.clock())
            if not ids:
                return 0
            async with self._transaction():
                for paste_id in ids:
                    await store.delete_paste(paste_id)
            return len(ids)

        count = await self._run(unit, action="purge expired pastes", write=True)
        if count:
            logger.info(f"Purged {count} expired pastes")
        return count

    async def health(self) -> dict:
        await self.database.fetch_one(query="SELECT 1")
        self.probe.invalidate()
        caps = await self.probe.capabilities()
        return {"password": caps.password, "blocks": caps.blocks, "files": caps.files}
