from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from databases import Database
from sqlalchemy import and_, insert, select

from clock import utcnow
from db_sqlalchemy import files
from errors import ValidationFailed
from models import FileInfo, FileUpload
from resolver import new_id


def validate_uploads(uploads: Sequence[FileUpload], settings) -> None:
    if len(uploads) > settings.max_files:
        raise ValidationFailed(f"At most {settings.max_files} files can be attached")
    total = 0
    for upload in uploads:
        if upload.mime_type not in settings.allowed_mime_types:
            raise ValidationFailed(f"File type not allowed: {upload.mime_type}")
        if upload.size > settings.max_file_size:
            raise ValidationFailed(f"File {upload.name} exceeds {settings.max_file_size} bytes")
        total += upload.size
    if total > settings.max_total_file_size:
        raise ValidationFailed(f"Total file size exceeds {settings.max_total_file_size} bytes")


def _to_info(row) -> FileInfo:
    return FileInfo(id=row["id"], paste_id=row["paste_id"], original_name=row["original_name"],
                    mime_type=row["mime_type"], size=row["size"])


class DatabaseFileStore:
    def __init__(self, database: Database):
        self.database = database

    async def store(self, paste_id: str, meta: FileUpload, data: bytes, now: Optional[datetime] = None) -> str:
        file_id = new_id()
        q = insert(files).values(
            id=file_id,
            paste_id=paste_id,
            original_name=meta.name,
            mime_type=meta.mime_type,
            size=len(data),
            content=data,
            created_at=now or utcnow(),
        )
        await self.database.execute(q)
        return file_id

    async def retrieve(self, paste_id: str, file_id: str) -> Optional[Tuple[str, bytes]]:
        q = select(files.c.mime_type, files.c.content).where(
            and_(files.c.id == file_id, files.c.paste_id == paste_id))
        row = await self.database.fetch_one(q)
        if row is None:
            return None
        return row["mime_type"], bytes(row["content"])

    async def describe(self, paste_id: str, file_id: str) -> Optional[FileInfo]:
        q = select(files.c.id, files.c.paste_id, files.c.original_name, files.c.mime_type, files.c.size).where(
            and_(files.c.id == file_id, files.c.paste_id == paste_id))
        row = await self.database.fetch_one(q)
        return _to_info(row) if row else None

    async def list_for_paste(self, paste_id: str) -> List[FileInfo]:
        q = (
            select(files.c.id, files.c.paste_id, files.c.original_name, files.c.mime_type, files.c.size)
            .where(files.c.paste_id == paste_id)
            .order_by(files.c.created_at, files.c.original_name)
        )
        rows = await self.database.fetch_all(q)
        return [_to_info(r) for r in rows]
