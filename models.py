from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from clock import as_utc


class Block(BaseModel):
    id: Optional[str] = None
    content: str
    language: str = "text"
    order: int


class FlatBody(BaseModel):
    kind: Literal["flat"] = "flat"
    text: str


class BlockBody(BaseModel):
    kind: Literal["blocks"] = "blocks"
    blocks: List[Block]


# Exactly one representation is active for a paste at a time.
Body = Union[FlatBody, BlockBody]


class Paste(BaseModel):
    id: str
    title: str
    flat_content: Optional[str] = None
    alias: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_private: bool = False
    is_editable: bool = False
    password_hash: Optional[str] = None
    view_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_protected(self) -> bool:
        return bool(self.password_hash)

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) <= now

    def limited_info(self) -> dict:
        """What a caller without the password may learn about the paste."""
        return {
            "id": self.id,
            "title": self.title,
            "alias": self.alias,
            "isPasswordProtected": True,
        }


class FileInfo(BaseModel):
    id: str
    paste_id: str
    original_name: str
    mime_type: str
    size: int


class FileUpload(BaseModel):
    name: str
    mime_type: str
    size: int
    data: bytes = Field(repr=False)


class PasteView(BaseModel):
    """A fully assembled paste aggregate."""

    paste: Paste
    body: Body
    files: List[FileInfo] = []

    @property
    def representation(self) -> str:
        return self.body.kind
