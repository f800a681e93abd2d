from pydantic import BaseModel, AliasChoices, Field
from typing import List, Optional


class BlockIn(BaseModel):
    id: Optional[str] = None
    content: Optional[str] = ""
    language: Optional[str] = None
    # accepted for compatibility, never trusted: blocks are renumbered
    order: Optional[int] = None


class PasteCreate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    blocks: Optional[List[BlockIn]] = None
    alias: Optional[str] = Field(None, validation_alias=AliasChoices("alias", "customUrl"))
    expiresIn: Optional[int] = None
    isPrivate: bool = False
    isEditable: bool = False
    password: Optional[str] = None


class PasteEdit(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    blocks: Optional[List[BlockIn]] = None
    password: Optional[str] = None


class PasswordCheck(BaseModel):
    password: Optional[str] = None
