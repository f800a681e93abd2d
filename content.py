from typing import List, Optional, Sequence

from db_sqlalchemy import DEFAULT_LANGUAGE
from errors import ValidationFailed
from models import Block, BlockBody, Body, FlatBody, Paste
from resolver import looks_like_id

MAX_LANGUAGE_LENGTH = 50


def assemble(paste: Paste, blocks: Sequence[Block]) -> Body:
    if blocks:
        return BlockBody(blocks=sorted(blocks, key=lambda b: b.order))
    return FlatBody(text=paste.flat_content or "")


def validate_flat(text: Optional[str], max_chars: int) -> FlatBody:
    if text is None or not text.strip():
        raise ValidationFailed("Content is required")
    if len(text) > max_chars:
        raise ValidationFailed(f"Content exceeds {max_chars} max chars")
    return FlatBody(text=text)


def validate_blocks(submitted: Sequence, max_chars: int) -> BlockBody:
    """Drop empty blocks and renumber the survivors in submission order.

    ``submitted`` items need ``id``, ``content`` and ``language`` attributes.
    A client id survives only if it is identifier-shaped; the engine decides
    later whether it can actually be kept.
    """
    surviving: List[Block] = []
    total = 0
    for item in submitted:
        text = item.content or ""
        if not text.strip():
            continue
        language = (item.language or "").strip() or DEFAULT_LANGUAGE
        if len(language) > MAX_LANGUAGE_LENGTH:
            raise ValidationFailed(f"Block language must be at most {MAX_LANGUAGE_LENGTH} characters")
        total += len(text)
        block_id = item.id.lower() if item.id and looks_like_id(item.id) else None
        surviving.append(Block(id=block_id, content=text, language=language, order=len(surviving)))

    if not surviving:
        raise ValidationFailed("At least one non-empty block is required")
    if total > max_chars:
        raise ValidationFailed(f"Content exceeds {max_chars} max chars")
    return BlockBody(blocks=surviving)


def body_from_submission(content: Optional[str], blocks: Optional[Sequence], max_chars: int) -> Optional[Body]:
    """Pick the target representation from the shape of a submission.

    Returns None when the submission carries no body at all.
    """
    if blocks:
        if content is not None and content.strip():
            raise ValidationFailed("Submit either content or blocks, not both")
        return validate_blocks(blocks, max_chars)
    if content is None and blocks is None:
        return None
    return validate_flat(content, max_chars)


def preview(body: Body, limit: int = 200) -> str:
    if isinstance(body, BlockBody):
        text = body.blocks[0].content if body.blocks else ""
    else:
        text = body.text
    if len(text) > limit:
        return f"{text[:limit]}..."
    return text
