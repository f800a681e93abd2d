import re
import uuid

ID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,50}$")


def new_id() -> str:
    return str(uuid.uuid4())


def looks_like_id(ref) -> bool:
    return isinstance(ref, str) and ID_PATTERN.match(ref) is not None


def looks_like_alias(ref) -> bool:
    return isinstance(ref, str) and ALIAS_PATTERN.match(ref) is not None


async def resolve_paste(store, ref):
    """Map a caller-supplied reference to a single paste, or None.

    An identifier-shaped reference is looked up as an id first; the alias
    lookup is only a fallback, so an id match always wins over an alias that
    happens to look the same.
    """
    if looks_like_id(ref):
        paste = await store.fetch_by_id(ref.lower())
        if paste is not None:
            return paste
    if looks_like_alias(ref):
        return await store.fetch_by_alias(ref)
    return None
