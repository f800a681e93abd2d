import json
import logging
from typing import List, Optional, Tuple
from urllib.parse import quote

from fastapi import Request, Response
from fastapi.responses import ORJSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from clock import to_iso_z
from engine import PasteEngine
from errors import StorageUnavailable, ValidationFailed
from models import BlockBody, FileInfo, FileUpload, PasteView
from models_sql import PasswordCheck, PasteCreate, PasteEdit

logger = logging.getLogger(__name__)

PASSWORD_HEADER = "X-Paste-Password"


def get_engine(request: Request) -> PasteEngine:
    return request.app.state.engine


def supplied_password(request: Request) -> Optional[str]:
    """Password from the X-Paste-Password header, falling back to ?password=."""
    return request.headers.get(PASSWORD_HEADER) or request.query_params.get("password")


def file_url(info: FileInfo) -> str:
    return f"/pastes/{info.paste_id}/files/{info.id}"


def serialize_paste(view: PasteView) -> dict:
    p = view.paste
    is_blocks = isinstance(view.body, BlockBody)
    return {
        "id": p.id,
        "title": p.title,
        "alias": p.alias,
        "representation": view.representation,
        "content": None if is_blocks else view.body.text,
        "blocks": [
            {"id": b.id, "content": b.content, "language": b.language, "order": b.order}
            for b in view.body.blocks
        ] if is_blocks else [],
        "files": [
            {"id": f.id, "filename": f.original_name, "mimeType": f.mime_type, "size": f.size, "url": file_url(f)}
            for f in view.files
        ],
        "expiresAt": to_iso_z(p.expires_at),
        "isPrivate": p.is_private,
        "isEditable": p.is_editable,
        "canEdit": p.is_editable,
        "isPasswordProtected": p.is_protected,
        "views": p.view_count,
        "createdAt": to_iso_z(p.created_at),
        "updatedAt": to_iso_z(p.updated_at),
    }


def _validate(model, data):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        err = exc.errors()[0]
        where = ".".join(str(part) for part in err.get("loc", ()))
        raise ValidationFailed(f"{where}: {err.get('msg')}" if where else err.get("msg", "Invalid request"))


async def _read_json(request: Request, max_bytes: int) -> dict:
    body_bytes = bytearray()
    async for chunk in request.stream():
        body_bytes.extend(chunk)
        if len(body_bytes) > max_bytes:
            raise ValidationFailed("Request body too large")
    if not body_bytes:
        return {}
    try:
        data = json.loads(body_bytes)
    except ValueError:
        raise ValidationFailed("Request body not compatible JSON format") from None
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return data


def _parse_blocks_field(raw: str):
    try:
        parsed = json.loads(raw)
    except ValueError:
        raise ValidationFailed("Invalid blocks format") from None
    if isinstance(parsed, dict):
        return [parsed]
    if not isinstance(parsed, list):
        raise ValidationFailed("Blocks must be an array")
    return parsed


async def _parse_create(request: Request) -> Tuple[PasteCreate, List[FileUpload]]:
    settings = request.app.state.settings
    content_type = request.headers.get("content-type", "")
    uploads: List[FileUpload] = []
    total_size = 0

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        data = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key != "files":
                    continue
                if not value.filename and not value.size:
                    # browsers send an empty part for an untouched file input
                    continue
                if len(uploads) >= settings.max_files:
                    raise ValidationFailed(f"At most {settings.max_files} files can be attached")
                if value.size is not None and value.size > settings.max_file_size:
                    raise ValidationFailed(f"File {value.filename} exceeds {settings.max_file_size} bytes")
                raw = await value.read(settings.max_file_size + 1)
                if len(raw) > settings.max_file_size:
                    raise ValidationFailed(f"File {value.filename} exceeds {settings.max_file_size} bytes")
                total_size += len(raw)
                if total_size > settings.max_total_file_size:
                    raise ValidationFailed(f"Total file size exceeds {settings.max_total_file_size} bytes")
                uploads.append(FileUpload(
                    name=value.filename or "file",
                    mime_type=value.content_type or "application/octet-stream",
                    size=len(raw),
                    data=raw,
                ))
            else:
                data[key] = value
        if "blocks" in data:
            data["blocks"] = _parse_blocks_field(data["blocks"])
        for key in ("expiresIn", "password", "alias", "customUrl"):
            if data.get(key) == "":
                data.pop(key)
    elif not content_type or content_type.startswith("text/"):
        body = await request.body()
        if len(body) > settings.max_char_content * 5:
            raise ValidationFailed(f"Content invalid or size exceeds {settings.max_char_content} max chars")
        data = {"content": body.decode(errors="ignore")}
    else:
        data = await _read_json(request, settings.max_char_content * 5)

    return _validate(PasteCreate, data), uploads


async def create_paste_handler(request: Request):
    await request.app.state.rate_limiter.check(request, "create")
    payload, uploads = await _parse_create(request)
    view = await get_engine(request).create(
        title=payload.title,
        content=payload.content,
        blocks=payload.blocks,
        alias=payload.alias,
        expires_in=payload.expiresIn,
        is_private=payload.isPrivate,
        is_editable=payload.isEditable,
        password=payload.password,
        uploads=uploads,
    )
    return ORJSONResponse(status_code=201, content={"message": "Paste created successfully",
                                                    "paste": serialize_paste(view)})


async def get_paste_handler(ref: str, request: Request):
    view = await get_engine(request).read(ref, supplied_password(request))
    return ORJSONResponse(content={"paste": serialize_paste(view)})


async def edit_paste_handler(ref: str, request: Request):
    await request.app.state.rate_limiter.check(request, "edit")
    settings = request.app.state.settings
    payload = _validate(PasteEdit, await _read_json(request, settings.max_char_content * 5))
    view = await get_engine(request).edit(
        ref,
        title=payload.title,
        content=payload.content,
        blocks=payload.blocks,
        password=payload.password or supplied_password(request),
    )
    return ORJSONResponse(content={"message": "Paste updated successfully", "paste": serialize_paste(view)})


async def delete_paste_handler(ref: str, request: Request):
    await request.app.state.rate_limiter.check(request, "delete")
    await get_engine(request).delete(ref, supplied_password(request))
    return ORJSONResponse(content={"message": "Paste deleted successfully"})


async def verify_password_handler(ref: str, request: Request):
    payload = _validate(PasswordCheck, await _read_json(request, 4096))
    await get_engine(request).verify_password(ref, payload.password)
    return ORJSONResponse(content={"message": "Password verified successfully", "success": True})


async def download_file_handler(ref: str, file_id: str, request: Request):
    info, data = await get_engine(request).download_file(ref, file_id, supplied_password(request))
    headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(info.original_name)}"}
    return Response(content=data, media_type=info.mime_type, headers=headers)


async def list_pastes_handler(request: Request):
    engine = get_engine(request)
    try:
        await engine.purge_expired()
    except StorageUnavailable as exc:
        logger.warning(f"Skipping expired paste purge: {exc.message}")
    try:
        limit = int(request.query_params.get("limit") or 0) or None
        page = int(request.query_params.get("page") or 1)
    except ValueError:
        raise ValidationFailed("limit and page must be integers") from None
    result = []
    for paste, content_preview in await engine.list_recent(limit, page):
        result.append({
            "id": paste.id,
            "title": paste.title,
            "alias": paste.alias,
            "content": content_preview,
            "createdAt": to_iso_z(paste.created_at),
            "expiresAt": to_iso_z(paste.expires_at),
            "views": paste.view_count,
            "isPasswordProtected": paste.is_protected,
        })
    return ORJSONResponse(content=result)


async def health_handler(request: Request):
    try:
        schema = await get_engine(request).health()
    except Exception as exc:
        logger.error(f"Health check failed: {exc}")
        return ORJSONResponse(status_code=503, content={"status": "error", "db_status": "unavailable"})
    return {"status": "ok", "db_status": "ok", "schema": schema}
