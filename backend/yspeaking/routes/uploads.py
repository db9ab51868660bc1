"""Attachment upload endpoints of the mock backend."""

import logging
import uuid
from urllib.parse import quote
from typing import List, Optional

import orjson
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from yspeaking.database import UploadRecord, get_session
from yspeaking.models.conversation import ChatAttachment, UploadResponse
from yspeaking.routes.conversations import apply_scenario
from yspeaking.utils.exceptions import raise_bad_request, raise_not_found

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_meta(meta: Optional[str]) -> list[dict]:
    """Parse the `meta` form field: a JSON list of {uid, name, size, type}."""
    if not meta:
        return []
    try:
        parsed = orjson.loads(meta)
    except orjson.JSONDecodeError:
        raise_bad_request("meta must be a JSON list")
    if not isinstance(parsed, list):
        raise_bad_request("meta must be a JSON list")
    return [item for item in parsed if isinstance(item, dict)]


@router.post(
    "/uploads",
    status_code=status.HTTP_201_CREATED,
    response_model=UploadResponse,
    dependencies=[Depends(apply_scenario)],
)
async def upload_attachments(
    request: Request,
    files: List[UploadFile] = File(default=[]),
    meta: Optional[str] = Form(default=None),
    session: AsyncSession = Depends(get_session),
):
    """
    POST /api/uploads - multipart upload

    Form fields:
    - files: one part per file
    - meta: JSON list aligned with files, carrying the client-side uid

    Returns attachment records whose url downloads the stored file.
    """
    meta_items = _parse_meta(meta)
    attachments = []

    for index, upload in enumerate(files):
        info = meta_items[index] if index < len(meta_items) else {}
        data = await upload.read()
        uid = str(info.get("uid") or f"upload-{uuid.uuid4().hex[:12]}")
        name = info.get("name") or upload.filename or ""
        content_type = info.get("type") or upload.content_type

        # A re-sent uid replaces the earlier upload
        await session.merge(
            UploadRecord(uid=uid, name=name, size=len(data), content_type=content_type, data=data)
        )
        attachments.append(
            ChatAttachment(
                uid=uid,
                name=name,
                size=len(data),
                type=content_type,
                url=str(request.url_for("download_upload", uid=uid)),
            )
        )

    await session.commit()
    logger.info(f"Stored {len(attachments)} uploads")
    return UploadResponse(attachments=attachments)


@router.get("/uploads/{uid}", name="download_upload")
async def download_upload(uid: str, session: AsyncSession = Depends(get_session)) -> Response:
    """GET /api/uploads/{uid} - download a stored file"""
    record = await session.get(UploadRecord, uid)
    if record is None:
        raise_not_found("Upload", uid)
    return Response(
        content=record.data,
        media_type=record.content_type or "application/octet-stream",
        headers={"Content-Disposition": f"inline; filename*=UTF-8''{quote(record.name)}"},
    )
