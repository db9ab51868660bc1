"""Conversion of conversation history and local files into LLM messages."""

import base64
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
import uuid

from yspeaking.models.chat import ChatCompletionMessage, ContentPart, ImageUrl, ImageUrlPart, TextPart
from yspeaking.models.conversation import ChatAttachment, ChatMessageModel

MAX_DOCUMENT_CHARS = 4000
TEXT_FILE_EXTENSIONS = re.compile(r"\.(txt|md|log|csv|tsv|yaml|yml|ini|conf|cfg)$", re.IGNORECASE)
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@dataclass
class DraftFile:
    """A local file picked for sending, before it has been uploaded."""

    name: str
    content: bytes
    type: Optional[str] = None
    uid: str = field(default_factory=lambda: f"file-{uuid.uuid4().hex[:12]}")

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def is_image(self) -> bool:
        return bool(self.type and self.type.startswith("image/"))


def sanitize_attachment(attachment: Any) -> Optional[ChatAttachment]:
    """
    Keep only the public attachment fields.

    Accepts a dict, a ChatAttachment or a DraftFile. Records without a uid
    are dropped (returns None).
    """
    if attachment is None:
        return None
    if isinstance(attachment, (ChatAttachment, DraftFile)):
        data = {
            "uid": attachment.uid,
            "name": attachment.name,
            "size": attachment.size,
            "type": attachment.type,
            "url": getattr(attachment, "url", None),
        }
    elif isinstance(attachment, dict):
        data = attachment
    else:
        return None

    if not data.get("uid"):
        return None
    return ChatAttachment(
        uid=str(data["uid"]),
        name=data.get("name") or "",
        size=data.get("size"),
        type=data.get("type"),
        url=data.get("url"),
    )


def sanitize_attachments(attachments: Optional[Sequence[Any]]) -> list[ChatAttachment]:
    return [a for a in (sanitize_attachment(item) for item in attachments or []) if a]


def truncate_with_notice(text: str, max_len: int = MAX_DOCUMENT_CHARS) -> str:
    """
    Truncate long text, appending a notice with the original length.

    Examples:
        >>> truncate_with_notice("abc", 10)
        "abc"
        >>> truncate_with_notice("a" * 20, 10)
        "aaaaaaaaaa\\n\\n...(truncated, original length about 20 characters)"
    """
    if len(text) <= max_len:
        return text
    return f"{text[:max_len]}\n\n...(truncated, original length about {len(text)} characters)"


def build_attachment_summary(files: Sequence[DraftFile]) -> list[ContentPart]:
    """One text part per file with its name, type and size.

    Internal uid/url values are left out so they never leak into replies.
    """
    parts: list[ContentPart] = []
    for file in files:
        size = f"{file.size / 1024:.1f} KB" if file.size else "unknown size"
        file_type = file.type or "unknown type"
        parts.append(TextPart(text=f"[Attachment: {file.name}] type: {file_type} size: {size}"))
    return parts


def to_data_url(file: DraftFile) -> str:
    """Encode file content as a base64 data URL."""
    mime_type = file.type or "application/octet-stream"
    return f"data:{mime_type};base64,{base64.b64encode(file.content).decode()}"


def build_image_contents(files: Sequence[DraftFile]) -> list[ContentPart]:
    """Image files as image_url parts carrying data URLs."""
    return [
        ImageUrlPart(image_url=ImageUrl(url=to_data_url(file)))
        for file in files
        if file.is_image
    ]


def is_text_like(file: DraftFile) -> bool:
    if file.type:
        return file.type.startswith("text/") or file.type == "application/json"
    return bool(TEXT_FILE_EXTENSIONS.search(file.name))


def is_docx(file: DraftFile) -> bool:
    return file.type == DOCX_MIME_TYPE or file.name.lower().endswith(".docx")


def build_document_contents(files: Sequence[DraftFile]) -> list[ContentPart]:
    """
    Inline the text of readable documents.

    Text-like files are decoded as UTF-8 and truncated. Word documents are
    announced with a notice since their content is not extracted.
    """
    parts: list[ContentPart] = []
    documents = [f for f in files if not f.is_image]

    for doc in documents:
        if is_text_like(doc):
            text = doc.content.decode("utf-8", errors="replace")
            parts.append(TextPart(text=f"[File: {doc.name}]\n{truncate_with_notice(text)}"))
        elif is_docx(doc):
            parts.append(TextPart(text=f"[File: {doc.name}] unable to read content (docx is not extracted)"))
    return parts


def build_user_content_chunks(text: str, files: Sequence[DraftFile]) -> list[ContentPart]:
    """Content of the message being sent: text, attachment summary, images, documents."""
    chunks: list[ContentPart] = []
    if text:
        chunks.append(TextPart(text=text))
    if not files:
        return chunks

    chunks.extend(build_attachment_summary(files))
    chunks.extend(build_image_contents(files))
    chunks.extend(build_document_contents(files))
    return chunks


def build_llm_messages(
    history: Sequence[ChatMessageModel],
    current_user_message_id: str,
    current_user_content_chunks: Sequence[ContentPart],
) -> list[ChatCompletionMessage]:
    """
    Map conversation history to chat-completion messages.

    The current user message carries its multimodal chunks (collapsed to a
    plain string when the only chunk is text). Earlier messages are sent as
    text, with a note listing their attachments.
    """
    messages = []
    for msg in history:
        role = msg.role or "user"

        if msg.id == current_user_message_id and current_user_content_chunks:
            if len(current_user_content_chunks) == 1 and isinstance(current_user_content_chunks[0], TextPart):
                messages.append(ChatCompletionMessage(role=role, content=current_user_content_chunks[0].text))
            else:
                messages.append(ChatCompletionMessage(role=role, content=list(current_user_content_chunks)))
            continue

        note = ""
        if msg.attachments:
            names = ", ".join(a.name or "unnamed attachment" for a in msg.attachments)
            note = f"\n[Attachments] {names}"
        messages.append(ChatCompletionMessage(role=role, content=f"{msg.text}{note}"))
    return messages
