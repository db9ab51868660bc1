"""
Chat Controller

Client-side orchestration of one chat window:
- Conversations, per-conversation messages, attachments and drafts
- Sending: upload files -> persist user message -> stream the assistant reply
  into a loading placeholder -> persist the reply
- Stop: cancel the active stream, keep the partial text, restore the draft

Every stream gets a fresh StreamSession. Deltas are applied only while their
session is still the active one, so a late fragment from a stopped or
replaced stream never lands in another reply.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from yspeaking.models.conversation import ChatAttachment, ChatMessageModel, Conversation
from yspeaking.providers.base import BaseProvider
from yspeaking.services.conversations_api import ConversationApiClient
from yspeaking.services.stream_session import StreamCallbacks, StreamSession
from yspeaking.utils.exceptions import AbortedError, ChatClientError, EmptyResponseError, FrameParseError
from yspeaking.utils.message_helpers import (
    DraftFile,
    build_llm_messages,
    build_user_content_chunks,
)
from yspeaking.utils.time import to_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Draft:
    value: str
    files: list[DraftFile] = field(default_factory=list)


@dataclass
class ActiveStream:
    """The reply currently being generated."""

    session: StreamSession
    conversation_id: str
    loading_message_id: str
    last_draft: Draft
    user_stopped: bool = False

    @property
    def session_id(self) -> str:
        return self.session.session_id


def _local_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class ChatController:
    """State and actions behind the chat window."""

    def __init__(self, api: ConversationApiClient, provider: BaseProvider, model: Optional[str] = None):
        self.api = api
        self.provider = provider
        self.model = model

        self.conversations: list[Conversation] = []
        self.messages: dict[str, list[ChatMessageModel]] = {}
        self.attachments: dict[str, list[ChatAttachment]] = {}
        self.drafts: dict[str, str] = {}
        self.active_conversation_id: str = ""

        self.value: str = ""
        self.pending_files: list[DraftFile] = []
        self.active_stream: Optional[ActiveStream] = None

    @property
    def ai_replying(self) -> bool:
        return self.active_stream is not None

    @property
    def active_conversation(self) -> Optional[Conversation]:
        return next((c for c in self.conversations if c.id == self.active_conversation_id), None)

    @property
    def active_messages(self) -> list[ChatMessageModel]:
        return self.messages.get(self.active_conversation_id, [])

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def load_conversations(self) -> list[Conversation]:
        """Load the list and select the newest conversation if none is active."""
        self.conversations = await self.api.list_conversations()
        for conv in self.conversations:
            self.drafts.setdefault(conv.id, "")
        if not self.active_conversation_id and self.conversations:
            await self.select_conversation(self.conversations[0].id)
        return self.conversations

    async def select_conversation(self, conversation_id: str) -> list[ChatMessageModel]:
        self.active_conversation_id = conversation_id
        self.value = self.drafts.get(conversation_id, "")

        messages = await self.api.list_messages(conversation_id)
        # The user may have moved on while the request was in flight
        if self.active_conversation_id == conversation_id:
            self.messages[conversation_id] = messages
            self.attachments[conversation_id] = [a for msg in messages for a in msg.attachments or []]
        return messages

    async def create_conversation(self, title: Optional[str] = None) -> Conversation:
        conv = await self.api.create_conversation(title)
        self.conversations.insert(0, conv)
        self.messages[conv.id] = []
        self.attachments[conv.id] = []
        self.drafts[conv.id] = ""
        self.active_conversation_id = conv.id
        self.value = ""
        return conv

    async def rename_conversation(self, conversation_id: str, title: str) -> bool:
        """Rename on the backend, then locally. Failures leave state unchanged."""
        try:
            updated = await self.api.rename_conversation(conversation_id, title)
        except ChatClientError as e:
            logger.error(f"Rename of {conversation_id} failed: {e}")
            return False

        for conv in self.conversations:
            if conv.id == conversation_id:
                conv.title = updated.title
        return True

    async def delete_conversation(self, conversation_id: str) -> bool:
        """
        Remove a conversation optimistically.

        The neighbour at the same position (or the one before it) becomes
        active when the deleted conversation was active. Everything is rolled
        back if the backend refuses the delete.
        """
        snapshot = (
            list(self.conversations),
            dict(self.messages),
            dict(self.attachments),
            dict(self.drafts),
            self.active_conversation_id,
            self.value,
        )

        removed_index = next(
            (i for i, c in enumerate(self.conversations) if c.id == conversation_id), -1
        )
        remaining = [c for c in self.conversations if c.id != conversation_id]
        next_active = self.active_conversation_id
        if next_active == conversation_id:
            fallback = None
            if remaining:
                index = min(max(removed_index, 0), len(remaining) - 1)
                fallback = remaining[index]
            next_active = fallback.id if fallback else ""

        self.conversations = remaining
        self.messages.pop(conversation_id, None)
        self.attachments.pop(conversation_id, None)
        self.drafts.pop(conversation_id, None)
        self.active_conversation_id = next_active
        if not next_active:
            self.value = ""

        try:
            await self.api.delete_conversation(conversation_id)
        except ChatClientError as e:
            logger.error(f"Delete of {conversation_id} failed, rolling back: {e}")
            (
                self.conversations,
                self.messages,
                self.attachments,
                self.drafts,
                self.active_conversation_id,
                self.value,
            ) = snapshot
            return False
        return True

    # ------------------------------------------------------------------
    # Composer
    # ------------------------------------------------------------------

    def set_input(self, value: str) -> None:
        self.value = value
        self.drafts[self.active_conversation_id] = value

    def add_files(self, *files: DraftFile) -> None:
        self.pending_files.extend(files)

    def _restore_draft(self, draft: Draft) -> None:
        self.value = draft.value
        self.drafts[self.active_conversation_id] = draft.value
        self.pending_files = list(draft.files)

    # ------------------------------------------------------------------
    # Sending and streaming
    # ------------------------------------------------------------------

    async def send(self) -> Optional[ChatMessageModel]:
        """
        Send the composer content and generate the assistant reply.

        Returns:
            The persisted assistant message, or None when nothing was sent,
            the user stopped generation, or the reply failed
        """
        if self.ai_replying:
            return None
        text = self.value.strip()
        files = list(self.pending_files)
        if not text and not files:
            return None
        if not self.active_conversation_id:
            return None

        conversation_id = self.active_conversation_id
        stream = ActiveStream(
            session=StreamSession(),
            conversation_id=conversation_id,
            loading_message_id=_local_id("loading"),
            last_draft=Draft(self.value, files),
        )
        self.active_stream = stream

        try:
            return await self._send(stream, text, files)
        except AbortedError:
            if not stream.user_stopped:
                self._show_failure(stream, None)
            return None
        except ChatClientError as e:
            logger.error(f"Sending or generating the reply failed: {e}")
            self._show_failure(stream, e)
            return None
        finally:
            if self.active_stream is stream:
                self.active_stream = None

    async def _send(
        self, stream: ActiveStream, text: str, files: list[DraftFile]
    ) -> ChatMessageModel:
        conversation_id = stream.conversation_id
        token = stream.session.cancel_token

        attachments: Optional[list[ChatAttachment]] = None
        if files:
            attachments = await self.api.upload_attachments(files)
            if not attachments:
                raise EmptyResponseError("Attachment upload returned no files")
            token.raise_if_cancelled()

        text_to_send = text
        if not text_to_send and attachments:
            names = ", ".join(a.name or "unnamed attachment" for a in attachments)
            text_to_send = f"Sent attachments: {names}"

        content_chunks = build_user_content_chunks(text_to_send, files)
        saved = await self.api.send_message(
            conversation_id, text_to_send, attachments=attachments, role="user"
        )

        self.value = ""
        self.drafts[conversation_id] = ""
        self.pending_files = []

        history = [m for m in self.messages.get(conversation_id, []) if not m.is_loading]
        history.append(saved)
        current = self.messages.setdefault(conversation_id, [])
        current.append(saved)
        current.append(
            ChatMessageModel(
                id=stream.loading_message_id,
                conversation_id=conversation_id,
                role="assistant",
                text="",
                created_at=to_iso(utcnow()),
                is_loading=True,
            )
        )
        if saved.attachments:
            self.attachments.setdefault(conversation_id, []).extend(saved.attachments)

        token.raise_if_cancelled()
        llm_messages = build_llm_messages(history, saved.id, content_chunks)
        callbacks = StreamCallbacks(on_delta=self._on_delta, on_error=self._on_stream_error)
        reply = await self.provider.generate_reply(
            llm_messages, model=self.model, session=stream.session, callbacks=callbacks
        )
        token.raise_if_cancelled()

        ai_message = await self.api.send_message(conversation_id, reply, role="assistant")
        analyzed = saved.attachments or attachments
        if analyzed:
            ai_message = ai_message.model_copy(update={"attachments": analyzed})

        messages = self.messages.setdefault(conversation_id, [])
        index = self._find_message(conversation_id, stream.loading_message_id)
        if index >= 0:
            messages[index] = ai_message
        else:
            messages.append(ai_message)
        return ai_message

    def _on_delta(self, session_id: str, fragment: str) -> None:
        stream = self.active_stream
        if stream is None or stream.session_id != session_id or stream.session.cancel_token.cancelled:
            logger.debug(f"Dropping delta from inactive session {session_id}")
            return

        index = self._find_message(stream.conversation_id, stream.loading_message_id)
        if index < 0:
            return
        messages = self.messages[stream.conversation_id]
        placeholder = messages[index]
        messages[index] = placeholder.model_copy(update={"text": f"{placeholder.text}{fragment}"})

    def _on_stream_error(self, session_id: str, error: Exception) -> None:
        if isinstance(error, FrameParseError):
            logger.debug(f"Skipped frame in session {session_id}: {error}")
        else:
            logger.warning(f"Stream error in session {session_id}: {error}")

    def stop_generating(self) -> None:
        """Stop the active reply, keeping what was generated so far."""
        stream = self.active_stream
        if stream is None:
            return

        stream.user_stopped = True
        self._set_loading(stream, False)
        stream.session.cancel("Stopped by user")
        self._restore_draft(stream.last_draft)

    async def close(self) -> None:
        """Abort any active stream and release HTTP clients."""
        if self.active_stream is not None:
            self.active_stream.session.cancel("Chat closed")
        await self.provider.cleanup()
        await self.api.close()

    def _find_message(self, conversation_id: str, message_id: str) -> int:
        for index, msg in enumerate(self.messages.get(conversation_id, [])):
            if msg.id == message_id:
                return index
        return -1

    def _set_loading(self, stream: ActiveStream, loading: bool) -> None:
        index = self._find_message(stream.conversation_id, stream.loading_message_id)
        if index >= 0:
            messages = self.messages[stream.conversation_id]
            messages[index] = messages[index].model_copy(update={"is_loading": loading})

    def _show_failure(self, stream: ActiveStream, error: Optional[Exception]) -> None:
        """Turn the placeholder into an error reply and give the draft back."""
        error_text = f"AI reply failed: {error}" if error else "AI reply failed, please try again later."
        messages = self.messages.setdefault(stream.conversation_id, [])
        index = self._find_message(stream.conversation_id, stream.loading_message_id)
        if index >= 0:
            messages[index] = messages[index].model_copy(
                update={"role": "assistant", "text": error_text, "is_loading": False}
            )
        else:
            messages.append(
                ChatMessageModel(
                    id=_local_id("error"),
                    conversation_id=stream.conversation_id,
                    role="assistant",
                    text=error_text,
                    created_at=to_iso(utcnow()),
                )
            )
        self._restore_draft(stream.last_draft)
