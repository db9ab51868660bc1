"""Tests for the chat controller driving the streaming client."""

import asyncio

import httpx
import orjson
import pytest

from yspeaking.providers.base import BaseProvider
from yspeaking.providers.openai_compatible import OpenAICompatibleProvider
from yspeaking.services.chat_controller import ChatController
from yspeaking.services.conversations_api import ConversationApiClient
from yspeaking.services.request_executor import RequestExecutor, RetryConfig
from yspeaking.services.stream_session import StreamSession, consume_stream
from yspeaking.utils.exceptions import UpstreamError
from yspeaking.utils.message_helpers import DraftFile

from conftest import ChunkSource, completion, delta_chunk, mock_client, sse_body


class GatedSource(ChunkSource):
    """Serves its chunks, then blocks until the gate opens."""

    def __init__(self, chunks, gate):
        super().__init__(chunks)
        self.gate = gate

    async def read(self):
        if self.chunks:
            return self.chunks.pop(0)
        await self.gate.wait()
        return sse_body(delta_chunk(" late"))


class GatedProvider(BaseProvider):
    name = "gated"

    def __init__(self):
        super().__init__(None, "fake-model")
        self.gate = asyncio.Event()
        self.source = None

    async def stream_chat(self, messages, model=None, session=None, callbacks=None):
        session = session or StreamSession()
        self.source = GatedSource([sse_body(delta_chunk("Partial"), done=False)], self.gate)
        return await consume_stream(session, self.source, callbacks)

    async def complete_chat(self, messages, model=None, cancel_token=None):
        raise AssertionError("no fallback after a user stop")


def _llm(handler):
    return OpenAICompatibleProvider(
        api_key=None,
        model="test-model",
        base_url="http://llm.test/v1",
        name="test",
        client=mock_client(handler),
        executor=RequestExecutor(RetryConfig(timeout=5.0, max_retries=0, base_delay=0.0)),
    )


@pytest.fixture
def conversation_api(api_client, fast_retries):
    return ConversationApiClient(base_url="http://test/api", client=api_client)


async def _wait_for(condition):
    for _ in range(200):
        if condition():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


async def test_load_selects_newest_conversation(conversation_api):
    controller = ChatController(conversation_api, _llm(lambda r: httpx.Response(500)))

    await controller.load_conversations()

    assert controller.active_conversation_id == "conv-1"
    assert [m.id for m in controller.active_messages] == ["msg-1"]
    assert controller.drafts == {"conv-1": "", "conv-2": "", "conv-3": ""}


async def test_drafts_follow_selected_conversation(conversation_api):
    controller = ChatController(conversation_api, _llm(lambda r: httpx.Response(500)))
    await controller.load_conversations()

    controller.set_input("unsent words")
    await controller.select_conversation("conv-2")
    assert controller.value == ""
    await controller.select_conversation("conv-1")
    assert controller.value == "unsent words"


async def test_create_and_rename(conversation_api):
    controller = ChatController(conversation_api, _llm(lambda r: httpx.Response(500)))
    await controller.load_conversations()

    conv = await controller.create_conversation()
    assert controller.conversations[0].id == conv.id
    assert controller.active_conversation_id == conv.id
    assert controller.messages[conv.id] == []

    assert await controller.rename_conversation(conv.id, "Named") is True
    assert controller.conversations[0].title == "Named"


async def test_rename_failure_keeps_state(conversation_api):
    controller = ChatController(conversation_api, _llm(lambda r: httpx.Response(500)))
    await controller.load_conversations()

    assert await controller.rename_conversation("conv-2", "   ") is False
    assert controller.conversations[1].title == "Project requirements"


async def test_delete_selects_neighbour(conversation_api):
    controller = ChatController(conversation_api, _llm(lambda r: httpx.Response(500)))
    await controller.load_conversations()

    assert await controller.delete_conversation("conv-1") is True
    assert [c.id for c in controller.conversations] == ["conv-2", "conv-3"]
    assert controller.active_conversation_id == "conv-2"
    assert "conv-1" not in controller.messages


async def test_delete_rolls_back_on_failure(conversation_api, monkeypatch):
    controller = ChatController(conversation_api, _llm(lambda r: httpx.Response(500)))
    await controller.load_conversations()
    controller.set_input("draft")

    async def failing_delete(conversation_id):
        raise UpstreamError(500, "Mocked 500")

    monkeypatch.setattr(conversation_api, "delete_conversation", failing_delete)

    assert await controller.delete_conversation("conv-1") is False
    assert [c.id for c in controller.conversations] == ["conv-1", "conv-2", "conv-3"]
    assert controller.active_conversation_id == "conv-1"
    assert controller.value == "draft"
    assert [m.id for m in controller.messages["conv-1"]] == ["msg-1"]


async def test_unreachable_backend_rolls_back_delete_and_rename():
    conversations = [
        {"id": f"conv-{i}", "title": f"Chat {i}", "createdAt": "2026-01-0{i}T00:00:00Z"}
        for i in (1, 2, 3)
    ]

    def handler(request):
        if request.method == "GET" and request.url.path == "/api/conversations":
            return httpx.Response(200, json=conversations)
        if request.method == "GET":
            return httpx.Response(200, json=[])
        raise httpx.ConnectError("backend down", request=request)

    api = ConversationApiClient(base_url="http://api.test/api", client=mock_client(handler))
    controller = ChatController(api, _llm(lambda r: httpx.Response(500)))
    await controller.load_conversations()
    controller.set_input("draft")

    assert await controller.delete_conversation("conv-1") is False
    assert [c.id for c in controller.conversations] == ["conv-1", "conv-2", "conv-3"]
    assert controller.active_conversation_id == "conv-1"
    assert controller.value == "draft"

    assert await controller.rename_conversation("conv-2", "Renamed") is False
    assert controller.conversations[1].title == "Chat 2"


async def test_send_streams_and_persists_reply(conversation_api):
    seen = []

    def handler(request):
        seen.append(orjson.loads(request.content))
        return httpx.Response(200, content=sse_body(delta_chunk("He"), delta_chunk("llo")))

    controller = ChatController(conversation_api, _llm(handler))
    await controller.load_conversations()
    controller.set_input("  What's up?  ")

    reply = await controller.send()

    assert reply.text == "Hello"
    assert reply.role == "assistant"
    assert controller.ai_replying is False
    assert controller.value == ""
    assert [m.text for m in controller.active_messages][-2:] == ["What's up?", "Hello"]
    assert not any(m.is_loading for m in controller.active_messages)

    payload = seen[0]
    assert payload["stream"] is True
    assert payload["messages"][-1] == {"role": "user", "content": "What's up?"}
    assert payload["messages"][0]["role"] == "assistant"

    stored = await conversation_api.list_messages("conv-1")
    assert [m.text for m in stored][-2:] == ["What's up?", "Hello"]


async def test_send_with_attachment_only(conversation_api):
    def handler(request):
        return httpx.Response(200, content=sse_body(delta_chunk("Got it")))

    controller = ChatController(conversation_api, _llm(handler))
    await controller.load_conversations()
    controller.add_files(DraftFile(name="notes.txt", content=b"remember milk", type="text/plain"))

    reply = await controller.send()

    user_message = controller.active_messages[-2]
    assert user_message.text == "Sent attachments: notes.txt"
    assert user_message.attachments[0].name == "notes.txt"
    assert reply.attachments[0].name == "notes.txt"
    assert controller.pending_files == []


async def test_send_ignores_empty_input(conversation_api):
    controller = ChatController(conversation_api, _llm(lambda r: httpx.Response(500)))
    await controller.load_conversations()
    controller.set_input("   ")

    assert await controller.send() is None
    assert [m.id for m in controller.active_messages] == ["msg-1"]


async def test_stream_failure_falls_back(conversation_api):
    def handler(request):
        if orjson.loads(request.content)["stream"]:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json=completion("From fallback"))

    controller = ChatController(conversation_api, _llm(handler))
    await controller.load_conversations()
    controller.set_input("hi")

    reply = await controller.send()

    assert reply.text == "From fallback"


async def test_stop_during_fallback_discards_reply(conversation_api):
    fallback_started = asyncio.Event()
    gate = asyncio.Event()

    async def handler(request):
        if orjson.loads(request.content)["stream"]:
            return httpx.Response(502, text="bad gateway")
        fallback_started.set()
        await gate.wait()
        return httpx.Response(200, json=completion("From fallback"))

    controller = ChatController(conversation_api, _llm(handler))
    await controller.load_conversations()
    controller.set_input("hi")

    task = asyncio.create_task(controller.send())
    await asyncio.wait_for(fallback_started.wait(), timeout=1.0)

    controller.stop_generating()
    gate.set()

    assert await task is None
    assert all(m.text != "From fallback" for m in controller.active_messages)
    placeholder = controller.active_messages[-1]
    assert placeholder.role == "assistant"
    assert placeholder.is_loading is False
    assert controller.value == "hi"
    assert controller.ai_replying is False

    persisted = await conversation_api.list_messages("conv-1")
    assert all(m.text != "From fallback" for m in persisted)


async def test_failure_shows_error_and_restores_draft(conversation_api):
    controller = ChatController(conversation_api, _llm(lambda r: httpx.Response(500, text="down")))
    await controller.load_conversations()
    controller.set_input("please answer")

    assert await controller.send() is None

    last = controller.active_messages[-1]
    assert last.role == "assistant"
    assert last.text.startswith("AI reply failed:")
    assert last.is_loading is False
    assert controller.value == "please answer"
    assert controller.ai_replying is False


async def test_stop_keeps_partial_text_and_ignores_stale_deltas(conversation_api):
    provider = GatedProvider()
    controller = ChatController(conversation_api, provider)
    await controller.load_conversations()
    controller.set_input("tell me a story")

    task = asyncio.create_task(controller.send())
    await _wait_for(lambda: controller.active_messages and controller.active_messages[-1].text == "Partial")

    stream = controller.active_stream
    placeholder_id = stream.loading_message_id

    # A fragment tagged with another session id never lands in this reply
    controller._on_delta("sess_stale", " wrong")
    assert controller.active_messages[-1].text == "Partial"

    controller.stop_generating()
    assert await task is None
    provider.gate.set()
    await asyncio.sleep(0)

    placeholder = controller.active_messages[-1]
    assert placeholder.id == placeholder_id
    assert placeholder.text == "Partial"
    assert placeholder.is_loading is False
    assert controller.value == "tell me a story"
    assert controller.ai_replying is False
    assert provider.source.released == 1

    # Late delivery from the stopped session is dropped as well
    controller._on_delta(stream.session_id, " late")
    assert controller.active_messages[-1].text == "Partial"


async def test_second_send_while_replying_is_ignored(conversation_api):
    provider = GatedProvider()
    controller = ChatController(conversation_api, provider)
    await controller.load_conversations()
    controller.set_input("first")

    task = asyncio.create_task(controller.send())
    await _wait_for(lambda: controller.ai_replying and controller.active_messages[-1].text == "Partial")

    controller.set_input("second")
    assert await controller.send() is None

    controller.stop_generating()
    await task
