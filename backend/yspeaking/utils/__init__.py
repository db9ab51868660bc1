from yspeaking.utils.deltas import DeltaAccumulator, extract_delta_text, extract_message_text
from yspeaking.utils.sse import SseDecoder, SseEvent

__all__ = [
    "DeltaAccumulator",
    "SseDecoder",
    "SseEvent",
    "extract_delta_text",
    "extract_message_text",
]
