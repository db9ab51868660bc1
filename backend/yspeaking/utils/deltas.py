"""Text extraction from chat-completion payloads."""

from typing import Any


def _first_choice(payload: Any) -> dict:
    if not isinstance(payload, dict):
        return {}
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return {}
    choice = choices[0]
    return choice if isinstance(choice, dict) else {}


def is_completion_payload(payload: Any) -> bool:
    """Whether a parsed payload has the chat-completion shape (a `choices` list)."""
    return isinstance(payload, dict) and isinstance(payload.get("choices"), list)


def extract_delta_text(payload: Any) -> str:
    """
    Extract the text fragment carried by one parsed `data:` payload.

    - Incremental tokens: choices[0].delta.content
    - Full message (non-delta framing): choices[0].message.content

    Any other shape yields "" and never raises.
    """
    choice = _first_choice(payload)

    delta = choice.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("content"), str):
        return delta["content"]

    message = choice.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]

    return ""


def extract_message_text(payload: Any) -> str:
    """Extract choices[0].message.content from a non-streaming response."""
    message = _first_choice(payload).get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return ""


class DeltaAccumulator:
    """Concatenates non-empty fragments in arrival order."""

    def __init__(self):
        self._parts: list[str] = []

    def append(self, fragment: str) -> bool:
        """Add a fragment. Returns False for empty fragments, which are skipped."""
        if not fragment:
            return False
        self._parts.append(fragment)
        return True

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def fragment_count(self) -> int:
        return len(self._parts)
