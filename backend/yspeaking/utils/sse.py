"""
Server-Sent Events framing.

SseDecoder turns raw bytes read from a streaming response into complete
events. Bytes are decoded incrementally, so a multi-byte UTF-8 character or
an event separator split across two reads is reassembled instead of being
dropped or duplicated.
"""

import codecs
import re
from dataclasses import dataclass, field
from typing import Iterator, List


# Constants
DATA_FIELD = "data:"
DONE_SENTINEL = "[DONE]"
EVENT_SEPARATORS = ("\n\n", "\r\n\r\n")

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")


@dataclass
class SseEvent:
    """One complete event: the payload lines of its `data:` fields."""

    data_lines: List[str] = field(default_factory=list)

    @property
    def data(self) -> str:
        return "\n".join(self.data_lines)

    @property
    def is_done(self) -> bool:
        return self.data == DONE_SENTINEL


def parse_event_block(block: str) -> SseEvent:
    """Collect the `data:` lines of one blank-line-terminated block.

    The field name and at most one following space are stripped. Other fields
    (event:, id:, retry:) and comments are ignored.
    """
    data_lines = []
    for line in _LINE_SPLIT.split(block):
        if not line.startswith(DATA_FIELD):
            continue
        value = line[len(DATA_FIELD):]
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)
    return SseEvent(data_lines=data_lines)


class SseDecoder:
    """Incremental decoder for a `text/event-stream` body.

    Usage:
        decoder = SseDecoder()
        for event in decoder.feed(chunk):
            ...
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self.buffer = ""

    def feed(self, chunk: bytes) -> Iterator[SseEvent]:
        """Append a chunk of bytes and yield every event now complete."""
        self.buffer += self._decoder.decode(chunk)
        return self.events()

    def feed_text(self, text: str) -> Iterator[SseEvent]:
        """Append already-decoded text and yield every event now complete."""
        self.buffer += text
        return self.events()

    def events(self) -> Iterator[SseEvent]:
        """Yield complete events from the buffer, leaving any partial tail.

        Whichever separator occurs first wins, so `\\n\\n` and `\\r\\n\\r\\n`
        may be mixed in one stream. Blocks without data lines are skipped.
        """
        while True:
            cut, sep_len = self._find_boundary()
            if cut == -1:
                return
            block = self.buffer[:cut]
            self.buffer = self.buffer[cut + sep_len:]

            event = parse_event_block(block)
            if event.data_lines:
                yield event

    def close(self) -> str:
        """Flush the byte decoder and return whatever text never formed an event."""
        self.buffer += self._decoder.decode(b"", final=True)
        remainder, self.buffer = self.buffer, ""
        return remainder

    def _find_boundary(self) -> tuple[int, int]:
        best, best_len = -1, 0
        for separator in EVENT_SEPARATORS:
            idx = self.buffer.find(separator)
            if idx != -1 and (best == -1 or idx < best):
                best, best_len = idx, len(separator)
        return best, best_len
