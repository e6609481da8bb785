# tests/helpers.py
"""Constants and small test doubles shared across test modules."""

from typing import Any

from faultline.envelope import Envelope

DSN = "https://public@collector.example.com/42"
ENVELOPE_URL = "https://collector.example.com/api/42/envelope/"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def decode_items(content: bytes) -> list[tuple[str, Any]]:
    """Decode a request body into (item type, JSON body) pairs."""
    envelope = Envelope.decode(content)
    return [(item.type, item.json()) for item in envelope.items]
