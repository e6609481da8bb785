# src/faultline/envelope.py
"""Envelope wire codec.

An envelope is a newline-delimited container:

    {envelope header JSON}\\n
    {item header JSON, including "type" and "length"}\\n
    <exactly "length" bytes of item body>\\n
    ... repeated per item

The item length is the exact byte length of the encoded body, so a decoder
never scans inside a body for delimiters; bodies may contain newlines or any
other bytes. Unknown item types pass through untouched.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from faultline.contracts.enums import ItemType
from faultline.contracts.events import CheckIn, Event, Transaction


class EnvelopeDecodeError(ValueError):
    """Raised when bytes do not form a valid envelope."""


def _json_default(value: Any) -> Any:
    """Serialize the non-JSON types that show up in event context."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, set | frozenset | tuple):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return repr(value)


def dump_json(value: Any) -> bytes:
    """Compact UTF-8 JSON as used on the wire."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_json_default).encode("utf-8")


def _read_line(data: bytes, pos: int) -> tuple[bytes, int]:
    """Return the bytes up to the next newline and the position after it."""
    end = data.find(b"\n", pos)
    if end == -1:
        return data[pos:], len(data)
    return data[pos:end], end + 1


@dataclass(frozen=True, slots=True)
class Item:
    """One typed payload inside an envelope.

    Attributes:
        type: Item type tag (see ItemType; other values are opaque)
        payload: Encoded body bytes
        content_type: Optional body content type
        headers: Any further item header fields, preserved verbatim
    """

    type: str
    payload: bytes
    content_type: str | None = None
    headers: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, item_type: str, body: Any) -> Item:
        return cls(type=item_type, payload=dump_json(body), content_type="application/json")

    def json(self) -> Any:
        """Decode the body as JSON."""
        return json.loads(self.payload)

    def header(self) -> dict[str, Any]:
        header: dict[str, Any] = {"type": self.type, "length": len(self.payload)}
        if self.content_type is not None:
            header["content_type"] = self.content_type
        header.update(self.headers)
        return header


@dataclass(frozen=True, slots=True)
class Envelope:
    """Ordered items plus the envelope header. Item order is send order."""

    headers: Mapping[str, Any]
    items: tuple[Item, ...]

    @property
    def event_id(self) -> str | None:
        event_id = self.headers.get("event_id")
        return event_id if isinstance(event_id, str) else None

    @property
    def item_types(self) -> tuple[str, ...]:
        return tuple(item.type for item in self.items)

    def encode(self) -> bytes:
        chunks = [dump_json(dict(self.headers)), b"\n"]
        for item in self.items:
            chunks.append(dump_json(item.header()))
            chunks.append(b"\n")
            chunks.append(item.payload)
            chunks.append(b"\n")
        return b"".join(chunks)

    @classmethod
    def decode(cls, data: bytes) -> Envelope:
        """Parse an encoded envelope.

        Items without a length header run to the next newline, which is what
        the protocol allows for hand-written envelopes.

        Raises:
            EnvelopeDecodeError: On malformed headers or truncated bodies.
        """
        header_line, pos = _read_line(data, 0)
        headers = _parse_header(header_line) if header_line.strip() else {}

        items: list[Item] = []
        while pos < len(data):
            line, pos = _read_line(data, pos)
            if not line.strip():
                continue
            item_headers = _parse_header(line)
            try:
                item_type = item_headers.pop("type")
            except KeyError:
                raise EnvelopeDecodeError(f"Item header without a type: {line[:100]!r}") from None
            length = item_headers.pop("length", None)
            content_type = item_headers.pop("content_type", None)

            if length is None:
                payload, pos = _read_line(data, pos)
            else:
                if type(length) is not int or length < 0:
                    raise EnvelopeDecodeError(f"Invalid item length {length!r}")
                end = pos + length
                if end > len(data):
                    raise EnvelopeDecodeError(f"Item body truncated: expected {length} bytes, got {len(data) - pos}")
                payload = data[pos:end]
                pos = end
                if data[pos : pos + 1] == b"\n":
                    pos += 1

            items.append(Item(type=str(item_type), payload=payload, content_type=content_type, headers=item_headers))

        return cls(headers=headers, items=tuple(items))


def _parse_header(line: bytes) -> dict[str, Any]:
    try:
        parsed = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EnvelopeDecodeError(f"Invalid header line: {e}") from e
    if not isinstance(parsed, dict):
        raise EnvelopeDecodeError(f"Header line must be a JSON object, got {type(parsed).__name__}")
    return parsed


# =============================================================================
# Builders
# =============================================================================

Record = Event | Transaction | CheckIn


def item_for(record: Record) -> Item:
    """Wrap a record's payload in an item of the matching type."""
    match record:
        case Event():
            return Item.from_json(ItemType.EVENT, record.to_payload())
        case Transaction():
            return Item.from_json(ItemType.TRANSACTION, record.to_payload())
        case CheckIn():
            return Item.from_json(ItemType.CHECK_IN, record.to_payload())
    raise TypeError(f"Cannot build an envelope item for {type(record).__name__}")


def record_id(record: Record) -> str | None:
    if isinstance(record, CheckIn):
        return record.check_in_id
    return record.event_id


def build_envelope(
    items: Iterable[Item],
    *,
    event_id: str | None = None,
    dsn: str | None = None,
    sdk: Mapping[str, str] | None = None,
) -> Envelope:
    """Assemble an envelope with the standard header fields."""
    headers: dict[str, Any] = {}
    if event_id is not None:
        headers["event_id"] = event_id
    if dsn is not None:
        headers["dsn"] = dsn
    headers["sent_at"] = datetime.now(tz=UTC).isoformat()
    if sdk:
        headers["sdk"] = dict(sdk)
    return Envelope(headers=headers, items=tuple(items))
