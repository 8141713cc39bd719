"""Decoding of CloudEvents envelopes delivered to HTTP topic routes."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Optional, Union

from appcallback.common import TopicEvent

_STRING_FIELDS = {
    "id": "id",
    "specversion": "spec_version",
    "type": "type",
    "source": "source",
    "datacontenttype": "data_content_type",
    "data_base64": "data_base64",
    "subject": "subject",
    "topic": "topic",
    "pubsubname": "pubsub_name",
}

_WHITESPACE = " \t\n\r"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON literal: {name}")


_DECODER = json.JSONDecoder(parse_constant=_reject_constant)


def _loads(text: Union[str, bytes]) -> Any:
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    value, end = _DECODER.raw_decode(text.strip(_WHITESPACE))
    if end != len(text.strip(_WHITESPACE)):
        raise ValueError("invalid character after top-level value")
    return value


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def _skip_ws(text: str, idx: int) -> int:
    while idx < len(text) and text[idx] in _WHITESPACE:
        idx += 1
    return idx


def _scan_members(text: str) -> dict[str, str]:
    """Return the raw JSON text of each member of the leading object.

    Keys are lower-cased; a later duplicate replaces an earlier one. A leading
    ``null`` yields no members. Anything after the first value is ignored.
    """
    idx = _skip_ws(text, 0)
    if idx == len(text):
        raise ValueError("unexpected end of JSON input")
    value, _ = _DECODER.raw_decode(text, idx)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(
            f"cannot decode JSON {type(value).__name__} into a cloud event"
        )

    members: dict[str, str] = {}
    idx += 1
    while True:
        idx = _skip_ws(text, idx)
        if text[idx] == "}":
            break
        key, idx = _DECODER.raw_decode(text, idx)
        idx = _skip_ws(text, idx) + 1  # past ':'
        start = _skip_ws(text, idx)
        _, idx = _DECODER.raw_decode(text, start)
        members[key.lower()] = text[start:idx]
        idx = _skip_ws(text, idx)
        if text[idx] == ",":
            idx += 1
            continue
        break
    return members


def decode_event_data(
    data: Optional[bytes], data_base64: str, content_type: str
) -> tuple[Any, Optional[bytes]]:
    """Decode the payload of a cloud event.

    ``data`` is the raw JSON text of the ``data`` member, or ``None`` when
    absent. Returns the decoded value and the raw payload bytes. JSON text is
    decoded; a JSON string that itself holds JSON, or base64-encoded JSON, is
    unwrapped. ``data_base64`` is used only when ``data`` is empty and is
    decoded as JSON only for ``application/json``.
    """
    if data:
        raw = bytes(data)
        result: Any = raw
        try:
            value = _loads(raw)
        except ValueError:
            return result, raw
        result = value
        if isinstance(value, str):
            try:
                result = _loads(value)
            except ValueError:
                try:
                    decoded = _b64decode(value)
                except (ValueError, binascii.Error):
                    return result, raw
                try:
                    result = _loads(decoded)
                except ValueError:
                    pass
        return result, raw

    if data_base64:
        try:
            raw = _b64decode(data_base64)
        except (ValueError, binascii.Error):
            return None, None
        result = raw
        if content_type == "application/json":
            try:
                result = _loads(raw)
            except ValueError:
                pass
        return result, raw

    return None, None


def parse_cloud_event(
    body: Union[bytes, str, None], pubsub_name: str, topic: str
) -> TopicEvent:
    """Build a ``TopicEvent`` from a CloudEvents JSON body.

    ``pubsub_name`` and ``topic`` come from the subscription and fill in what
    the envelope leaves out. Raises ``ValueError`` for an empty body or one
    that cannot be decoded as an event.
    """
    if not body:
        raise ValueError("nil content")
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body

    members = _scan_members(text)
    fields: dict[str, str] = {}
    for name, attr in _STRING_FIELDS.items():
        raw = members.get(name)
        if raw is None:
            continue
        value = _loads(raw)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValueError(f"cloud event field {name} must be a string")
        fields[attr] = value

    raw_member = members.get("data")
    data_bytes = raw_member.encode("utf-8") if raw_member is not None else None

    if not fields.get("pubsub_name"):
        fields["topic"] = pubsub_name
    if not fields.get("topic"):
        fields["topic"] = topic

    data, raw_data = decode_event_data(
        data_bytes, fields.get("data_base64", ""), fields.get("data_content_type", "")
    )
    return TopicEvent(data=data, raw_data=raw_data, **fields)