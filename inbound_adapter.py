# inbound_adapter.py
"""
Inbound webhook adapter.

Chat providers name their fields differently. Twilio posts form fields
`From` / `Body`, generic relays send `from` / `text`, and the WhatsApp Cloud
style nests them under `messages[0]`. All of that guessing lives in
`parse_inbound()`, which yields one normalized `InboundMessage`.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class InboundMessage:
    sender: Optional[str]
    body: Optional[str]


def _first_message(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    messages = payload.get("messages")
    if isinstance(messages, list) and messages and isinstance(messages[0], Mapping):
        return messages[0]
    return {}


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def parse_inbound(payload: Mapping[str, Any]) -> InboundMessage:
    """Extract sender and message text from a provider payload."""
    payload = payload or {}
    first = _first_message(payload)

    sender = payload.get("From") or payload.get("from") or first.get("from")

    text = payload.get("text")
    body = payload.get("Body") or (text if isinstance(text, str) and text else None)
    if not body:
        nested = first.get("text")
        if isinstance(nested, Mapping):
            body = nested.get("body")

    return InboundMessage(sender=_as_text(sender), body=_as_text(body))
