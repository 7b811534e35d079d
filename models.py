# models.py
"""
Relay data model.

USER RECORD:
- `phone` is the unique identifier, `name` is optional
- every other profile attribute lives in the open-ended `extra` mapping
- serialized flat: {"phone": ..., "name": ..., **extra}

CONVERSATION ENTRY:
- one {role, text, time} item in a session's ordered list
- `time` is epoch milliseconds
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

KNOWN_USER_FIELDS = ("phone", "name")


class Provenance(str, Enum):
    """Where a resolved user record was read from."""
    CACHE = "cache"
    DURABLE = "durable"


@dataclass
class UserRecord:
    """A user profile keyed by phone number."""

    phone: str
    name: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserRecord":
        phone = data.get("phone")
        extra = {k: v for k, v in data.items() if k not in KNOWN_USER_FIELDS}
        return cls(
            phone=str(phone).strip() if phone is not None else "",
            name=data.get("name"),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        out["phone"] = self.phone
        out["name"] = self.name
        return out


@dataclass
class ResolvedUser:
    """A user record together with the store it came from."""

    record: UserRecord
    source: Provenance


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ConversationEntry:
    role: str
    text: Optional[str]
    time: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "text": self.text, "time": self.time}
