# memory_manager.py
"""
Relay Memory Manager
====================

The relay's memory system: short-term working memory and long-term storage.

SHORT-TERM MEMORY (Volatile Store, Redis):
- Conversation transcripts per session under `session:<digits>`, 12h retention
- Read-through copies of user records under `user:<phone>`, 5 min retention

LONG-TERM MEMORY (Durable Store, PostgreSQL):
- Authoritative user records, one per phone number

KEY FEATURES:
- Cache-aside user lookup tagged with its provenance ("cache" / "durable")
- Write-through upsert: the cache entry is overwritten after every durable write
- Best-effort cache population: Redis trouble never fails a read
- Malformed transcript data is treated as an empty conversation

Both components receive their store handles at construction time.
"""

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Union

from errors import CacheError, ValidationError
from models import ConversationEntry, Provenance, ResolvedUser, UserRecord

logger = logging.getLogger(__name__)

# CONFIGURATION CONSTANTS
# =======================
USER_CACHE_TTL_SECONDS = 60 * 5       # 5 min read-through cache
SESSION_TTL_SECONDS = 60 * 60 * 12    # 12h conversation retention

_NON_DIGITS_RE = re.compile(r"\D")


def session_id_from_phone(phone: str) -> str:
    """
    Derive the session identifier from a phone number.

    EXAMPLE: "+91-98765" → "9198765", "whatsapp:+14155238886" → "14155238886"
    """
    return _NON_DIGITS_RE.sub("", phone or "")


def user_cache_key(phone: str) -> str:
    return f"user:{phone}"


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


class MemoryResolver:
    """
    Resolves user records across the two memory layers.

    LOOKUP ORDER:
    1. Volatile Store (`user:<phone>`) → provenance "cache"
    2. Durable Store by exact phone → provenance "durable", then cached
    3. Neither → None

    The cache is an optimization only. It may be stale for up to
    `cache_ttl_seconds` when the durable row is changed by someone else, but
    every upsert made through this resolver overwrites it immediately.
    """

    def __init__(self, volatile, durable, cache_ttl_seconds: int = USER_CACHE_TTL_SECONDS):
        """
        Args:
            volatile: Volatile store (`RedisStore` / `InMemoryStore`)
            durable: Durable user store (`PostgresUserStore`)
            cache_ttl_seconds: Expiry of cached user records
        """
        self.volatile = volatile
        self.durable = durable
        self.cache_ttl_seconds = cache_ttl_seconds

    # ---------- Cache helpers ----------
    async def _read_cache(self, phone: str) -> Optional[UserRecord]:
        try:
            raw = await self.volatile.get(user_cache_key(phone))
        except CacheError as e:
            logger.warning("Cache read failed for %s: %s. Falling back to durable store.", phone, e)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry for %s", phone)
            return None
        if not isinstance(data, dict):
            return None
        return UserRecord.from_dict(data)

    async def _write_cache(self, record: UserRecord) -> bool:
        try:
            await self.volatile.set(
                user_cache_key(record.phone),
                json.dumps(record.to_dict()),
                self.cache_ttl_seconds,
            )
            return True
        except CacheError as e:
            logger.warning("Cache write failed for %s: %s", record.phone, e)
            return False

    # ---------- Public API ----------
    async def get_user(self, phone: str) -> Optional[ResolvedUser]:
        """
        Fetch a user by phone number.

        Args:
            phone: Non-empty identifier, matched exactly

        Returns:
            `ResolvedUser` tagged with its provenance, or None when the user
            exists in neither store

        Raises:
            ValidationError: phone is blank
            DurableStoreError: the durable lookup failed
        """
        phone = (phone or "").strip()
        if not phone:
            raise ValidationError("phone is required")

        # STEP 1: SHORT-TERM MEMORY
        cached = await self._read_cache(phone)
        if cached is not None:
            logger.debug("User %s served from cache", phone)
            return ResolvedUser(record=cached, source=Provenance.CACHE)

        # STEP 2: LONG-TERM MEMORY (errors propagate)
        record = await self.durable.get_user(phone)
        if record is None:
            return None

        # STEP 3: POPULATE CACHE (best effort)
        await self._write_cache(record)
        return ResolvedUser(record=record, source=Provenance.DURABLE)

    async def upsert_user(self, user: Union[UserRecord, Mapping[str, Any]]) -> UserRecord:
        """
        Insert or update a user record, then refresh its cache entry.

        Merge semantics: a missing name keeps the stored one, extra profile
        fields are merged key by key with the new value winning.

        Raises:
            ValidationError: the record has no phone; no store is contacted
            DurableStoreError: the durable write failed
        """
        record = user if isinstance(user, UserRecord) else UserRecord.from_dict(user)
        phone = (record.phone or "").strip()
        if not phone:
            raise ValidationError("phone is required")
        record = UserRecord(phone=phone, name=record.name, extra=dict(record.extra))

        stored = await self.durable.upsert_user(record)
        await self._write_cache(stored)
        logger.info("User %s upserted", stored.phone)
        return stored


class ConversationMemory:
    """
    Per-session conversation transcript in the Volatile Store.

    The list is stored as one JSON string and rewritten whole on every append.
    By default this is a plain GET followed by SET:
    two processes appending to the same session at the same moment can lose
    one message (the later SET wins). With `atomic_append=True` the store's
    optimistic transaction is used instead and both messages are kept.
    """

    def __init__(self, volatile, ttl_seconds: int = SESSION_TTL_SECONDS, atomic_append: bool = False):
        self.volatile = volatile
        self.ttl_seconds = ttl_seconds
        self.atomic_append = atomic_append

    @staticmethod
    def _decode(raw: Optional[str]) -> List[Any]:
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return []
        return data if isinstance(data, list) else []

    @staticmethod
    def _entry_dict(message: Union[ConversationEntry, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(message, ConversationEntry):
            return message.to_dict()
        return dict(message)

    async def get_memory(self, session_id: str) -> List[Any]:
        """Return the stored transcript, or [] when absent or malformed."""
        raw = await self.volatile.get(session_key(session_id))
        return self._decode(raw)

    async def append(self, session_id: str, message: Union[ConversationEntry, Mapping[str, Any]]) -> List[Any]:
        """
        Append one message to the end of the session transcript and renew
        its retention window.

        Returns:
            The full transcript as written
        """
        entry = self._entry_dict(message)
        key = session_key(session_id)

        if self.atomic_append:
            def _push(raw: Optional[str]) -> str:
                return json.dumps(self._decode(raw) + [entry])

            written = await self.volatile.atomic_update(key, _push, self.ttl_seconds)
            return json.loads(written)

        memory = self._decode(await self.volatile.get(key))
        memory.append(entry)
        await self.volatile.set(key, json.dumps(memory), self.ttl_seconds)
        return memory
