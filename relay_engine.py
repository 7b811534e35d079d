# relay_engine.py
"""
Relay Engine
============

The orchestrator behind the chat webhook:

1. Perception: normalize the provider payload into sender + text
2. Memory: append the message to the session transcript
3. Profile sync: upsert any self-declared profile data to the durable store
4. Forwarding: hand the event to the automation workflow, best effort
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from errors import ValidationError
from inbound_adapter import parse_inbound
from memory_manager import ConversationMemory, MemoryResolver, session_id_from_phone
from models import ConversationEntry, now_ms
from nlp_pipeline import extract_profile
from notifier import OutboundNotifier

logger = logging.getLogger(__name__)


@dataclass
class RelayResult:
    session_id: str
    profile_updated: bool = False
    notified: bool = False


class RelayEngine:
    """
    Processes one inbound chat message end to end.

    The engine holds no state of its own; the resolver, the conversation
    memory and the notifier are handed in by the application at startup.
    """

    def __init__(self, resolver: MemoryResolver, conversations: ConversationMemory, notifier: OutboundNotifier):
        self.resolver = resolver
        self.conversations = conversations
        self.notifier = notifier

    async def handle_inbound(self, payload: Mapping[str, Any]) -> RelayResult:
        """
        Args:
            payload: Raw webhook body (JSON object or form fields)

        Returns:
            RelayResult describing what was done

        Raises:
            ValidationError: the payload carries no usable sender
            StoreError: appending to memory or upserting the profile failed
        """
        # STEP 1: PERCEPTION
        # ==================
        message = parse_inbound(payload)
        if not message.sender:
            raise ValidationError("inbound message has no sender")

        session_id = session_id_from_phone(message.sender)
        if not session_id:
            raise ValidationError(f"sender {message.sender!r} contains no digits")

        logger.info("Inbound message: session=%s chars=%s", session_id, len(message.body or ""))
        result = RelayResult(session_id=session_id)

        # STEP 2: SHORT-TERM MEMORY
        # =========================
        await self.conversations.append(
            session_id, ConversationEntry(role="user", text=message.body)
        )

        # STEP 3: PROFILE SYNC
        # ====================
        profile = extract_profile(message.body or "")
        if profile:
            await self.resolver.upsert_user({"phone": session_id, **profile})
            result.profile_updated = True

        # STEP 4: FORWARD TO AUTOMATION
        # =============================
        if self.notifier.enabled:
            result.notified = await self.notifier.notify({
                "sessionId": session_id,
                "from": message.sender,
                "body": message.body,
                "receivedAt": now_ms(),
            })

        return result
