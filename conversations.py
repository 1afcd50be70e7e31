"""
Conversation list for one user, derived from the message collection.

Every snapshot is re-reduced in full: O(n) in the user's message count.
"""
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, Optional

from pymongo import DESCENDING

from database import DocumentStore
from errors import ValidationFailure
from live import ErrorCallback, Subscription
from schemas import ConversationSummary

logger = logging.getLogger(__name__)

Conversations = Dict[str, ConversationSummary]


def partner_of(principal_id: str, message: Dict[str, Any]) -> str:
    return message["receiverId"] if message["senderId"] == principal_id else message["senderId"]


def latest_by_partner(principal_id: str, messages: Iterable[Dict[str, Any]]) -> "OrderedDict[str, Dict[str, Any]]":
    """
    Reduce messages (newest first) to partnerId -> latest message.

    The first message seen for a partner wins, so the input must already be
    sorted by timestamp descending.
    """
    latest: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for message in messages:
        partner_id = partner_of(principal_id, message)
        if partner_id not in latest:
            latest[partner_id] = message
    return latest


class ConversationAggregator:
    def __init__(self, store: DocumentStore):
        self.store = store

    def subscribe(
        self,
        principal_id: str,
        on_snapshot: Callable[[Conversations], None],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        if not principal_id:
            raise ValidationFailure("Principal is required")
        # partner profiles are looked up once per subscription
        profiles: Dict[str, Dict[str, Any]] = {}

        def deliver(messages):
            on_snapshot(self._summarize(principal_id, messages, profiles))

        return self.store.subscribe(
            "message",
            {"participants": principal_id},
            [("timestamp", DESCENDING)],
            deliver,
            on_error,
        )

    def snapshot(self, principal_id: str) -> Conversations:
        """One-shot version of subscribe()."""
        messages = self.store.get_documents(
            "message", {"participants": principal_id}, sort=[("timestamp", DESCENDING)]
        )
        return self._summarize(principal_id, messages, {})

    def _summarize(self, principal_id, messages, profiles) -> Conversations:
        result: "OrderedDict[str, ConversationSummary]" = OrderedDict()
        for partner_id, message in latest_by_partner(principal_id, messages).items():
            profile = profiles.get(partner_id)
            if profile is None:
                profile = self._lookup(partner_id)
                if profile is None:
                    continue
                profiles[partner_id] = profile
            result[partner_id] = ConversationSummary(
                partnerId=partner_id,
                name=profile.get("name") or "Anonymous",
                photoUrl=profile.get("photoUrl"),
                lastMessage=message.get("content", ""),
                lastMessageTime=message["timestamp"],
            )
        return result

    def _lookup(self, partner_id: str) -> Optional[Dict[str, Any]]:
        try:
            profile = self.store.get_document("user", partner_id)
        except Exception as e:
            logger.warning("Profile lookup for partner %s failed: %s", partner_id, e)
            return None
        if profile is None:
            logger.info("No profile for partner %s, leaving it out", partner_id)
        return profile
