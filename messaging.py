"""
Message stream between two users

There is no conversation entity: the messages whose {senderId, receiverId}
equals {P, T} are the whole history of that pair.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from pymongo import ASCENDING

from database import DocumentStore, now_utc
from errors import ValidationFailure
from live import ErrorCallback, Subscription
from schemas import Message

logger = logging.getLogger(__name__)

COLLECTION = "message"
MAX_CONTENT_LENGTH = 5000


def pair_filter(principal_id: str, target_id: str) -> Dict[str, Any]:
    return {
        "$or": [
            {"senderId": principal_id, "receiverId": target_id},
            {"senderId": target_id, "receiverId": principal_id},
        ]
    }


class MessageStream:
    def __init__(self, store: DocumentStore):
        self.store = store

    def history(self, principal_id: str, target_id: str) -> List[Dict[str, Any]]:
        """One-shot read of the pair's messages, oldest first."""
        return self.store.get_documents(
            COLLECTION, pair_filter(principal_id, target_id), sort=[("timestamp", ASCENDING)]
        )

    def subscribe(
        self,
        principal_id: str,
        target_id: str,
        on_snapshot: Callable[[List[Dict[str, Any]]], None],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Live view of the pair's messages, oldest first.

        on_snapshot receives the complete ordered list on subscribe and after
        every matching write. Errors end the subscription; subscribe again to
        resume.
        """
        if not principal_id or not target_id:
            raise ValidationFailure("Both participants are required")
        return self.store.subscribe(
            COLLECTION,
            pair_filter(principal_id, target_id),
            [("timestamp", ASCENDING)],
            on_snapshot,
            on_error,
        )

    def send(self, principal_id: Optional[str], target_id: Optional[str], content: Optional[str]) -> Dict[str, Any]:
        if not principal_id or not target_id:
            raise ValidationFailure("Both participants are required")
        if not content or not content.strip():
            raise ValidationFailure("Message content is empty")
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValidationFailure(f"Message is longer than {MAX_CONTENT_LENGTH} characters")

        msg = Message(
            senderId=principal_id,
            receiverId=target_id,
            content=content,
            timestamp=now_utc(),
            participants=[principal_id, target_id],
        )
        msg_id = self.store.create_document(COLLECTION, msg)
        logger.debug("Message %s sent %s -> %s", msg_id, principal_id, target_id)
        return {"id": msg_id, **msg.model_dump()}
