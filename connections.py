"""
Team-up requests between users

Requests are directional: a pending A -> B request does not stop B from asking
A. The duplicate check runs before the insert and is not atomic; with
ENFORCE_UNIQUE_ACTIVE_CONNECTIONS the partial unique index on active records
turns a lost race into a rejected insert instead of a second record.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING

from database import DocumentStore, now_utc
from errors import DuplicateRequest, NotFound, PermissionDenied, ValidationFailure
from schemas import ACTIVE_STATUSES, TeamConnection

logger = logging.getLogger(__name__)

COLLECTION = "teamconnection"

# status -> {new status: who may make the move}
TRANSITIONS = {
    "pending": {"accepted": "recipient", "rejected": "recipient", "cancelled": "requester"},
    "accepted": {"cancelled": "either"},
}


class ConnectionService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def check_active(self, from_user_id: str, to_user_id: str) -> bool:
        return self.store.exists(
            COLLECTION,
            {
                "fromUserId": from_user_id,
                "toUserId": to_user_id,
                "status": {"$in": list(ACTIVE_STATUSES)},
            },
        )

    def request(self, from_user_id: str, to_user_id: str, message: str = "") -> Dict[str, Any]:
        if not from_user_id or not to_user_id:
            raise ValidationFailure("Both users are required")
        if from_user_id == to_user_id:
            raise ValidationFailure("Cannot send a team request to yourself")

        if self.check_active(from_user_id, to_user_id):
            raise DuplicateRequest("You have already sent a connection request to this user.")

        connection = TeamConnection(
            fromUserId=from_user_id,
            toUserId=to_user_id,
            status="pending",
            message=(message or "").strip(),
            timestamp=now_utc(),
        )
        try:
            conn_id = self.store.create_document(COLLECTION, connection)
        except DuplicateRequest:
            logger.info("Concurrent request %s -> %s rejected by unique index", from_user_id, to_user_id)
            raise DuplicateRequest("You have already sent a connection request to this user.")
        logger.info("Connection request %s: %s -> %s", conn_id, from_user_id, to_user_id)
        return {"id": conn_id, **connection.model_dump()}

    def respond(self, principal_id: str, connection_id: str, status: str) -> Dict[str, Any]:
        conn = self.store.get_document(COLLECTION, connection_id)
        if conn is None:
            raise NotFound("Connection not found")

        if principal_id == conn["toUserId"]:
            role = "recipient"
        elif principal_id == conn["fromUserId"]:
            role = "requester"
        else:
            raise PermissionDenied("Not a participant of this connection")

        allowed = TRANSITIONS.get(conn["status"], {})
        who = allowed.get(status)
        if who is None:
            raise ValidationFailure(f"Cannot move a {conn['status']} connection to {status}")
        if who != "either" and who != role:
            raise PermissionDenied(f"Only the {who} can mark this connection {status}")

        self.store.update_document(
            COLLECTION, connection_id, {"status": status, "active": status in ACTIVE_STATUSES}
        )
        logger.info("Connection %s: %s -> %s by %s", connection_id, conn["status"], status, principal_id)
        return self.store.get_document(COLLECTION, connection_id)

    def list_for(self, principal_id: str, direction: str = "incoming", status: Optional[str] = None) -> List[Dict[str, Any]]:
        if direction not in ("incoming", "outgoing"):
            raise ValidationFailure("direction must be incoming or outgoing")
        key = "toUserId" if direction == "incoming" else "fromUserId"
        query: Dict[str, Any] = {key: principal_id}
        if status:
            query["status"] = status
        return self.store.get_documents(COLLECTION, query, sort=[("timestamp", DESCENDING)])
