"""
SQLite Communication Operations

Message log between agents. Direct messages carry their delivery state on
the message row; broadcasts carry it per recipient in message_receipts.
Every delivery timestamp is written once, and reading or acknowledging
fills any earlier stage still unset, so delivered <= read <= acknowledged.
"""

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from hivestore.logging_config import logger
from hivestore.schemas import Communication, MessageReceipt
from hivestore.storage.sqlite.persistence import SQLitePersistence, encode_json


class SQLiteCommunicationOperations:
    """Communication log operations."""

    def __init__(self, persistence: SQLitePersistence):
        self._db = persistence

    def create(
        self,
        swarm_id: str,
        from_agent_id: str,
        content: str,
        to_agent_id: Optional[str] = None,
        message_type: str = "direct",
        priority: str = "medium",
        broadcast_scope: Optional[str] = None,
        requires_response: bool = False,
        parent_message_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        message_id: Optional[str] = None,
    ) -> Communication:
        """
        Record a message. Without to_agent_id it is a broadcast, scoped to
        the sender's swarm unless broadcast_scope says "global".

        Raises:
            ConstraintViolationError: Unknown swarm or parent, invalid scope/priority
        """
        if broadcast_scope is None:
            broadcast_scope = "none" if to_agent_id else "swarm"
        message_id = message_id or f"msg-{uuid.uuid4().hex[:12]}"

        self._db.execute("create_communication", (
            message_id, swarm_id, from_agent_id, to_agent_id, message_type, content,
            encode_json(metadata or {}), broadcast_scope, priority, self._db.timestamp(),
            None, None, None, int(requires_response), parent_message_id,
        ))
        logger.debug(f"Message {message_id} from {from_agent_id} to {to_agent_id or broadcast_scope}")
        return self.get(message_id)

    def get(self, message_id: str) -> Optional[Communication]:
        row = self._db.fetchone("get_communication", (message_id,))
        return Communication.model_validate(row) if row else None

    def get_pending_for_agent(self, agent_id: str) -> List[Communication]:
        """
        Undelivered messages for agent_id, most urgent first, then oldest first.

        Includes direct messages and broadcasts the agent has not yet taken
        delivery of: global ones, and swarm ones from its own swarm. An
        agent never receives its own broadcast.
        """
        rows = self._db.fetchall("get_pending_messages", {"agent_id": agent_id})
        return [Communication.model_validate(row) for row in rows]

    def _mark(self, stage: str, message_id: str, agent_id: Optional[str]) -> bool:
        params = {"id": message_id, "now": self._db.timestamp()}
        with self._db.transaction():
            message = self._db.fetchone("get_communication", (message_id,))
            if message is None:
                return False
            if message["to_agent_id"] is None and agent_id is not None:
                params["agent_id"] = agent_id
                self._db.execute(f"upsert_receipt_{stage}", params)
            elif stage == "delivered":
                self._db.execute("mark_message_delivered", (params["now"], message_id))
            else:
                self._db.execute(f"mark_message_{stage}", params)
        return True

    def mark_delivered(self, message_id: str, agent_id: Optional[str] = None) -> bool:
        """
        Record delivery. Idempotent: a second call keeps the first timestamp.

        For a broadcast, agent_id selects the recipient whose receipt is
        stamped; without it the broadcast is closed for everyone.

        Returns:
            False if the message does not exist
        """
        return self._mark("delivered", message_id, agent_id)

    def mark_read(self, message_id: str, agent_id: Optional[str] = None) -> bool:
        return self._mark("read", message_id, agent_id)

    def mark_acknowledged(self, message_id: str, agent_id: Optional[str] = None) -> bool:
        return self._mark("acknowledged", message_id, agent_id)

    def get_receipt(self, message_id: str, agent_id: str) -> Optional[MessageReceipt]:
        row = self._db.fetchone("get_receipt", (message_id, agent_id))
        return MessageReceipt.model_validate(row) if row else None

    def get_recent(self, swarm_id: str, window: timedelta = timedelta(hours=1)) -> List[Communication]:
        """Messages of a swarm created within window, newest first."""
        cutoff = self._db.timestamp(-window)
        rows = self._db.fetchall("get_recent_messages", (swarm_id, cutoff))
        return [Communication.model_validate(row) for row in rows]

    def get_thread(self, parent_message_id: str) -> List[Communication]:
        """Replies to a message in the order they were sent."""
        rows = self._db.fetchall("get_message_thread", (parent_message_id,))
        return [Communication.model_validate(row) for row in rows]
