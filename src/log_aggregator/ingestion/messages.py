"""
Queue message models and lifecycle state machine.

A message moves through:

    PENDING -> RECEIVED -> PROCESSING -> ACKED
                  |            |
                  v            v
               REDELIVERED <---+
                  |
                  +-> RECEIVED (next delivery) or DEAD_LETTERED

ACKED and DEAD_LETTERED are terminal.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..exceptions import InvalidTransitionError
from ..storage.base import RawLogObject


class MessageState(Enum):
    """Lifecycle states of an ingestion message."""

    PENDING = "pending"  # Enqueued, never delivered
    RECEIVED = "received"  # Handed to a worker, hidden by visibility timeout
    PROCESSING = "processing"  # Worker started parsing / delivering
    ACKED = "acked"  # Fully delivered downstream, deleted
    REDELIVERED = "redelivered"  # Failed, released or timed out; awaiting redelivery
    DEAD_LETTERED = "dead_lettered"  # Exceeded max receives

    @property
    def is_terminal(self) -> bool:
        return self in (MessageState.ACKED, MessageState.DEAD_LETTERED)

    @property
    def is_in_flight(self) -> bool:
        return self in (MessageState.RECEIVED, MessageState.PROCESSING)

    def can_transition_to(self, target: "MessageState") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[MessageState, frozenset[MessageState]] = {
    MessageState.PENDING: frozenset({MessageState.RECEIVED}),
    MessageState.RECEIVED: frozenset(
        {MessageState.PROCESSING, MessageState.ACKED, MessageState.REDELIVERED}
    ),
    MessageState.PROCESSING: frozenset(
        {MessageState.ACKED, MessageState.REDELIVERED}
    ),
    MessageState.REDELIVERED: frozenset(
        {MessageState.RECEIVED, MessageState.DEAD_LETTERED}
    ),
    MessageState.ACKED: frozenset(),
    MessageState.DEAD_LETTERED: frozenset(),
}


@dataclass
class IngestionMessage:
    """
    Durable queue message referencing one raw log object.

    Attributes:
        message_id: Unique identifier
        object_ref: The landing store object to process
        receive_count: Number of times the message has been delivered
        visibility_deadline: Clock time until which the message stays hidden
        enqueued_at: Clock time of the enqueue
        state: Current lifecycle state
        receipt_handle: Token of the current delivery, required to ack
        last_error: Error text of the most recent failed attempt
    """

    message_id: str
    object_ref: RawLogObject
    receive_count: int = 0
    visibility_deadline: float = 0.0
    enqueued_at: float = 0.0
    state: MessageState = MessageState.PENDING
    receipt_handle: Optional[str] = None
    last_error: Optional[str] = None

    def transition(self, target: MessageState) -> None:
        """
        Move to a new lifecycle state.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if not self.state.can_transition_to(target):
            raise InvalidTransitionError(
                self.message_id, self.state.value, target.value
            )
        self.state = target

    def is_visible(self, now: float) -> bool:
        """Check whether the message can be handed to a worker at `now`."""
        return not self.state.is_terminal and self.visibility_deadline <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "object_ref": self.object_ref.to_dict(),
            "receive_count": self.receive_count,
            "visibility_deadline": self.visibility_deadline,
            "enqueued_at": self.enqueued_at,
            "state": self.state.value,
            "receipt_handle": self.receipt_handle,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IngestionMessage":
        return cls(
            message_id=data["message_id"],
            object_ref=RawLogObject.from_dict(data["object_ref"]),
            receive_count=data.get("receive_count", 0),
            visibility_deadline=data.get("visibility_deadline", 0.0),
            enqueued_at=data.get("enqueued_at", 0.0),
            state=MessageState(data.get("state", MessageState.PENDING.value)),
            receipt_handle=data.get("receipt_handle"),
            last_error=data.get("last_error"),
        )


@dataclass
class DeadLetterEntry:
    """
    Terminal record of a message that exceeded its redelivery limit.

    Requires manual replay (IngestionQueue.redrive).
    """

    original_message: dict[str, Any]
    failure_reason: str
    receive_count: int
    last_error: Optional[str] = None
    dead_lettered_at: float = 0.0

    @property
    def message_id(self) -> str:
        return self.original_message["message_id"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_message": self.original_message,
            "failure_reason": self.failure_reason,
            "receive_count": self.receive_count,
            "last_error": self.last_error,
            "dead_lettered_at": self.dead_lettered_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeadLetterEntry":
        return cls(
            original_message=data["original_message"],
            failure_reason=data["failure_reason"],
            receive_count=data["receive_count"],
            last_error=data.get("last_error"),
            dead_lettered_at=data.get("dead_lettered_at", 0.0),
        )
