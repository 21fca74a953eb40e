"""Message model — one transcript entry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING
import uuid

from freechat.engine.models import CompletionResult

if TYPE_CHECKING:
    from freechat.shared.models.conversation import Conversation

# Reserved speaker id for the human side of a conversation.
USER_SPEAKER_ID = "user"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())


@dataclass(eq=False)
class Message:
    text: str
    from_id: str
    id: str = field(default_factory=_gen_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None
    # None while the message is detached (e.g. a reply not yet shown).
    conversation: Conversation | None = field(default=None, repr=False)
    # Snapshot of the system prompt in effect when the message was sent.
    system_prompt: str | None = None

    # Generation statistics, only set on agent replies.
    predicted_per_second: float | None = None
    response_start_seconds: float | None = None
    n_predicted: int | None = None
    model_name: str | None = None

    # True while this is a turn's pending reply.
    streaming: bool = False
    is_deleted: bool = False

    def __post_init__(self) -> None:
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_user(self) -> bool:
        return self.from_id == USER_SPEAKER_ID

    def apply_result(self, result: CompletionResult) -> None:
        """Copy a finished completion into this message and settle it."""
        self.text = result.text
        self.predicted_per_second = result.predicted_per_second
        self.response_start_seconds = result.response_start_seconds
        self.n_predicted = result.n_predicted
        self.model_name = result.model_name
        self.updated_at = _utcnow()
        self.streaming = False
