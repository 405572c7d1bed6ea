"""
Response types returned by TurnEngine.handle_turn()

Every turn returns exactly one TurnResponse, tagged by ResponseType.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from unidialog.commands import ConversationState


class ResponseType(str, Enum):
    TEMPLATE_SELECTED = "template-selected"
    BULK_AUTO_FILLED = "bulk-auto-filled"
    FIELD_QUESTION = "field-question"
    REPEAT_CONFIRMATION = "repeat-confirmation"
    REVIEW_FIELDS_DISPLAY = "review-fields-display"
    RECORD_COMPLETE = "record-complete"
    RECORD_SAVED = "record-saved"
    TEMPLATE_NOT_FOUND = "template-not-found"
    ERROR = "error"


@dataclass(frozen=True)
class TurnResponse:
    """
    Outbound turn result.

    Attributes:
        type: Response tag
        conversation_state: New snapshot, echoed back by the caller next turn
        payload: Type-specific fields (camelCase keys, JSON-safe)
        status_code: HTTP-equivalent status for the boundary (not serialized)
    """
    type: ResponseType
    conversation_state: Optional[ConversationState]
    payload: Dict[str, Any] = field(default_factory=dict)
    status_code: int = 200

    @property
    def is_error(self) -> bool:
        return self.type == ResponseType.ERROR

    def to_json(self) -> dict:
        data = {'type': self.type.value, **self.payload}
        if self.conversation_state is not None:
            data['conversationState'] = self.conversation_state.to_json()
        return data
