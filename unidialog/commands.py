"""
Conversation state and turn request types for the Turn Engine.

The Turn Engine holds no state between calls. The caller owns the
ConversationState and sends it back every turn; the engine deep copies it on
the way in and on the way out so neither side can alias the other's copy.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ConversationStep(str, Enum):
    """
    Explicit conversation step.

    TEMPLATE_SELECTION:
        No template yet. The model (or a manual choice) picks one.
        Exit: template matched -> BULK_AUTO_FILL

    BULK_AUTO_FILL:
        One-shot inference of as many fields as possible.
        Exit: always -> FIELD_FILLING (degrades to a full interview on error)

    FIELD_FILLING:
        Interview loop over remaining fields, one question per turn.
        Exit: nothing left to ask -> CONFIRMATION

    CONFIRMATION:
        Record complete, waiting to be serialized and stored.
        Exit: saved -> COMPLETED, edit requested -> FIELD_FILLING

    COMPLETED:
        Terminal.
    """
    TEMPLATE_SELECTION = "template-selection"
    BULK_AUTO_FILL = "bulk-auto-fill"
    FIELD_FILLING = "field-filling"
    CONFIRMATION = "confirmation"
    COMPLETED = "completed"


VALID_STEPS = {step.value for step in ConversationStep}

# userResponse sentinels understood during field-filling
EDIT_FIELD_COMMAND = "__edit_field__"
REVIEW_FIELDS_COMMAND = "__review_fields__"
CONTINUE_COMMAND = "__continue__"

DEFAULT_LANGUAGE = "pt"


@dataclass
class ConversationState:
    """
    Serializable snapshot of conversation progress.

    Attributes:
        step: Current conversation step
        current_template: Raw template dict (absent only during template selection)
        filled_fields: tag -> str | {code: str | [str]} | [occurrences]
        remaining_fields: Tags still to resolve, in catalog order
        asked_field: Tag currently being asked
        asked_subfield: Sub-field code currently being asked
        repeating_field: User confirmed another occurrence of the current slot
        repeat_confirmation: {'field': tag, 'subfield': code?} while waiting for yes/no
        pending_occurrence: Next usable answer opens a new occurrence of asked_field
        auto_filled_count: Fields resolved by inference (observability only)
    """
    step: ConversationStep = ConversationStep.TEMPLATE_SELECTION
    current_template: Optional[Dict[str, Any]] = None
    filled_fields: Dict[str, Any] = field(default_factory=dict)
    remaining_fields: List[str] = field(default_factory=list)
    asked_field: Optional[str] = None
    asked_subfield: Optional[str] = None
    repeating_field: bool = False
    repeat_confirmation: Optional[Dict[str, Any]] = None
    pending_occurrence: bool = False
    auto_filled_count: int = 0

    def clear_cursor(self) -> None:
        """Drop the question cursor and any repeat bookkeeping."""
        self.asked_field = None
        self.asked_subfield = None
        self.repeating_field = False
        self.repeat_confirmation = None
        self.pending_occurrence = False

    def copy(self) -> "ConversationState":
        """Deep copy (one per turn, never alias the caller's snapshot)."""
        return copy.deepcopy(self)

    def to_json(self) -> dict:
        """
        Serialize to the camelCase wire shape (deep copy).

        Absent cursor keys are omitted rather than sent as null.

        Returns:
            dict: JSON-safe state snapshot
        """
        data: Dict[str, Any] = {
            'step': self.step.value,
            'filledFields': copy.deepcopy(self.filled_fields),
            'remainingFields': list(self.remaining_fields),
            'autoFilledCount': self.auto_filled_count,
        }
        if self.current_template is not None:
            data['currentTemplate'] = copy.deepcopy(self.current_template)
        if self.asked_field is not None:
            data['askedField'] = self.asked_field
        if self.asked_subfield is not None:
            data['askedSubfield'] = self.asked_subfield
        if self.repeating_field:
            data['repeatingField'] = True
        if self.repeat_confirmation is not None:
            data['repeatConfirmation'] = dict(self.repeat_confirmation)
        if self.pending_occurrence:
            data['pendingOccurrence'] = True
        return data

    @staticmethod
    def from_json(data: Optional[dict]) -> "ConversationState":
        """
        Deserialize from the wire shape.

        Deep copies so later mutation never reaches the caller's dict.

        Args:
            data: Raw state dict, or None for a fresh conversation

        Returns:
            ConversationState: New state object

        Raises:
            ValueError: If data is not a dict or carries an unknown step
        """
        if data is None:
            return ConversationState()

        if not isinstance(data, dict):
            raise ValueError(f"conversationState must be an object, got {type(data).__name__}")

        data = copy.deepcopy(data)

        step = data.get('step', ConversationStep.TEMPLATE_SELECTION.value)
        if step not in VALID_STEPS:
            raise ValueError(f"Unknown conversation step: {step!r}")

        filled = data.get('filledFields')
        filled = {} if filled is None else filled
        remaining = data.get('remainingFields')
        remaining = [] if remaining is None else remaining
        if not isinstance(filled, dict) or not isinstance(remaining, list):
            raise ValueError("filledFields must be an object and remainingFields a list")

        confirmation = data.get('repeatConfirmation')

        return ConversationState(
            step=ConversationStep(step),
            current_template=data.get('currentTemplate'),
            filled_fields=filled,
            remaining_fields=[str(tag) for tag in remaining],
            asked_field=data.get('askedField'),
            asked_subfield=data.get('askedSubfield'),
            repeating_field=bool(data.get('repeatingField', False)),
            repeat_confirmation=confirmation if isinstance(confirmation, dict) else None,
            pending_occurrence=bool(data.get('pendingOccurrence', False)),
            auto_filled_count=int(data.get('autoFilledCount') or 0),
        )


@dataclass(frozen=True)
class TurnRequest:
    """
    One inbound turn.

    Attributes:
        description: Free-text bibliographic description
        language: Translation language for names, labels and tips
        conversation_state: Snapshot from the previous turn (None on the first turn)
        user_response: Answer to the outstanding question, or a command sentinel
        field_to_edit: Tag to re-open when user_response is EDIT_FIELD_COMMAND
    """
    description: str
    language: str = DEFAULT_LANGUAGE
    conversation_state: Optional[ConversationState] = None
    user_response: Optional[str] = None
    field_to_edit: Optional[str] = None

    @staticmethod
    def from_json(payload: dict) -> "TurnRequest":
        """
        Parse the inbound JSON request body.

        Raises:
            ValueError: If payload is not an object or the state is malformed
        """
        if not isinstance(payload, dict):
            raise ValueError("request body must be a JSON object")

        state_data = payload.get('conversationState')
        user_response = payload.get('userResponse')
        field_to_edit = payload.get('fieldToEdit')

        return TurnRequest(
            description=str(payload.get('description') or ''),
            language=payload.get('language') or DEFAULT_LANGUAGE,
            conversation_state=ConversationState.from_json(state_data) if state_data is not None else None,
            user_response=None if user_response is None else str(user_response),
            field_to_edit=None if field_to_edit is None else str(field_to_edit),
        )
