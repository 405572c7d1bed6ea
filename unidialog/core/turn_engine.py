"""
Turn Engine - Conversational cataloguing state machine (Functional Core)

Responsibilities:
- Select a template for the description (model or manual choice)
- Bulk-infer field values once, then interview for the rest
- Ingest answers, run the repeat protocol for repeatable slots
- Edit / review / continue commands
- Serialize and store the record at confirmation

Design principles:
- Stateless between calls: state in, new state out (deep copied)
- One handler per step, explicit transition table
- Collaborators injected and interface-checked at construction
- Collaborator errors: fatal at selection, degraded at bulk fill,
  reported at confirmation
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from unidialog.commands import (
    CONTINUE_COMMAND,
    EDIT_FIELD_COMMAND,
    REVIEW_FIELDS_COMMAND,
    ConversationState,
    ConversationStep,
    TurnRequest,
)
from unidialog.contracts import FieldDef
from unidialog.core.field_catalog import FieldCatalog
from unidialog.core.question_selector import QuestionSelector
from unidialog.core.record_assembler import assemble
from unidialog.core.value_validator import clean_value, is_usable, matches_shape
from unidialog.results import ResponseType, TurnResponse
from unidialog.utils.helpers import loads_lenient, today_label

logger = logging.getLogger(__name__)


TRANSITIONS = {
    ConversationStep.TEMPLATE_SELECTION: {ConversationStep.BULK_AUTO_FILL},
    ConversationStep.BULK_AUTO_FILL: {ConversationStep.FIELD_FILLING},
    ConversationStep.FIELD_FILLING: {ConversationStep.CONFIRMATION},
    ConversationStep.CONFIRMATION: {ConversationStep.COMPLETED, ConversationStep.FIELD_FILLING},
    ConversationStep.COMPLETED: set(),
}

YES_ANSWER = "sim"


@dataclass
class _Turn:
    """Per-call context (never outlives handle_turn)"""
    request: TurnRequest
    original: ConversationState
    catalog: Optional[FieldCatalog] = None
    selector: Optional[QuestionSelector] = None


class TurnEngine:
    """
    Drives one cataloguing conversation, one turn per call.

    Functional core design:
    - Holds collaborators only, never conversation state
    - handle_turn() maps (request, state) to a TurnResponse deterministically,
      apart from the collaborators' own output
    """

    def __init__(self, template_source, text_generator, storage):
        """
        Initialize the engine with its collaborators.

        Args:
            template_source: Object with get_templates() -> {"templates": [...]}
            text_generator: Object with select_template(), bulk_infer_fields(),
                serialize_to_unimarc()
            storage: Object with save_record(record) -> record_id

        Raises:
            TypeError: If a collaborator lacks a required method
        """
        self._validate_collaborators(template_source, text_generator, storage)

        self.template_source = template_source
        self.text_generator = text_generator
        self.storage = storage

        self._handlers = {
            ConversationStep.TEMPLATE_SELECTION: self._handle_template_selection,
            ConversationStep.BULK_AUTO_FILL: self._handle_bulk_auto_fill,
            ConversationStep.FIELD_FILLING: self._handle_field_filling,
            ConversationStep.CONFIRMATION: self._handle_confirmation,
            ConversationStep.COMPLETED: self._handle_completed,
        }

        logger.info("Turn Engine initialized (functional core)")

    @staticmethod
    def _validate_collaborators(template_source, text_generator, storage):
        """Validate collaborator interfaces"""
        required = [
            (template_source, 'template_source', 'get_templates'),
            (text_generator, 'text_generator', 'select_template'),
            (text_generator, 'text_generator', 'bulk_infer_fields'),
            (text_generator, 'text_generator', 'serialize_to_unimarc'),
            (storage, 'storage', 'save_record'),
        ]
        for obj, label, method in required:
            if not (hasattr(obj, method) and callable(getattr(obj, method, None))):
                raise TypeError(f"{label} must have callable {method}() method")

    # =========================================================================
    # Public API
    # =========================================================================

    def handle_turn(self, request: TurnRequest) -> TurnResponse:
        """
        Process one turn.

        Args:
            request: Inbound turn (description, language, state, response, edit tag)

        Returns:
            TurnResponse: Tagged response with the new state snapshot
        """
        original = request.conversation_state or ConversationState()
        state = original.copy()
        turn = _Turn(request=request, original=original)

        logger.info(f"Turn at step {state.step.value}")

        handler = self._handlers[state.step]

        if state.step not in (ConversationStep.TEMPLATE_SELECTION, ConversationStep.COMPLETED):
            if not state.current_template:
                return self._error(turn, "Template não encontrado.")
            try:
                turn.catalog = FieldCatalog.from_dict(state.current_template)
            except (TypeError, ValueError) as e:
                logger.error(f"Invalid template in conversation state: {e}")
                return self._error(turn, "Template inválido no estado da conversa.", details=str(e))
            turn.selector = QuestionSelector(turn.catalog, request.language)

        response = handler(state, turn)

        # Bulk fill with nothing to show continues straight into the interview
        if response is None and state.step == ConversationStep.FIELD_FILLING:
            turn.request = replace(request, user_response=None, field_to_edit=None)
            response = self._handle_field_filling(state, turn)

        return response

    # =========================================================================
    # Step handlers
    # =========================================================================

    def _handle_template_selection(self, state: ConversationState, turn: _Turn) -> TurnResponse:
        try:
            templates = (self.template_source.get_templates() or {}).get('templates') or []
        except Exception as e:
            logger.error(f"Template source failed: {e}")
            return self._error(turn, "Nenhum template disponível.", status=503, details=str(e))

        if not templates:
            logger.warning("Template source returned no templates")
            return self._error(turn, "Nenhum template disponível.", status=503)

        selected = self._manual_choice(templates, turn.request.user_response)

        if selected is None:
            names = [t.get('name') for t in templates]
            try:
                answer = self.text_generator.select_template(turn.request.description, names)
            except Exception as e:
                logger.error(f"Template selection failed: {e}")
                return self._error(turn, "Falha na seleção do template.", status=500, details=str(e))

            selected = self._match_template(templates, answer)
            logger.info(f"Model selected template {answer!r}: {'matched' if selected else 'no match'}")

        if selected is None:
            return TurnResponse(
                type=ResponseType.TEMPLATE_NOT_FOUND,
                conversation_state=turn.original.copy(),
                payload={
                    'error': "Template não identificado. Escolha manualmente:",
                    'options': [{'id': t.get('id'), 'name': t.get('name')} for t in templates],
                },
                status_code=400,
            )

        state.current_template = selected
        state.filled_fields = {}
        state.remaining_fields = []
        state.auto_filled_count = 0
        state.clear_cursor()
        self._transition(state, ConversationStep.BULK_AUTO_FILL)

        return TurnResponse(
            type=ResponseType.TEMPLATE_SELECTED,
            conversation_state=state,
            payload={
                'template': {
                    'id': selected.get('id'),
                    'name': selected.get('name'),
                    'description': f"Template selecionado: {selected.get('name')}",
                }
            },
        )

    def _handle_bulk_auto_fill(self, state: ConversationState, turn: _Turn) -> Optional[TurnResponse]:
        catalog = turn.catalog
        all_tags = catalog.all_tags()

        try:
            raw = self.text_generator.bulk_infer_fields(turn.request.description, state.current_template)
            inferred = raw if isinstance(raw, dict) else loads_lenient(raw)
        except Exception as e:
            logger.error(f"Bulk inference failed, falling back to full interview: {e}")
            state.filled_fields = {}
            state.remaining_fields = all_tags
            state.auto_filled_count = 0
            self._transition(state, ConversationStep.FIELD_FILLING)
            return None

        survivors: Dict[str, Any] = {}
        for tag, value in inferred.items():
            tag = str(tag)
            if not catalog.has_tag(tag):
                logger.warning(f"Inferred tag {tag} not in template, ignoring")
                continue
            cleaned = clean_value(value)
            if cleaned is None:
                logger.debug(f"Inferred value for {tag} not usable: {value!r}")
                continue
            if not matches_shape(cleaned, catalog.is_structured(catalog.definition_of(tag))):
                logger.warning(f"Inferred value for {tag} has the wrong shape, ignoring: {cleaned!r}")
                continue
            survivors[tag] = cleaned

        state.filled_fields = survivors
        state.remaining_fields = [tag for tag in all_tags if tag not in survivors]
        state.auto_filled_count = len(survivors)
        state.clear_cursor()
        self._transition(state, ConversationStep.FIELD_FILLING)

        logger.info(f"Bulk fill kept {len(survivors)} of {len(inferred)} inferred fields")

        if not survivors:
            return None

        return TurnResponse(
            type=ResponseType.BULK_AUTO_FILLED,
            conversation_state=state,
            payload={
                'message': f"{len(survivors)} campos preenchidos automaticamente",
                'filledFields': dict(survivors),
            },
        )

    def _handle_field_filling(self, state: ConversationState, turn: _Turn) -> TurnResponse:
        answer = turn.request.user_response

        if answer == EDIT_FIELD_COMMAND:
            return self._edit_field(state, turn)

        if answer == REVIEW_FIELDS_COMMAND:
            return self._review(turn)

        if state.repeat_confirmation is not None:
            if answer is None or answer == CONTINUE_COMMAND:
                return self._repeat_prompt(state, turn)
            outcome = self._resolve_repeat(state, turn, answer)
            if outcome is not None:
                return outcome
        elif state.asked_field and answer is not None and answer != CONTINUE_COMMAND:
            outcome = self._ingest_answer(state, turn, answer)
            if outcome is not None:
                return outcome

        return self._next_question(state, turn)

    def _handle_confirmation(self, state: ConversationState, turn: _Turn) -> TurnResponse:
        if turn.request.user_response == EDIT_FIELD_COMMAND:
            return self._edit_field(state, turn)
        if turn.request.user_response == REVIEW_FIELDS_COMMAND:
            return self._review(turn)
        if turn.request.user_response == CONTINUE_COMMAND:
            return self._record_complete(turn.original.copy())

        template = state.current_template

        try:
            text_unimarc, fields = assemble(state, self.text_generator, turn.request.language)
        except Exception as e:
            logger.error(f"Serialization failed at confirmation: {e}")
            return self._error(turn, "Erro ao converter o registo para UNIMARC.", status=500, details=str(e))

        record = {
            'templateId': template.get('id'),
            'templateName': template.get('name'),
            'templateDesc': f"Registro catalogado automaticamente - {today_label()}",
            'filledFields': state.to_json()['filledFields'],
            'textUnimarc': text_unimarc,
            'fields': fields,
        }

        try:
            record_id = self.storage.save_record(record)
        except Exception as e:
            logger.error(f"Record storage failed: {e}")
            return self._error(turn, "Erro ao gravar o registo.", status=500, details=str(e))

        self._transition(state, ConversationStep.COMPLETED)
        logger.info(f"Record saved: {record_id}")

        return TurnResponse(
            type=ResponseType.RECORD_SAVED,
            conversation_state=state,
            payload={
                'recordId': record_id,
                'textUnimarc': text_unimarc,
                'record': record['filledFields'],
                'message': (
                    f"Registo gravado com sucesso "
                    f"({state.auto_filled_count} campos preenchidos automaticamente)."
                ),
            },
        )

    def _handle_completed(self, state: ConversationState, turn: _Turn) -> TurnResponse:
        return self._error(turn, "A conversa já foi concluída.")

    # =========================================================================
    # Field-filling phases
    # =========================================================================

    def _ingest_answer(self, state: ConversationState, turn: _Turn, answer: str) -> Optional[TurnResponse]:
        """Phase (a): store or discard the answer, then advance the cursor."""
        catalog = turn.catalog
        tag = state.asked_field
        field_def = catalog.definition_of(tag)

        if field_def is None:
            logger.warning(f"Asked field {tag} not in template, dropping")
            state.remaining_fields = [t for t in state.remaining_fields if t != tag]
            state.clear_cursor()
            return None

        usable = is_usable(answer, field_def)
        value = answer.strip()
        append = state.repeating_field
        state.repeating_field = False

        if not catalog.is_structured(field_def):
            if usable:
                self._store_flat(state, tag, value, append)
            elif not append:
                state.filled_fields.pop(tag, None)
            logger.debug(f"Answer for {tag}: {value!r} (usable={usable}, append={append})")
            return self._finish_or_offer(state, turn, field_def, offer=usable)

        sub = catalog.subfield(field_def, state.asked_subfield) or catalog.first_subfield(field_def)
        state.asked_subfield = sub.code

        if usable:
            self._store_subfield(state, tag, sub.code, value, append)
        elif not append:
            self._drop_subfield(state, tag, sub.code)
        logger.debug(f"Answer for {tag}${sub.code}: {value!r} (usable={usable}, append={append})")

        if usable and sub.repeatable:
            return self._raise_repeat(state, turn, field_def, sub.code)

        return self._advance(state, turn, field_def, sub.code)

    def _resolve_repeat(self, state: ConversationState, turn: _Turn, answer: str) -> Optional[TurnResponse]:
        """Phase (b): "sim" re-opens the slot, anything else advances."""
        catalog = turn.catalog
        confirmation = state.repeat_confirmation
        tag = confirmation.get('field')
        code = confirmation.get('subfield')
        state.repeat_confirmation = None

        field_def = catalog.definition_of(tag)
        if field_def is None:
            logger.warning(f"Repeat confirmation for unknown field {tag}, dropping")
            state.remaining_fields = [t for t in state.remaining_fields if t != tag]
            state.clear_cursor()
            return None

        state.asked_field = tag

        if answer.strip().lower() == YES_ANSWER:
            state.repeating_field = True
            if code:
                state.asked_subfield = code
            elif catalog.is_structured(field_def):
                state.pending_occurrence = True
                state.asked_subfield = catalog.first_subfield(field_def).code
            else:
                state.asked_subfield = None
            logger.info(f"Repeating {tag}{'$' + code if code else ''}")
            return None

        state.repeating_field = False
        if code:
            return self._advance(state, turn, field_def, code)

        self._finish_field(state, tag)
        return None

    def _next_question(self, state: ConversationState, turn: _Turn) -> TurnResponse:
        """Phase (c)/(d): ask the next slot, or complete the record."""
        catalog = turn.catalog

        while state.remaining_fields or state.asked_field:
            tag = state.asked_field or state.remaining_fields[0]
            field_def = catalog.definition_of(tag)

            if field_def is None:
                logger.warning(f"Field {tag} not found in template definition, removing")
                state.remaining_fields = [t for t in state.remaining_fields if t != tag]
                state.clear_cursor()
                continue

            code = state.asked_subfield if state.asked_field == tag else None
            question = turn.selector.build_question(field_def, code)

            state.asked_field = tag
            state.asked_subfield = question.subfield

            return TurnResponse(
                type=ResponseType.FIELD_QUESTION,
                conversation_state=state,
                payload={
                    'field': question.field,
                    'subfield': question.subfield,
                    'fieldName': question.field_name,
                    'subfieldName': question.subfield_name,
                    'question': question.question,
                    'tips': list(question.tips),
                    'subfieldTips': list(question.subfield_tips),
                    'mandatory': question.mandatory,
                },
            )

        state.clear_cursor()
        self._transition(state, ConversationStep.CONFIRMATION)
        return self._record_complete(state)

    @staticmethod
    def _record_complete(state: ConversationState) -> TurnResponse:
        template = state.current_template
        return TurnResponse(
            type=ResponseType.RECORD_COMPLETE,
            conversation_state=state,
            payload={
                'record': state.to_json()['filledFields'],
                'template': {'id': template.get('id'), 'name': template.get('name')},
            },
        )

    # =========================================================================
    # Commands
    # =========================================================================

    @staticmethod
    def _review(turn: _Turn) -> TurnResponse:
        """Read-only: echo the submitted snapshot."""
        snapshot = turn.original.copy()
        return TurnResponse(
            type=ResponseType.REVIEW_FIELDS_DISPLAY,
            conversation_state=snapshot,
            payload={
                'filledFields': snapshot.to_json()['filledFields'],
                'remainingFields': list(snapshot.remaining_fields),
            },
        )

    def _edit_field(self, state: ConversationState, turn: _Turn) -> TurnResponse:
        tag = turn.request.field_to_edit
        if not tag or not turn.catalog.has_tag(tag):
            return self._error(turn, f"Campo {tag} não existe no template.")

        state.filled_fields.pop(tag, None)
        state.remaining_fields = [tag] + [t for t in state.remaining_fields if t != tag]
        state.clear_cursor()

        if state.step == ConversationStep.CONFIRMATION:
            self._transition(state, ConversationStep.FIELD_FILLING)

        logger.info(f"Editing field {tag}")
        return self._next_question(state, turn)

    # =========================================================================
    # Repeat protocol
    # =========================================================================

    def _raise_repeat(self, state: ConversationState, turn: _Turn, field_def: FieldDef,
                      code: Optional[str]) -> TurnResponse:
        state.repeat_confirmation = {'field': field_def.tag}
        if code:
            state.repeat_confirmation['subfield'] = code
            state.asked_subfield = code
        state.asked_field = field_def.tag
        state.repeating_field = True
        return self._repeat_prompt(state, turn)

    def _repeat_prompt(self, state: ConversationState, turn: _Turn) -> TurnResponse:
        confirmation = state.repeat_confirmation
        tag = confirmation.get('field')
        code = confirmation.get('subfield')
        field_def = turn.catalog.definition_of(tag)

        return TurnResponse(
            type=ResponseType.REPEAT_CONFIRMATION,
            conversation_state=state,
            payload={
                'field': tag,
                'subfield': code,
                'fieldName': turn.catalog.translated_name(field_def, turn.request.language) if field_def else tag,
                'question': turn.selector.repeat_question(tag, code),
            },
        )

    def _advance(self, state: ConversationState, turn: _Turn, field_def: FieldDef,
                 code: Optional[str]) -> Optional[TurnResponse]:
        following = turn.catalog.next_subfield(field_def, code)
        if following is not None:
            state.asked_field = field_def.tag
            state.asked_subfield = following.code
            return None
        return self._finish_or_offer(state, turn, field_def, offer=True)

    def _finish_or_offer(self, state: ConversationState, turn: _Turn, field_def: FieldDef,
                         offer: bool) -> Optional[TurnResponse]:
        """Offer another occurrence of a repeatable field, or close the field."""
        if (offer and field_def.repeatable and not state.pending_occurrence
                and is_usable(self._current_occurrence(state, field_def))):
            return self._raise_repeat(state, turn, field_def, None)

        self._finish_field(state, field_def.tag)
        return None

    @staticmethod
    def _finish_field(state: ConversationState, tag: str) -> None:
        if tag in state.filled_fields:
            kept = clean_value(state.filled_fields[tag])
            if kept is None:
                logger.info(f"Field {tag} has no usable value, pruned")
                del state.filled_fields[tag]
            else:
                state.filled_fields[tag] = kept

        state.remaining_fields = [t for t in state.remaining_fields if t != tag]
        state.clear_cursor()

    # =========================================================================
    # Value storage
    # =========================================================================

    @staticmethod
    def _current_occurrence(state: ConversationState, field_def: FieldDef) -> Any:
        value = state.filled_fields.get(field_def.tag)
        if isinstance(value, list) and value and isinstance(value[-1], dict):
            return value[-1]
        return value

    @staticmethod
    def _store_flat(state: ConversationState, tag: str, value: str, append: bool) -> None:
        existing = state.filled_fields.get(tag)
        if append and existing is not None:
            existing = existing if isinstance(existing, list) else [existing]
            state.filled_fields[tag] = existing + [value]
        else:
            state.filled_fields[tag] = value

    @staticmethod
    def _store_subfield(state: ConversationState, tag: str, code: str, value: str, append: bool) -> None:
        filled = state.filled_fields
        existing = filled.get(tag)

        if state.pending_occurrence:
            opened = {code: value}
            if isinstance(existing, list):
                existing.append(opened)
            elif isinstance(existing, dict) and existing:
                filled[tag] = [existing, opened]
            else:
                filled[tag] = opened
            state.pending_occurrence = False
            return

        if isinstance(existing, list) and existing and isinstance(existing[-1], dict):
            occurrence = existing[-1]
        elif isinstance(existing, dict):
            occurrence = existing
        else:
            occurrence = filled[tag] = {}

        if append and code in occurrence:
            prior = occurrence[code]
            occurrence[code] = (prior if isinstance(prior, list) else [prior]) + [value]
        else:
            occurrence[code] = value

    @staticmethod
    def _drop_subfield(state: ConversationState, tag: str, code: str) -> None:
        # A pending occurrence has not been opened yet; earlier ones stay intact
        if state.pending_occurrence:
            return
        existing = state.filled_fields.get(tag)
        if isinstance(existing, list) and existing and isinstance(existing[-1], dict):
            existing[-1].pop(code, None)
        elif isinstance(existing, dict):
            existing.pop(code, None)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _manual_choice(templates, user_response) -> Optional[dict]:
        if not user_response:
            return None
        choice = user_response.strip()
        for template in templates:
            if choice == str(template.get('name')) or choice == str(template.get('id')):
                logger.info(f"Template chosen manually: {template.get('name')}")
                return template
        return None

    @staticmethod
    def _match_template(templates, answer) -> Optional[dict]:
        if not isinstance(answer, str):
            return None
        name = answer.strip().strip('"\'').strip()
        for template in templates:
            if template.get('name') == name:
                return template
        lowered = name.lower()
        for template in templates:
            if str(template.get('name', '')).lower() == lowered:
                return template
        return None

    @staticmethod
    def _transition(state: ConversationState, target: ConversationStep) -> None:
        if target not in TRANSITIONS[state.step]:
            raise ValueError(f"Illegal step transition {state.step.value} -> {target.value}")
        logger.info(f"Step transition: {state.step.value} -> {target.value}")
        state.step = target

    @staticmethod
    def _error(turn: _Turn, message: str, status: int = 400, details: Optional[str] = None) -> TurnResponse:
        payload = {'error': message}
        if details:
            payload['details'] = details
        logger.warning(f"Turn error ({status}): {message}")
        return TurnResponse(
            type=ResponseType.ERROR,
            conversation_state=turn.original.copy(),
            payload=payload,
            status_code=status,
        )
