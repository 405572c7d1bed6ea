"""
Record Assembler - Turn filled fields into a storable record

Responsibilities:
- Normalized field list for storage (names, labels, flags)
- Deterministic UNIMARC text rendering
- Cleaning of model-produced UNIMARC text
- Assembly at confirmation (text + field list)
- Re-assembly of edited stored records

Design principles:
- Catalog order for output, regardless of filledFields key order
- Stored values only (non-answers never reach this module)
- Serialization failures raise, caller decides how to report
"""

import logging
from typing import Any, Dict, List, Tuple

from unidialog.contracts import FieldDef, FieldKind
from unidialog.core.field_catalog import FieldCatalog, tag_sort_key
from unidialog.core.value_validator import clean_value, is_usable, matches_shape
from unidialog.utils.helpers import strip_code_fences

logger = logging.getLogger(__name__)

INDICATORS = "  "

# Lines a model sometimes adds around the record
_PROSE_PREFIXES = ("aqui está", "segue", "here is", "output", "saída", "unimarc:")


class SerializationError(Exception):
    """Raised when filled fields cannot be turned into UNIMARC text."""


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    return [value]


def build_field_list(filled_fields: Dict[str, Any], catalog: FieldCatalog, language: str) -> List[dict]:
    """
    Build the normalized field list stored alongside the record.

    Args:
        filled_fields: tag -> stored value
        catalog: Catalog of the record's template
        language: Translation language

    Returns:
        list[dict]: One entry per filled tag, in catalog order
    """
    fields = []

    for tag in sorted(filled_fields.keys(), key=tag_sort_key):
        value = filled_fields[tag]
        field_def = catalog.definition_of(tag)

        if field_def is None:
            logger.warning(f"Filled tag {tag} not in template, stored without metadata")
            fields.append({
                'tag': tag,
                'fieldType': FieldKind.CONTROL.value if not isinstance(value, (dict, list)) else FieldKind.DATA.value,
                'value': value if isinstance(value, str) else None,
                'subfields': value if isinstance(value, (dict, list)) else None,
                'fieldName': tag,
                'subfieldNames': None,
                'isMandatory': False,
                'isRepeatable': False,
            })
            continue

        entry = {
            'tag': tag,
            'fieldType': field_def.kind.value,
            'value': None,
            'subfields': None,
            'fieldName': catalog.translated_name(field_def, language),
            'subfieldNames': None,
            'isMandatory': field_def.mandatory,
            'isRepeatable': field_def.repeatable,
        }

        if field_def.kind == FieldKind.DATA:
            entry['subfieldNames'] = {
                sub.code: catalog.subfield_label(sub, language) for sub in field_def.subfields
            }

        if isinstance(value, dict) or (isinstance(value, list) and any(isinstance(v, dict) for v in value)):
            entry['subfields'] = value
        else:
            entry['value'] = value

        fields.append(entry)

    return fields


def _render_subfields(occurrence: Dict[str, Any], field_def: FieldDef) -> str:
    # Template order first, then codes the template does not know
    known = [sub.code for sub in field_def.subfields]
    codes = [c for c in known if c in occurrence] + sorted(c for c in occurrence if c not in known)

    parts = []
    for code in codes:
        for item in _as_list(occurrence[code]):
            if is_usable(item):
                parts.append(f"${code}{str(item).strip()}")
    return "".join(parts)


def _render_field(tag: str, value: Any, field_def: FieldDef) -> List[str]:
    if field_def.kind == FieldKind.CONTROL:
        return [f"{tag} {item.strip()}" for item in _as_list(value) if isinstance(item, str) and is_usable(item)]

    lines = []
    for occurrence in _as_list(value):
        if isinstance(occurrence, dict):
            body = _render_subfields(occurrence, field_def)
        elif is_usable(occurrence):
            body = str(occurrence).strip()
        else:
            body = ""
        if body:
            lines.append(f"{tag}{INDICATORS}{body}")

    if not lines and field_def.mandatory:
        lines.append(f"{tag}{INDICATORS}$a")
    return lines


def render_unimarc(filled_fields: Dict[str, Any], catalog: FieldCatalog) -> str:
    """
    Render filled fields as UNIMARC text, one field per line.

    Rules:
        - control field: "TAG value"
        - data field: "TAG" + two blank indicators + "$code"-prefixed sub-fields
        - flat data value follows the indicators directly
        - mandatory data field without a usable value: bare "$a"
        - repeated sub-field values repeat "$code"
        - repeated field occurrences get one line each

    Example:
        >>> render_unimarc({'001': 'X1', '101': {'a': 'por', 'c': 'eng'}}, catalog)
        '001 X1\\n101  $apor$ceng'
    """
    lines = []

    for tag in catalog.all_tags():
        field_def = catalog.definition_of(tag)
        if tag in filled_fields:
            lines.extend(_render_field(tag, filled_fields[tag], field_def))
        elif field_def.kind == FieldKind.DATA and field_def.mandatory:
            lines.append(f"{tag}{INDICATORS}$a")

    return "\n".join(lines)


def clean_unimarc_text(text: str) -> str:
    """
    Strip fences and chatter around model-produced UNIMARC text.

    Fence lines, leading prose lines (e.g. "Aqui está o registo:") and blank
    lines are dropped. Returns "" when nothing remains.
    """
    text = strip_code_fences(text or "")

    lines = [line.rstrip() for line in text.splitlines() if not line.strip().startswith("```")]
    while lines and (not lines[0].strip() or lines[0].strip().lower().startswith(_PROSE_PREFIXES)):
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()

    return "\n".join(line for line in lines if line.strip())


def assemble(state, text_generator, language: str) -> Tuple[str, List[dict]]:
    """
    Produce the UNIMARC text and normalized field list for a finished record.

    Args:
        state: ConversationState at confirmation (current_template set)
        text_generator: Object with serialize_to_unimarc(filled_fields, template)
        language: Translation language for names and labels

    Returns:
        tuple: (unimarc_text, field_list)

    Raises:
        SerializationError: If the serializer fails or returns nothing usable
    """
    catalog = FieldCatalog.from_dict(state.current_template)

    try:
        raw_text = text_generator.serialize_to_unimarc(state.filled_fields, state.current_template)
    except Exception as e:
        raise SerializationError(f"UNIMARC serialization failed: {e}") from e

    text = clean_unimarc_text(raw_text)
    if not text:
        raise SerializationError("UNIMARC serialization returned empty text")

    fields = build_field_list(state.filled_fields, catalog, language)
    logger.info(f"Assembled record: {len(fields)} fields, {len(text.splitlines())} UNIMARC lines")

    return text, fields


def reassemble(filled_fields: Dict[str, Any], raw_template: dict,
               language: str) -> Tuple[Dict[str, Any], str, List[dict]]:
    """
    Rebuild a stored record from edited field values.

    Values are cleaned and checked against their field shape; unknown tags
    and values with the wrong shape are dropped. The text is rendered by the
    rules renderer, no model involved.

    Returns:
        tuple: (kept_filled_fields, unimarc_text, field_list)

    Raises:
        SerializationError: If the template is invalid or nothing usable is left
    """
    try:
        catalog = FieldCatalog.from_dict(raw_template)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Invalid template: {e}") from e

    kept = {}
    for tag, value in filled_fields.items():
        field_def = catalog.definition_of(str(tag))
        cleaned = clean_value(value)
        if field_def is None or cleaned is None or not matches_shape(cleaned, catalog.is_structured(field_def)):
            logger.warning(f"Dropping edited value for {tag}: {value!r}")
            continue
        kept[str(tag)] = cleaned

    if not kept:
        raise SerializationError("No usable field values to store")

    text = render_unimarc(kept, catalog)
    return kept, text, build_field_list(kept, catalog, language)
