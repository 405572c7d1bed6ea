"""
Template contracts for the UNIMARC cataloguing dialogue.

This module defines immutable data structures that describe a cataloguing
template: control fields, data fields and their sub-field definitions. They
are parsed once per turn from the raw template dict carried in the
conversation state and never mutated.

Design principles:
- Frozen dataclasses (immutable after creation)
- Shape resolved once at parse time (FLAT vs STRUCTURED)
- No dependencies on other modules
- Raw template dict stays the source of truth for round-tripping

Contents:
- FieldShape / FieldKind: closed variant sets for field definitions
- FieldTranslation / SubfieldTranslation: localized names, labels and tips
- SubFieldDef / FieldDef / Template: the schema itself
- FieldQuestion: immutable question produced by the Question Selector

Usage:
    from unidialog.contracts import Template, parse_template
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class FieldShape(str, Enum):
    """How a field stores its value."""
    FLAT = "flat"              # single string (control fields, data fields without sub-fields)
    STRUCTURED = "structured"  # map of sub-field code -> value


class FieldKind(str, Enum):
    """Where the field was declared in the template (used for storage)."""
    CONTROL = "CONTROL"
    DATA = "DATA"


@dataclass(frozen=True)
class FieldTranslation:
    """Localized field name and authored tips."""
    language: str
    name: str
    tips: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SubfieldTranslation:
    """Localized sub-field label and authored tips."""
    language: str
    label: str
    tips: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SubFieldDef:
    """
    Sub-field definition of a data field.

    Attributes:
        code: Single-letter sub-field code (e.g. 'a', 'f')
        mandatory: Whether the cataloguer is expected to fill it
        repeatable: Whether more than one value may be recorded
        translations: Localized labels
    """
    code: str
    mandatory: bool = False
    repeatable: bool = False
    translations: Tuple[SubfieldTranslation, ...] = ()


@dataclass(frozen=True)
class FieldDef:
    """
    Control or data field definition.

    The shape is derived from the sub-field list: a data field with at least
    one sub-field is STRUCTURED, everything else is FLAT.

    Attributes:
        tag: UNIMARC tag, unique within the template (e.g. '001', '200')
        kind: CONTROL or DATA
        mandatory: Whether the field is mandatory
        repeatable: Whether the field may occur more than once
        translations: Localized names and tips
        subfields: Ordered sub-field definitions (empty for flat fields)
    """
    tag: str
    kind: FieldKind
    mandatory: bool = False
    repeatable: bool = False
    translations: Tuple[FieldTranslation, ...] = ()
    subfields: Tuple[SubFieldDef, ...] = ()

    @property
    def shape(self) -> FieldShape:
        if self.kind == FieldKind.DATA and self.subfields:
            return FieldShape.STRUCTURED
        return FieldShape.FLAT


@dataclass(frozen=True)
class Template:
    """
    Cataloguing template (material type schema).

    Attributes:
        id: Template identifier from the template source
        name: Human-readable name, also the value the model must answer with
        description: Optional free-text description
        control_fields: Control field definitions, in template order
        data_fields: Data field definitions, in template order
    """
    id: str
    name: str
    description: Optional[str] = None
    control_fields: Tuple[FieldDef, ...] = ()
    data_fields: Tuple[FieldDef, ...] = ()

    @property
    def fields(self) -> Tuple[FieldDef, ...]:
        return self.control_fields + self.data_fields


@dataclass(frozen=True)
class FieldQuestion:
    """
    Immutable question returned by the Question Selector.

    Attributes:
        field: Tag being asked
        subfield: Sub-field code, None for flat fields
        field_name: Translated field name (falls back to the tag)
        subfield_name: Translated sub-field label (falls back to the code)
        question: Full question text shown to the cataloguer
        mandatory: Whether the asked slot is mandatory
        tips: Field-level tips (including the synthesized optional tip)
        subfield_tips: Sub-field tips
    """
    field: str
    subfield: Optional[str]
    field_name: str
    subfield_name: Optional[str]
    question: str
    mandatory: bool
    tips: Tuple[str, ...] = ()
    subfield_tips: Tuple[str, ...] = ()


def _tips(raw: Any) -> Tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(tip) for tip in raw if tip)


def _parse_subfield(raw: Dict[str, Any]) -> SubFieldDef:
    translations = tuple(
        SubfieldTranslation(
            language=t.get('language', ''),
            label=t.get('label') or '',
            tips=_tips(t.get('tips'))
        )
        for t in raw.get('translations') or []
        if isinstance(t, dict)
    )
    return SubFieldDef(
        code=str(raw['code']),
        mandatory=bool(raw.get('mandatory', False)),
        repeatable=bool(raw.get('repeatable', False)),
        translations=translations
    )


def _parse_field(raw: Dict[str, Any], kind: FieldKind) -> FieldDef:
    translations = tuple(
        FieldTranslation(
            language=t.get('language', ''),
            name=t.get('name') or '',
            tips=_tips(t.get('tips'))
        )
        for t in raw.get('translations') or []
        if isinstance(t, dict)
    )
    subfields: Tuple[SubFieldDef, ...] = ()
    if kind == FieldKind.DATA:
        subfields = tuple(
            _parse_subfield(sf) for sf in raw.get('subFieldDef') or []
            if isinstance(sf, dict) and sf.get('code')
        )
    return FieldDef(
        tag=str(raw['tag']),
        kind=kind,
        mandatory=bool(raw.get('mandatory', False)),
        repeatable=bool(raw.get('repeatable', False)),
        translations=translations,
        subfields=subfields
    )


def parse_template(raw: Dict[str, Any]) -> Template:
    """
    Build a Template from the raw dict returned by the template source.

    Args:
        raw: Template dict with 'id', 'name', 'controlFields', 'dataFields'

    Returns:
        Template: Immutable parsed template

    Raises:
        TypeError: If raw is not a dict
        ValueError: If required keys are missing or a field has no tag
    """
    if not isinstance(raw, dict):
        raise TypeError(f"template must be dict, got {type(raw).__name__}")

    missing = {'id', 'name'} - set(raw.keys())
    if missing:
        raise ValueError(f"template missing required keys: {missing}")

    try:
        control_fields = tuple(
            _parse_field(f, FieldKind.CONTROL) for f in raw.get('controlFields') or []
        )
        data_fields = tuple(
            _parse_field(f, FieldKind.DATA) for f in raw.get('dataFields') or []
        )
    except KeyError as e:
        raise ValueError(f"template {raw.get('name')!r} has a field without {e}") from e

    return Template(
        id=str(raw['id']),
        name=str(raw['name']),
        description=raw.get('description'),
        control_fields=control_fields,
        data_fields=data_fields
    )
