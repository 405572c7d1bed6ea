"""
Person Index - People named in a catalogued record

Responsibilities:
- Pick the name out of personal-name fields (100, 700, 701, 702)
- Assign a role from the field name, falling back to the tag
- Give each distinct name a stable id

Design principles:
- Pure functions over the normalized field list
- Same name, same id, across records
- Deterministic role choice (no model call at save time)
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

PERSON_TAGS = ("100", "700", "701", "702")

_PERSON_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "unidialog/person")


class PersonRole(str, Enum):
    AUTHOR = "AUTHOR"
    TRANSLATOR = "TRANSLATOR"
    COMPOSER = "COMPOSER"
    INTERPRETER = "INTERPRETER"
    ILLUSTRATOR = "ILLUSTRATOR"
    EDITOR = "EDITOR"
    OTHER = "OTHER"


# Checked in order against the lowercased field name (pt and en)
_ROLE_KEYWORDS = [
    (("tradu", "translat"), PersonRole.TRANSLATOR),
    (("ilustr", "illustr"), PersonRole.ILLUSTRATOR),
    (("compos",), PersonRole.COMPOSER),
    (("intérprete", "interprete", "interpret", "perform"), PersonRole.INTERPRETER),
    (("editor", "organiza", "compila"), PersonRole.EDITOR),
    (("autor", "author"), PersonRole.AUTHOR),
]

# UNIMARC 700/701: primary and alternative responsibility
_ROLE_BY_TAG = {
    "700": PersonRole.AUTHOR,
    "701": PersonRole.AUTHOR,
}


def infer_person_role(tag: str, field_name: Optional[str] = None) -> PersonRole:
    """
    Role of the person named in a field.

    >>> infer_person_role('702', 'Tradutor')
    <PersonRole.TRANSLATOR: 'TRANSLATOR'>
    >>> infer_person_role('700', None)
    <PersonRole.AUTHOR: 'AUTHOR'>
    """
    name = (field_name or "").lower()
    for keywords, role in _ROLE_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return role
    return _ROLE_BY_TAG.get(tag, PersonRole.OTHER)


def person_id(name: str) -> str:
    return uuid.uuid5(_PERSON_NAMESPACE, name.strip().lower()).hex[:12]


def _first_text(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _names_in(entry: Dict[str, Any]) -> List[str]:
    subfields = entry.get('subfields')
    if subfields:
        occurrences = subfields if isinstance(subfields, list) else [subfields]
        names = [_first_text(occ.get('a')) for occ in occurrences if isinstance(occ, dict)]
        return [n for n in names if n]

    value = entry.get('value')
    values = value if isinstance(value, list) else [value]
    return [n for n in (_first_text(v) for v in values) if n]


def extract_persons(fields: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    People named in a record's field list.

    Sub-field $a of each occurrence is the name; flat and control values are
    the name themselves. A (name, role) pair appears once per record.

    Args:
        fields: Normalized field list (see record_assembler.build_field_list)

    Returns:
        list[dict]: [{'id', 'name', 'role'}] in field order
    """
    persons = []
    seen = set()

    for entry in fields:
        tag = str(entry.get('tag'))
        if tag not in PERSON_TAGS:
            continue

        role = infer_person_role(tag, entry.get('fieldName'))
        for name in _names_in(entry):
            key = (name, role)
            if key in seen:
                continue
            seen.add(key)
            persons.append({'id': person_id(name), 'name': name, 'role': role.value})

    return persons
