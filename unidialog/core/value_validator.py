"""
Value Validator - Decide whether an answer is a usable field value

Responsibilities:
- Reject blanks and the non-answer vocabulary ("n/a", "não", "-", ...)
- Recurse into sub-field maps and repeated occurrences
- Strip the non-usable parts of inferred payloads

Design principles:
- Pure functions, no side effects
- Same rule for interview answers and bulk inference output
- Non-answers are never stored, mandatory or not
"""

from typing import Any, Optional

# Compared after strip() + lower()
NON_ANSWERS = frozenset({
    "n/a",
    "não se aplica",
    "não",
    "nao",
    "-",
    "none",
    "null",
})


def is_usable(value: Any, field_def: Any = None) -> bool:
    """
    Check whether a candidate value counts as a real answer.

    Args:
        value: str, dict of sub-field values, list of occurrences, or anything
        field_def: Optional field definition. Accepted for call-site symmetry;
            the mandatory flag does not change the outcome.

    Returns:
        bool: True if the value (or at least one nested entry) is usable

    Examples:
        >>> is_usable("Memorial do Convento")
        True
        >>> is_usable("  NÃO ")
        False
        >>> is_usable({'a': 'por', 'c': 'n/a'})
        True
        >>> is_usable(['', None])
        False
    """
    if value is None:
        return False

    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return False
        return trimmed.lower() not in NON_ANSWERS

    if isinstance(value, dict):
        return any(is_usable(v, field_def) for v in value.values())

    if isinstance(value, (list, tuple)):
        return any(is_usable(item, field_def) for item in value)

    return False


def clean_value(value: Any) -> Optional[Any]:
    """
    Keep only the usable part of a value.

    - str: trimmed string, or None
    - dict: same keys minus non-usable entries, or None if nothing survives
    - list/tuple: list of cleaned items, collapsed to the single item when
      only one survives, or None

    Args:
        value: Raw value (typically model output)

    Returns:
        Cleaned value or None when nothing is usable

    Examples:
        >>> clean_value({'a': 'por', 'c': 'não'})
        {'a': 'por'}
        >>> clean_value(['x', '-'])
        'x'
    """
    if isinstance(value, str):
        return value.strip() if is_usable(value) else None

    if isinstance(value, dict):
        cleaned = {}
        for key, sub_value in value.items():
            kept = clean_value(sub_value)
            if kept is not None:
                cleaned[str(key)] = kept
        return cleaned or None

    if isinstance(value, (list, tuple)):
        items = [kept for kept in (clean_value(item) for item in value) if kept is not None]
        if not items:
            return None
        return items[0] if len(items) == 1 else items

    return None


def _is_text(value: Any) -> bool:
    return isinstance(value, str) or (
        isinstance(value, list) and all(isinstance(item, str) for item in value)
    )


def matches_shape(value: Any, structured: bool) -> bool:
    """
    Check a cleaned value against the storage shape of its field.

    Flat and control fields hold a string or a list of strings. Structured
    fields hold a {code: str | [str]} map or a list of such maps.

    >>> matches_shape({'a': 'x'}, structured=False)
    False
    >>> matches_shape([{'a': 'x'}, {'a': ['y', 'z']}], structured=True)
    True
    """
    if not structured:
        return _is_text(value)

    occurrences = value if isinstance(value, list) else [value]
    return all(
        isinstance(occurrence, dict) and all(_is_text(v) for v in occurrence.values())
        for occurrence in occurrences
    )
