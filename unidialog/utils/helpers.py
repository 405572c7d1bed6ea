"""
Utility helpers for the cataloguing dialogue

ID generation, timestamps and lenient JSON handling for model output.
"""

import json
import logging
import re
import uuid
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def generate_record_id(short=True):
    """
    Generate unique record identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Record ID

    Examples:
        >>> generate_record_id()
        'a3f7e2b9'
    """
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def utc_timestamp():
    """ISO-8601 UTC timestamp, second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def today_label():
    """Local date as DD/MM/YYYY (used in record descriptions)."""
    return datetime.now().strftime("%d/%m/%Y")


def strip_code_fences(text):
    """
    Remove a surrounding markdown code fence, if any.

    >>> strip_code_fences('```json\\n{"a": 1}\\n```')
    '{"a": 1}'
    """
    if text is None:
        return ""
    return _FENCE_RE.sub("", text.strip()).strip()


def extract_json_object(text):
    """
    Cut the first balanced {...} block out of text.

    Returns the stripped text unchanged when no opening brace exists.
    Unbalanced trailing braces are closed.
    """
    text = strip_code_fences(text)
    start = text.find('{')
    if start == -1:
        return text

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    # Model stopped mid-object
    return text[start:] + ('}' * depth)


def loads_lenient(text):
    """
    Parse a JSON object out of model output.

    Args:
        text (str): Raw model output (may be fenced or wrapped in prose)

    Returns:
        dict: Parsed object, or {} when nothing parseable was found
    """
    if isinstance(text, dict):
        return text
    if not isinstance(text, str) or not text.strip():
        return {}

    candidate = extract_json_object(text)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning(f"Unparsable JSON from model ({e}): {text[:200]!r}")
        return {}

    if not isinstance(parsed, dict):
        logger.warning(f"Expected JSON object from model, got {type(parsed).__name__}")
        return {}

    return parsed
