"""
Field Catalog - Read-only view over a cataloguing template

Responsibilities:
- Canonical tag order (numeric ascending)
- Field and sub-field lookup by tag / code
- Translated names, labels and tips with fallbacks

Design principles:
- Stateless after construction (template is immutable)
- Lookups resolved once into dicts
- No knowledge of the conversation
"""

import logging
from typing import Dict, List, Optional, Tuple

from unidialog.contracts import FieldDef, FieldShape, SubFieldDef, Template, parse_template

logger = logging.getLogger(__name__)


def tag_sort_key(tag: str) -> Tuple[int, int, str]:
    """
    Numeric tags first in numeric order, then the rest in string order.

    >>> sorted(['200', '010', '001', 'LDR', '101'], key=tag_sort_key)
    ['001', '010', '101', '200', 'LDR']
    """
    if tag.isascii() and tag.isdigit():
        return (0, int(tag), tag)
    return (1, 0, tag)


class FieldCatalog:
    """Lookup service over one Template"""

    def __init__(self, template: Template):
        if not isinstance(template, Template):
            raise TypeError(f"template must be Template, got {type(template).__name__}")

        self.template = template
        self._fields: Dict[str, FieldDef] = {}

        for field_def in template.fields:
            if field_def.tag in self._fields:
                # First declaration wins; templates are not validated here
                logger.warning(f"Template {template.name!r}: duplicate tag {field_def.tag}")
                continue
            self._fields[field_def.tag] = field_def

        self._ordered_tags = sorted(self._fields.keys(), key=tag_sort_key)

    @classmethod
    def from_dict(cls, raw_template: dict) -> "FieldCatalog":
        return cls(parse_template(raw_template))

    # =========================================================================
    # Structure
    # =========================================================================

    def all_tags(self) -> List[str]:
        return list(self._ordered_tags)

    def has_tag(self, tag: str) -> bool:
        return tag in self._fields

    def definition_of(self, tag: str) -> Optional[FieldDef]:
        return self._fields.get(tag)

    @staticmethod
    def is_structured(field_def: FieldDef) -> bool:
        return field_def.shape == FieldShape.STRUCTURED

    @staticmethod
    def first_subfield(field_def: FieldDef) -> Optional[SubFieldDef]:
        return field_def.subfields[0] if field_def.subfields else None

    @staticmethod
    def subfield(field_def: FieldDef, code: Optional[str]) -> Optional[SubFieldDef]:
        for sub in field_def.subfields:
            if sub.code == code:
                return sub
        return None

    @staticmethod
    def next_subfield(field_def: FieldDef, code: Optional[str]) -> Optional[SubFieldDef]:
        """
        Sub-field following `code` by position.

        An unknown code behaves like "before the first", matching the
        position lookup returning -1.
        """
        codes = [sub.code for sub in field_def.subfields]
        index = codes.index(code) if code in codes else -1
        if index + 1 < len(field_def.subfields):
            return field_def.subfields[index + 1]
        return None

    # =========================================================================
    # Translations
    # =========================================================================

    @staticmethod
    def translated_name(field_def: FieldDef, language: str) -> str:
        for translation in field_def.translations:
            if translation.language == language and translation.name:
                return translation.name
        return field_def.tag

    @staticmethod
    def tips(field_def: FieldDef, language: str) -> Tuple[str, ...]:
        for translation in field_def.translations:
            if translation.language == language:
                return translation.tips
        return ()

    @staticmethod
    def subfield_label(sub: SubFieldDef, language: str) -> str:
        for translation in sub.translations:
            if translation.language == language and translation.label:
                return translation.label
        return sub.code

    @staticmethod
    def subfield_tips(sub: SubFieldDef, language: str) -> Tuple[str, ...]:
        for translation in sub.translations:
            if translation.language == language:
                return translation.tips
        return ()
