"""
Question Selector - Build the question for one field / sub-field slot

Responsibilities:
- Resolve the slot to ask (cursored sub-field or first sub-field)
- Render question text with translated names, tag, code and annotation
- Attach authored tips plus the synthesized "may be left blank" tip

Design principles:
- Stateless: catalog and language are passed in
- Deterministic: same slot always produces the same question
- Returns immutable FieldQuestion objects
"""

import logging
from typing import Optional

from unidialog.contracts import FieldDef, FieldQuestion
from unidialog.core.field_catalog import FieldCatalog

logger = logging.getLogger(__name__)


# Fixed phrases per language; unknown languages use Portuguese
PHRASES = {
    'pt': {
        'ask': "Por favor, forneça",
        'mandatory': "obrigatório",
        'optional': "opcional",
        'optional_tip': "Este campo é opcional e pode ser deixado em branco.",
        'tips_header': "Dicas:",
        'repeat': "Deseja adicionar outro valor para {slot}? (sim/não)",
    },
    'en': {
        'ask': "Please provide",
        'mandatory': "mandatory",
        'optional': "optional",
        'optional_tip': "This field is optional and may be left blank.",
        'tips_header': "Tips:",
        'repeat': "Do you want to add another value for {slot}? (sim/não)",
    },
}


def phrases_for(language: str) -> dict:
    return PHRASES.get(language, PHRASES['pt'])


class QuestionSelector:
    """Stateless question builder over a FieldCatalog"""

    def __init__(self, catalog: FieldCatalog, language: str = "pt"):
        self.catalog = catalog
        self.language = language
        self.phrases = phrases_for(language)

    def build_question(self, field_def: FieldDef, subfield_code: Optional[str] = None) -> FieldQuestion:
        """
        Build the question for a field slot.

        For structured fields the cursored sub-field is asked when it exists,
        otherwise the first sub-field. Flat fields ignore subfield_code.

        Args:
            field_def: Field being asked
            subfield_code: Cursored sub-field code, if any

        Returns:
            FieldQuestion: Immutable question
        """
        catalog = self.catalog
        field_name = catalog.translated_name(field_def, self.language)
        field_tips = list(catalog.tips(field_def, self.language))

        sub = None
        if catalog.is_structured(field_def):
            sub = catalog.subfield(field_def, subfield_code) or catalog.first_subfield(field_def)

        text = f"{self.phrases['ask']}: {field_name} [{field_def.tag}]"

        if sub is not None:
            subfield_name = catalog.subfield_label(sub, self.language)
            subfield_tips = list(catalog.subfield_tips(sub, self.language))
            mandatory = sub.mandatory
            text += f" - {subfield_name} (${sub.code})"
        else:
            subfield_name = None
            subfield_tips = []
            mandatory = field_def.mandatory

        annotation = self.phrases['mandatory'] if mandatory else self.phrases['optional']
        text += f" ({annotation})."

        if not mandatory:
            field_tips.append(self.phrases['optional_tip'])

        shown_tips = field_tips + subfield_tips
        if shown_tips:
            bullets = "\n".join(f"• {tip}" for tip in shown_tips)
            text += f"\n\n{self.phrases['tips_header']}\n{bullets}"

        logger.debug(f"Question for {field_def.tag}{'$' + sub.code if sub else ''}: {text!r}")

        return FieldQuestion(
            field=field_def.tag,
            subfield=sub.code if sub is not None else None,
            field_name=field_name,
            subfield_name=subfield_name,
            question=text,
            mandatory=mandatory,
            tips=tuple(field_tips),
            subfield_tips=tuple(subfield_tips),
        )

    def repeat_question(self, tag: str, subfield_code: Optional[str] = None) -> str:
        slot = f"{tag}${subfield_code}" if subfield_code else tag
        return self.phrases['repeat'].format(slot=slot)
