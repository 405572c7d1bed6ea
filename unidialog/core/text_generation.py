"""
Catalog Text Generator - Prompts and output parsing for the three model calls

Responsibilities:
- Template selection prompt (answer with an exact template name)
- Bulk field inference prompt (JSON object keyed by tag)
- UNIMARC serialization prompt, or deterministic rule-based rendering

Design principles:
- Dependency injection: any client with generate() / generate_json()
- No torch import here (the client owns the model)
- Parsing is lenient; the Turn Engine decides what survives
"""

import json
import logging
from typing import Any, Dict, List

from unidialog.core.field_catalog import FieldCatalog
from unidialog.core.record_assembler import render_unimarc
from unidialog.utils.helpers import loads_lenient

logger = logging.getLogger(__name__)


SERIALIZER_MODES = {"llm", "rules"}

SELECTION_SYSTEM = "Responda apenas com o nome exato do template mais adequado."

BULK_SYSTEM = (
    "Você é um catalogador especialista em UNIMARC. Extraia da descrição apenas "
    "a informação explícita e responda só com um objeto JSON."
)

SERIALIZE_SYSTEM = (
    "Você é um especialista em UNIMARC. Converta o JSON fornecido para o formato de "
    "texto UNIMARC EXATO, seguindo as regras estritas. Inclua TODOS os valores válidos. "
    "Não inclua introduções, conclusões ou qualquer texto que não seja o UNIMARC puro. "
    "Se um valor for inválido ou uma explicação, use um subcampo principal vazio ('$a')."
)

SERIALIZE_RULES = """Converta o seguinte objeto JSON de campos UNIMARC para o formato de texto UNIMARC.
Siga estas regras estritas para CADA campo:
1. Tag do Campo: comece com a tag do campo (ex: "001", "200").
2. Indicadores: para campos de dados, adicione DOIS espaços em branco para os indicadores.
3. Subcampos: use o delimitador '$' seguido do código do subcampo (ex: '$a', '$b').
4. Valores simples: se o valor do campo for uma string, inclua-o diretamente após a tag (e indicadores, se aplicável).
5. Valores objeto: cada chave do objeto é um código de subcampo e o seu valor é o conteúdo do subcampo.
6. Valores repetidos: uma lista de valores num subcampo repete o código ('$a...$a...'); uma lista de objetos num campo gera uma linha por ocorrência.
7. Campos de dados obrigatórios sem valor: represente-os como um subcampo principal vazio ('$a').
8. Nova linha: cada campo DEVE estar numa nova linha.
9. Sem texto adicional: NÃO inclua introduções, conclusões, ou qualquer coisa que não seja UNIMARC puro.

Exemplo de conversão:
JSON de entrada:
{example_json}
Saída UNIMARC esperada:
{example_text}

Objeto JSON a converter:
{filled_json}"""

_EXAMPLE_FILLED = {
    "001": "ID_DO_REGISTRO",
    "101": {"a": "por", "c": "eng"},
    "200": {"a": "Título Principal", "e": "Subtítulo", "f": "Autor"},
}

_EXAMPLE_TEXT = "001 ID_DO_REGISTRO\n101  $apor$ceng\n200  $aTítulo Principal$eSubtítulo$fAutor"


class CatalogTextGenerator:
    """Text generation collaborator for the Turn Engine"""

    def __init__(self, hf_client, serializer: str = "llm", language: str = "pt"):
        """
        Args:
            hf_client: Client with generate(prompt, ...) and generate_json(prompt, ...)
            serializer: "llm" (model converts JSON to UNIMARC) or "rules"
                (deterministic renderer)
            language: Language used for field names in prompts

        Raises:
            TypeError: If hf_client lacks generate() / generate_json()
            ValueError: If serializer mode is unknown
        """
        for method in ('generate', 'generate_json'):
            if not (hasattr(hf_client, method) and callable(getattr(hf_client, method, None))):
                raise TypeError(f"hf_client must have callable {method}() method")

        if serializer not in SERIALIZER_MODES:
            raise ValueError(f"serializer must be one of {sorted(SERIALIZER_MODES)}, got {serializer!r}")

        self.hf_client = hf_client
        self.serializer = serializer
        self.language = language

        logger.info(f"Catalog text generator initialized (serializer={serializer})")

    # =========================================================================
    # Template selection
    # =========================================================================

    def select_template(self, description: str, candidate_names: List[str]) -> str:
        """
        Ask the model for the best template name.

        Returns:
            str: First line of the answer, quotes stripped (may not match any name)
        """
        prompt = (
            f"Material: \"{description}\"\n"
            f"Templates: {'|'.join(str(n) for n in candidate_names)}\n"
            f"Melhor:"
        )
        answer = self.hf_client.generate(prompt, max_tokens=20, temperature=0.0, system=SELECTION_SYSTEM)

        lines = [line.strip() for line in (answer or "").strip().splitlines() if line.strip()]
        first = lines[0] if lines else ""
        return first.rstrip('.').strip('"\'` ')

    # =========================================================================
    # Bulk inference
    # =========================================================================

    def build_bulk_prompt(self, description: str, template: Dict[str, Any]) -> str:
        catalog = FieldCatalog.from_dict(template)
        lines = []

        for tag in catalog.all_tags():
            field_def = catalog.definition_of(tag)
            name = catalog.translated_name(field_def, self.language)
            if catalog.is_structured(field_def):
                subs = ", ".join(
                    f"{sub.code}={catalog.subfield_label(sub, self.language)}" for sub in field_def.subfields
                )
                lines.append(f"- {tag} ({name}): objeto com subcampos {subs}")
            else:
                lines.append(f"- {tag} ({name}): texto")

        return (
            f"Descrição do material: \"{description}\"\n\n"
            f"Campos do template \"{catalog.template.name}\":\n"
            + "\n".join(lines)
            + "\n\nResponda com um objeto JSON cujas chaves são as tags. Inclua apenas campos "
              "cuja informação esteja explícita na descrição; omita os restantes. "
              "Para campos com subcampos use um objeto {\"código\": \"valor\"}.\n"
              "JSON:"
        )

    def bulk_infer_fields(self, description: str, template: Dict[str, Any]) -> Dict[str, Any]:
        """
        Infer as many field values as possible in one call.

        Returns:
            dict: tag -> value as produced by the model ({} when unparsable)
        """
        prompt = self.build_bulk_prompt(description, template)
        raw = self.hf_client.generate_json(prompt, max_tokens=800, temperature=0.0, system=BULK_SYSTEM)
        parsed = loads_lenient(raw)
        logger.debug(f"Bulk inference returned tags: {sorted(parsed.keys())}")
        return parsed

    # =========================================================================
    # UNIMARC serialization
    # =========================================================================

    def build_serialize_prompt(self, filled_fields: Dict[str, Any]) -> str:
        return SERIALIZE_RULES.format(
            example_json=json.dumps(_EXAMPLE_FILLED, indent=2, ensure_ascii=False),
            example_text=_EXAMPLE_TEXT,
            filled_json=json.dumps(filled_fields, indent=2, ensure_ascii=False),
        )

    def serialize_to_unimarc(self, filled_fields: Dict[str, Any], template: Dict[str, Any]) -> str:
        """
        Convert filled fields to UNIMARC text.

        Returns:
            str: UNIMARC text (raw model output in "llm" mode)
        """
        if self.serializer == "rules":
            return render_unimarc(filled_fields, FieldCatalog.from_dict(template))

        prompt = self.build_serialize_prompt(filled_fields)
        return self.hf_client.generate(prompt, max_tokens=1000, temperature=0.1, system=SERIALIZE_SYSTEM)
