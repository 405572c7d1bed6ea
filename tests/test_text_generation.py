"""
Unit tests for CatalogTextGenerator (prompts and output parsing)

Uses a mock HF client; no model is loaded.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from unidialog.core.text_generation import CatalogTextGenerator
from unidialog.utils.helpers import extract_json_object, loads_lenient, strip_code_fences


class MockHFClient:
    """Records prompts and returns scripted text"""

    def __init__(self, text="", json_text="{}"):
        self.text = text
        self.json_text = json_text
        self.calls = []

    def generate(self, prompt, max_tokens=256, temperature=0.3, system=None):
        self.calls.append({'prompt': prompt, 'system': system, 'max_tokens': max_tokens})
        return self.text

    def generate_json(self, prompt, max_tokens=256, temperature=0.0, system=None):
        self.calls.append({'prompt': prompt, 'system': system, 'max_tokens': max_tokens})
        return self.json_text


def test_rejects_client_without_generate():
    with pytest.raises(TypeError, match="generate"):
        CatalogTextGenerator(object())


def test_rejects_unknown_serializer():
    with pytest.raises(ValueError, match="serializer"):
        CatalogTextGenerator(MockHFClient(), serializer="xml")


def test_select_template_prompt_and_cleanup():
    """Prompt lists names with '|'; answer keeps the first line without quotes"""
    client = MockHFClient(text='"Livro".\nPorque é um livro.')
    generator = CatalogTextGenerator(client)

    answer = generator.select_template("Livro 'X' de Y", ["Livro", "Publicação Periódica"])

    assert answer == "Livro"
    prompt = client.calls[0]['prompt']
    assert 'Templates: Livro|Publicação Periódica' in prompt
    assert "Material: \"Livro 'X' de Y\"" in prompt
    assert client.calls[0]['system'] == "Responda apenas com o nome exato do template mais adequado."


def test_select_template_empty_answer():
    generator = CatalogTextGenerator(MockHFClient(text="  "))
    assert generator.select_template("x", ["Livro"]) == ""


def test_bulk_prompt_lists_fields_and_subfields(bulk_template):
    generator = CatalogTextGenerator(MockHFClient())

    prompt = generator.build_bulk_prompt("Livro de Saramago", bulk_template)

    assert '- 001 (Identificador do registo): texto' in prompt
    assert '- 101 (Língua): objeto com subcampos a=Língua do texto, c=Língua do original' in prompt
    assert prompt.index('- 001') < prompt.index('- 101') < prompt.index('- 200')


def test_bulk_infer_parses_fenced_json(bulk_template):
    client = MockHFClient(json_text='```json\n{"001": "12345", "101": {"a": "por"}}\n```')
    generator = CatalogTextGenerator(client)

    assert generator.bulk_infer_fields("x", bulk_template) == {'001': '12345', '101': {'a': 'por'}}


def test_bulk_infer_garbage_is_empty(bulk_template):
    generator = CatalogTextGenerator(MockHFClient(json_text="sem dados"))
    assert generator.bulk_infer_fields("x", bulk_template) == {}


def test_llm_serializer_sends_rules_and_json(scenario_template):
    client = MockHFClient(text="001 1")
    generator = CatalogTextGenerator(client, serializer="llm")

    text = generator.serialize_to_unimarc({'001': '1', '200': {'a': 'Título'}}, scenario_template)

    assert text == "001 1"
    prompt = client.calls[0]['prompt']
    assert '101  $apor$ceng' in prompt
    assert '"a": "Título"' in prompt
    assert 'UNIMARC' in client.calls[0]['system']


def test_rules_serializer_skips_model(scenario_template):
    client = MockHFClient()
    generator = CatalogTextGenerator(client, serializer="rules")

    text = generator.serialize_to_unimarc({'001': '1', '200': {'a': 'T', 'f': 'A'}}, scenario_template)

    assert text == "001 1\n200  $aT$fA"
    assert client.calls == []


# ========================
# JSON helpers
# ========================

def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences(None) == ""


def test_extract_json_object_ignores_trailing_text():
    assert extract_json_object('Resposta: {"a": {"b": "}"}} extra {') == '{"a": {"b": "}"}}'


def test_extract_json_object_closes_truncated_output():
    assert extract_json_object('{"a": {"b": "c"') == '{"a": {"b": "c"}}'


def test_loads_lenient_non_object():
    assert loads_lenient('[1, 2]') == {}
    assert loads_lenient(None) == {}
    assert loads_lenient({'a': 'b'}) == {'a': 'b'}
