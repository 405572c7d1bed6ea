"""
Tests for person extraction from stored field lists
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from unidialog.core.person_index import PersonRole, extract_persons, infer_person_role, person_id


@pytest.mark.parametrize("tag,field_name,expected", [
    ('700', 'Nome de pessoa - responsabilidade principal', PersonRole.AUTHOR),
    ('701', None, PersonRole.AUTHOR),
    ('702', 'Tradutor', PersonRole.TRANSLATOR),
    ('702', 'Illustrator', PersonRole.ILLUSTRATOR),
    ('702', 'Compositor', PersonRole.COMPOSER),
    ('702', 'Intérprete', PersonRole.INTERPRETER),
    ('702', 'Editor literário', PersonRole.EDITOR),
    ('702', 'Nome de pessoa - responsabilidade secundária', PersonRole.OTHER),
    ('100', None, PersonRole.OTHER),
])
def test_infer_person_role(tag, field_name, expected):
    assert infer_person_role(tag, field_name) == expected


def test_person_id_is_stable_and_case_insensitive():
    assert person_id("José Saramago") == person_id("  josé saramago ")
    assert person_id("José Saramago") != person_id("Fernando Pessoa")


def test_extract_persons_reads_subfield_a():
    fields = [
        {'tag': '001', 'value': '12345', 'subfields': None, 'fieldName': 'Identificador'},
        {'tag': '200', 'value': None, 'subfields': {'a': 'Memorial'}, 'fieldName': 'Título'},
        {'tag': '700', 'value': None, 'subfields': {'a': 'Saramago', 'b': 'José'},
         'fieldName': 'Autor'},
        {'tag': '702', 'value': None, 'subfields': [{'a': ['Pontiero', 'Outro']}, {'b': 'sem nome'}],
         'fieldName': 'Tradutor'},
    ]

    persons = extract_persons(fields)

    assert persons == [
        {'id': person_id('Saramago'), 'name': 'Saramago', 'role': 'AUTHOR'},
        {'id': person_id('Pontiero'), 'name': 'Pontiero', 'role': 'TRANSLATOR'},
    ]


def test_extract_persons_one_entry_per_occurrence():
    fields = [
        {'tag': '701', 'value': None,
         'subfields': [{'a': 'Silva'}, {'a': 'Costa'}, {'a': 'Silva'}], 'fieldName': 'Autor secundário'},
    ]

    names = [p['name'] for p in extract_persons(fields)]

    assert names == ['Silva', 'Costa']


def test_extract_persons_flat_value_is_the_name():
    fields = [{'tag': '100', 'value': ' Anónimo ', 'subfields': None, 'fieldName': None}]

    assert extract_persons(fields) == [{'id': person_id('Anónimo'), 'name': 'Anónimo', 'role': 'OTHER'}]
