"""
Shared template fixtures for the cataloguing tests.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest


def _field(tag, name, mandatory=False, repeatable=False, tips=None):
    return {
        'tag': tag,
        'mandatory': mandatory,
        'repeatable': repeatable,
        'translations': [
            {'language': 'pt', 'name': name, 'tips': tips or []},
        ],
    }


def _sub(code, label, mandatory=False, repeatable=False, tips=None):
    return {
        'code': code,
        'mandatory': mandatory,
        'repeatable': repeatable,
        'translations': [
            {'language': 'pt', 'label': label, 'tips': tips or []},
        ],
    }


def _data(tag, name, subfields, mandatory=False, repeatable=False, tips=None):
    field = _field(tag, name, mandatory, repeatable, tips)
    field['subFieldDef'] = subfields
    return field


def make_template(template_id, name, control_fields, data_fields):
    return {
        'id': template_id,
        'name': name,
        'description': f"Template {name}",
        'controlFields': control_fields,
        'dataFields': data_fields,
    }


@pytest.fixture
def scenario_template():
    """001 (mandatory) + 200 with $a (mandatory) and $f (optional)"""
    return make_template('tpl-livro', 'Livro', [
        _field('001', 'Identificador do registo', mandatory=True),
    ], [
        _data('200', 'Título', [
            _sub('a', 'Título próprio', mandatory=True),
            _sub('f', 'Responsabilidade'),
        ], mandatory=True),
    ])


@pytest.fixture
def repeat_template():
    """200$a repeatable, 300 flat repeatable, 701 structured repeatable"""
    return make_template('tpl-rep', 'Livro', [
        _field('001', 'Identificador do registo', mandatory=True),
    ], [
        _data('200', 'Título', [
            _sub('a', 'Título próprio', mandatory=True, repeatable=True),
            _sub('f', 'Responsabilidade'),
        ], mandatory=True),
        _data('300', 'Nota geral', [], repeatable=True),
        _data('701', 'Autor secundário', [
            _sub('a', 'Elemento de entrada', mandatory=True),
            _sub('b', 'Parte restante do nome'),
        ], repeatable=True),
    ])


@pytest.fixture
def bulk_template():
    """001 + 101 ($a, $c) + 200 ($a, $f)"""
    return make_template('tpl-bulk', 'Livro', [
        _field('001', 'Identificador do registo', mandatory=True),
    ], [
        _data('101', 'Língua', [
            _sub('a', 'Língua do texto', mandatory=True, repeatable=True),
            _sub('c', 'Língua do original', repeatable=True),
        ], mandatory=True),
        _data('200', 'Título', [
            _sub('a', 'Título próprio', mandatory=True),
            _sub('f', 'Responsabilidade'),
        ], mandatory=True),
    ])


@pytest.fixture
def serial_template():
    """Second template, used for selection tests"""
    return make_template('tpl-per', 'Publicação Periódica', [
        _field('001', 'Identificador do registo', mandatory=True),
    ], [
        _data('326', 'Periodicidade', []),
    ])
