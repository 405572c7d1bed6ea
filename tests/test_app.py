"""
Integration tests for the Flask API (test client, mocked model)
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from app import create_app
from unidialog.core.turn_engine import TurnEngine
from unidialog.persistence import RecordStore


class MockTemplateSource:
    def __init__(self, templates):
        self.templates = templates

    def get_templates(self):
        return {'templates': self.templates}


class MockTextGenerator:
    def __init__(self, selection="Livro", bulk=None):
        self.selection = selection
        self.bulk = bulk or {}

    def select_template(self, description, candidate_names):
        return self.selection

    def bulk_infer_fields(self, description, template):
        return self.bulk

    def serialize_to_unimarc(self, filled_fields, template):
        return "\n".join(f"{tag} {value}" for tag, value in sorted(filled_fields.items()))


@pytest.fixture
def store(tmp_path):
    return RecordStore(base_dir=str(tmp_path / "records"))


def make_client(store, templates, **generator_kwargs):
    engine = TurnEngine(MockTemplateSource(templates), MockTextGenerator(**generator_kwargs), store)
    app = create_app(engine, store)
    app.config['TESTING'] = True
    return app.test_client()


def post_turn(client, state=None, response=None, **extra):
    body = {'description': "Livro 'X' de Y, 2020", 'language': 'pt'}
    if state is not None:
        body['conversationState'] = state
    if response is not None:
        body['userResponse'] = response
    body.update(extra)
    return client.post('/api/uni-dialog', json=body)


def test_full_conversation_over_http(store, scenario_template):
    """Selection, interview, confirmation and listing through the API"""
    client = make_client(store, [scenario_template])

    reply = post_turn(client)
    assert reply.status_code == 200
    assert reply.get_json()['type'] == 'template-selected'

    reply = post_turn(client, reply.get_json()['conversationState'])
    data = reply.get_json()
    assert data['type'] == 'field-question'
    assert data['field'] == '001'
    assert data['conversationState']['askedField'] == '001'

    for answer in ["12345", "Memorial do Convento", ""]:
        reply = post_turn(client, reply.get_json()['conversationState'], answer)

    data = reply.get_json()
    assert data['type'] == 'record-complete'
    assert data['record'] == {'001': '12345', '200': {'a': 'Memorial do Convento'}}
    assert 'askedField' not in data['conversationState']

    reply = post_turn(client, data['conversationState'])
    data = reply.get_json()
    assert reply.status_code == 200
    assert data['type'] == 'record-saved'
    assert data['conversationState']['step'] == 'completed'

    listing = client.get('/api/records?page=1&limit=10').get_json()
    assert listing['total'] == 1
    assert listing['records'][0]['id'] == data['recordId']

    record = client.get(f"/api/records/{data['recordId']}").get_json()
    assert record['templateName'] == 'Livro'


def test_template_not_found_is_400(store, scenario_template):
    client = make_client(store, [scenario_template], selection="Mapa")

    reply = post_turn(client)

    assert reply.status_code == 400
    data = reply.get_json()
    assert data['type'] == 'template-not-found'
    assert data['options'] == [{'id': 'tpl-livro', 'name': 'Livro'}]


def test_no_templates_is_503(store):
    reply = post_turn(make_client(store, []))

    assert reply.status_code == 503
    assert reply.get_json()['type'] == 'error'


def test_malformed_state_is_400(store, scenario_template):
    client = make_client(store, [scenario_template])

    submitted = {'step': 'dancing', 'filledFields': {'001': '12345'}, 'remainingFields': ['200']}
    reply = post_turn(client, submitted)

    assert reply.status_code == 400
    data = reply.get_json()
    assert data['type'] == 'error'
    assert data['conversationState'] == submitted


def test_non_json_body_is_400(store, scenario_template):
    client = make_client(store, [scenario_template])

    reply = client.post('/api/uni-dialog', data="not json", content_type='text/plain')

    assert reply.status_code == 400


def test_record_routes_404(store, scenario_template):
    client = make_client(store, [scenario_template])

    assert client.get('/api/records/missing').status_code == 404
    assert client.delete('/api/records/missing').status_code == 404


def test_delete_record(store, scenario_template):
    client = make_client(store, [scenario_template])
    record_id = store.save_record({'templateId': 't', 'filledFields': {}})

    reply = client.delete(f'/api/records/{record_id}')

    assert reply.status_code == 200
    assert reply.get_json() == {'success': True}
    assert store.get_record(record_id) is None


def test_bad_paging_is_400(store, scenario_template):
    client = make_client(store, [scenario_template])

    assert client.get('/api/records?page=abc').status_code == 400
    assert client.get('/api/records?page=0').status_code == 400


def test_saved_conversation_appears_in_author_list(store, repeat_template):
    """Persons from 700-702 fields are indexed when the record is saved"""
    client = make_client(store, [repeat_template], bulk={
        '001': '12345',
        '200': {'a': 'Memorial do Convento'},
        '701': [{'a': 'Saramago', 'b': 'José'}, {'a': 'Pontiero'}],
    })

    reply = post_turn(client)
    reply = post_turn(client, reply.get_json()['conversationState'])
    assert reply.get_json()['type'] == 'bulk-auto-filled'
    reply = post_turn(client, reply.get_json()['conversationState'])
    assert reply.get_json()['field'] == '300'
    reply = post_turn(client, reply.get_json()['conversationState'], "")
    assert reply.get_json()['type'] == 'record-complete'
    reply = post_turn(client, reply.get_json()['conversationState'])
    assert reply.get_json()['type'] == 'record-saved'

    authors = client.get('/api/authors').get_json()

    assert [(a['name'], a['recordCount'], a['roles']) for a in authors] == [
        ('Pontiero', 1, ['AUTHOR']),
        ('Saramago', 1, ['AUTHOR']),
    ]


def test_update_record_rerenders_text(store, scenario_template):
    client = make_client(store, [scenario_template])
    record_id = store.save_record({'templateId': 'tpl-livro', 'templateName': 'Livro',
                                   'filledFields': {'001': '1'}, 'textUnimarc': '001 1', 'fields': []})

    reply = client.put(f'/api/records/{record_id}', json={
        'filledFields': {'001': '2', '200': {'a': 'Levantado do Chão', 'f': 'n/a'}, '999': 'x'},
        'template': scenario_template,
    })

    assert reply.status_code == 200
    data = reply.get_json()
    assert data['filledFields'] == {'001': '2', '200': {'a': 'Levantado do Chão'}}
    assert data['textUnimarc'] == '001 2\n200  $aLevantado do Chão'
    assert [f['tag'] for f in data['fields']] == ['001', '200']
    assert store.get_record(record_id)['textUnimarc'] == data['textUnimarc']


def test_update_record_errors(store, scenario_template):
    client = make_client(store, [scenario_template])
    record_id = store.save_record({'templateId': 'tpl-livro', 'filledFields': {}})

    assert client.put(f'/api/records/{record_id}', json={'filledFields': {}}).status_code == 400
    assert client.put(f'/api/records/{record_id}', json={
        'filledFields': {'001': {'a': 'x'}}, 'template': scenario_template,
    }).status_code == 400
    assert client.put('/api/records/missing', json={
        'filledFields': {'001': '1'}, 'template': scenario_template,
    }).status_code == 404


def test_stats_route(store, scenario_template):
    client = make_client(store, [scenario_template])
    store.save_record({'templateId': 'tpl-livro', 'templateName': 'Livro', 'filledFields': {}})

    stats = client.get('/api/stats').get_json()

    assert stats['totalRecords'] == 1
    assert stats['recordsByTemplate'] == [{'templateName': 'Livro', 'count': 1}]
    assert stats['recentRecords'] == 1
