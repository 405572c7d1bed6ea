"""
Tests for the console harness helpers
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import parse_command, render
from unidialog.commands import (
    CONTINUE_COMMAND,
    EDIT_FIELD_COMMAND,
    REVIEW_FIELDS_COMMAND,
    ConversationState,
)
from unidialog.results import ResponseType, TurnResponse


def test_parse_command_shortcuts():
    assert parse_command(":review") == (REVIEW_FIELDS_COMMAND, None)
    assert parse_command(":continue") == (CONTINUE_COMMAND, None)
    assert parse_command(":edit 200") == (EDIT_FIELD_COMMAND, '200')
    assert parse_command(":edit") == (EDIT_FIELD_COMMAND, None)


def test_parse_command_plain_answer():
    assert parse_command("Memorial do Convento") == ("Memorial do Convento", None)


def test_render_waits_for_questions_only(capsys):
    question = TurnResponse(ResponseType.FIELD_QUESTION, ConversationState(), {'question': 'Por favor?'})
    selected = TurnResponse(ResponseType.TEMPLATE_SELECTED, ConversationState(), {'template': {'name': 'Livro'}})

    assert render(question) is True
    assert render(selected) is False
    out = capsys.readouterr().out
    assert 'Por favor?' in out
    assert 'Template: Livro' in out
