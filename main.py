"""
Console Harness for the Turn Engine (Functional Core)

Drives a full cataloguing conversation from stdin, holding the state
snapshot in the loop exactly like the web client does.

Commands at any prompt:
    :review          show filled and remaining fields
    :edit TAG        re-open a field
    :continue        resume after review
    quit / exit      stop
"""

import json
import logging
import sys

from unidialog.commands import (
    CONTINUE_COMMAND,
    EDIT_FIELD_COMMAND,
    REVIEW_FIELDS_COMMAND,
    TurnRequest,
)
from unidialog.results import ResponseType

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"quit", "exit", "stop"}


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def parse_command(user_input):
    """
    Map console shortcuts to (user_response, field_to_edit).

    >>> parse_command(":edit 200")
    ('__edit_field__', '200')
    """
    if user_input == ":review":
        return REVIEW_FIELDS_COMMAND, None
    if user_input == ":continue":
        return CONTINUE_COMMAND, None
    if user_input.startswith(":edit"):
        parts = user_input.split(maxsplit=1)
        return EDIT_FIELD_COMMAND, parts[1].strip() if len(parts) > 1 else None
    return user_input, None


def render(response):
    """Print a TurnResponse for the console; returns True when the loop should wait for input"""
    data = response.to_json()
    kind = response.type

    if kind == ResponseType.TEMPLATE_SELECTED:
        print(f"\nTemplate: {data['template']['name']}")
        return False
    if kind == ResponseType.BULK_AUTO_FILLED:
        print(f"\n{data['message']}")
        print(json.dumps(data['filledFields'], indent=2, ensure_ascii=False))
        return False
    if kind in (ResponseType.FIELD_QUESTION, ResponseType.REPEAT_CONFIRMATION):
        print(f"\nSystem: {data['question']}")
        return True
    if kind == ResponseType.REVIEW_FIELDS_DISPLAY:
        print("\nFilled fields:")
        print(json.dumps(data['filledFields'], indent=2, ensure_ascii=False))
        print(f"Remaining: {', '.join(data['remainingFields']) or '-'}")
        return True
    if kind == ResponseType.RECORD_COMPLETE:
        print("\nRecord complete:")
        print(json.dumps(data['record'], indent=2, ensure_ascii=False))
        print("Press Enter to save, or ':edit TAG' to change a field.")
        return True
    if kind == ResponseType.RECORD_SAVED:
        print(f"\n{data['message']}")
        print(f"Record ID: {data['recordId']}\n")
        print(data['textUnimarc'])
        return False
    if kind == ResponseType.TEMPLATE_NOT_FOUND:
        print(f"\n{data['error']}")
        for option in data['options']:
            print(f"  - {option['name']} ({option['id']})")
        return True

    print(f"\nERROR: {data.get('error')}")
    if data.get('details'):
        print(f"Details: {data['details']}")
    return True


def main():
    """Run console conversation"""
    from app import build_engine
    from unidialog.config import settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print_separator()
    print("UNIMARC CATALOGUING DIALOGUE - CONSOLE")
    print_separator()
    print("\nInitializing modules (this may take 30 seconds)...")

    try:
        engine, _store = build_engine(settings)
    except Exception as e:
        print(f"\nFailed to initialize: {e}")
        logger.exception("Initialization failed")
        return 1

    description = input("\nDescribe the material to catalogue:\n> ").strip()
    if not description:
        print("No description given.")
        return 1

    state = None
    user_response = None
    field_to_edit = None

    while True:
        try:
            response = engine.handle_turn(TurnRequest(
                description=description,
                language=settings.default_language,
                conversation_state=state,
                user_response=user_response,
                field_to_edit=field_to_edit
            ))
            state = response.conversation_state

            wait = render(response)
            if response.type == ResponseType.RECORD_SAVED:
                break

            user_response, field_to_edit = None, None
            if not wait:
                continue

            user_input = input("> ").strip()
            if user_input.lower() in EXIT_COMMANDS:
                print("\nConversation ended early by user")
                break
            user_response, field_to_edit = parse_command(user_input)

        except KeyboardInterrupt:
            print("\n\nConversation interrupted by user (Ctrl+C)")
            break

    print_separator()
    print("Console session complete")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
