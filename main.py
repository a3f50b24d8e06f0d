"""
Console Harness for the Inspection Form Engine

Walks the visible steps field by field, then validates and submits.
"""

import json
import logging
import os
import sys

from inspection_form.core.form_session import SubmissionBlocked, build_session
from inspection_form.core.schema_repository import DEFAULT_SCHEMA_PATH
from inspection_form.persistence import DEFAULT_DRAFT_PATH, DEFAULT_SUBMISSIONS_DIR, SubmissionArchive
from inspection_form.results import GateCascadeConflict
from inspection_form.utils.display_helpers import format_answer, format_errors

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"quit", "exit", "stop"}
SKIP_COMMAND = "skip"


class QuitInspection(Exception):
    """User asked to leave the harness."""


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def ask(prompt):
    answer = input(prompt).strip()
    if answer.lower() in EXIT_COMMANDS:
        raise QuitInspection()
    return answer


def parse_input(field, text, enum_values):
    """
    Convert console text to a value for the field type.

    Raises:
        ValueError: If the text does not fit the type
    """
    if field.type == "boolean":
        lowered = text.lower()
        if lowered in ("y", "yes", "true"):
            return True
        if lowered in ("n", "no", "false"):
            return False
        raise ValueError("Answer y or n")

    if field.type == "integer":
        return int(text)

    if field.type == "number":
        return float(text)

    if field.type == "enum":
        if enum_values and text not in enum_values:
            raise ValueError(f"Choose one of: {', '.join(enum_values)}")
        return text

    if field.type == "array_enum":
        items = [item.strip() for item in text.split(",") if item.strip()]
        unknown = [item for item in items if enum_values and item not in enum_values]
        if unknown:
            raise ValueError(f"Unknown option(s): {', '.join(unknown)}")
        return items

    if field.type == "array_object":
        value = json.loads(text)
        if not isinstance(value, list):
            raise ValueError("Enter a JSON list of rows")
        return value

    return text


def ask_skip(session):
    reasons = session.schema.get_skip_reasons()
    reason = ask(f"  Skip reason ({', '.join(reasons)}): ")
    note = ask("  Skip note (optional): ")
    payload = {"value": None, "status": "skipped", "skip_reason": reason or None}
    if note:
        payload["skip_note"] = note
    return payload


def ask_field(session, view):
    """Prompt until the field is answered, skipped, or left unchanged."""
    field = view.field
    hint = f" [{', '.join(view.enum_values)}]" if view.enum_values else ""
    current = format_answer(view.answer) if view.answer is not None else "Not specified"

    while True:
        text = ask(f"{field.label}{hint} ({current}): ")
        if not text:
            return
        try:
            if text.lower() == SKIP_COMMAND and field.skippable:
                payload = ask_skip(session)
            else:
                payload = parse_input(field, text, view.enum_values)
        except ValueError as e:
            print(f"  {e}")
            continue

        result = session.apply_answer(field.key, payload)
        if isinstance(result, GateCascadeConflict):
            print(f"  {result.message}")
            print(f"  Would clear: {', '.join(result.clear_paths)}")
            if ask("  Continue? (y/n): ").lower() != "y":
                return
            result = session.apply_answer(field.key, payload, confirmed=True)

        if result.issue_capture:
            location = ask("  Issue location: ")
            notes = ask("  Issue notes: ")
            session.update_issue_detail(field.key, location=location, notes=notes)
        return


def run_step(session):
    steps = session.visible_steps()
    session.current_step = min(session.current_step, len(steps) - 1)
    page = steps[session.current_step]
    print_separator()
    print(f"STEP {session.current_step + 1}/{len(steps)}: {page.title}")
    print_separator()

    for section_id in session.step_sections(session.current_step):
        # Re-render after each answer: gates and visibility can change
        asked = set()
        while True:
            view = session.render_section(section_id)
            pending = [f for f in view.fields if f.field.key not in asked]
            if not pending:
                break
            field_view = pending[0]
            asked.add(field_view.field.key)
            if field_view.error:
                print(f"  ! {field_view.error}")
            ask_field(session, field_view)


def main():
    """Run console harness"""
    print_separator()
    print("INSPECTION FORM - CONSOLE")
    print_separator()

    try:
        session = build_session(
            os.environ.get('INSPECTION_SCHEMA_PATH', DEFAULT_SCHEMA_PATH),
            os.environ.get('INSPECTION_DRAFT_PATH', DEFAULT_DRAFT_PATH),
        )
        archive = SubmissionArchive(os.environ.get('INSPECTION_SUBMISSIONS_DIR', DEFAULT_SUBMISSIONS_DIR))
    except Exception as e:
        print(f"\nFailed to initialize: {e}")
        return 1

    print("Enter to keep the current answer, 'skip' to skip, 'quit' to leave.\n")

    try:
        while True:
            run_step(session)
            was_last = session.is_last_step()
            errors = session.advance()
            if errors:
                print("\nPlease fix:")
                for line in format_errors(errors):
                    print(f"  {line}")
                continue

            if not was_last:
                continue

            try:
                result = session.submit(archive)
            except SubmissionBlocked as e:
                print(f"\n{e}")
                for line in format_errors(e.errors):
                    print(f"  {line}")
                session.current_step = 0
                continue

            print_separator()
            print("INSPECTION SUBMITTED")
            print_separator()
            print(f"  - Inspection ID: {result.inspection_id}")
            print(f"  - Submitted at: {result.submitted_at}")
            break

    except (QuitInspection, KeyboardInterrupt, EOFError):
        print("\n\nInspection paused. The draft is kept for next time.")

    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
