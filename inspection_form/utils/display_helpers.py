"""
Display Helpers - Convert views and state to JSON-ready or readable form

Used by the Flask API (JSON projection of SectionView) and the console
harness (human-readable values and error listings).
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from inspection_form.contracts import Answer, FieldView, IssueDetail, SectionView


# Value mappings for display
VALUE_LABELS = {
    True: 'Yes',
    False: 'No',
    'yes': 'Yes',
    'no': 'No',
    'unsure': 'Unsure',
    'not_accessible': 'Not accessible',
    'not_applicable': 'Not applicable',
}


def format_field_value(value: Any) -> str:
    """
    Convert a stored value to human-readable text.

    Args:
        value: Raw value (str, bool, number, list)

    Returns:
        Human-readable value as string
    """
    if value is None or value == '' or value == []:
        return "Not specified"

    if isinstance(value, bool):
        return VALUE_LABELS[value]

    if isinstance(value, list):
        return ", ".join(format_field_value(v) for v in value)

    if isinstance(value, str) and value in VALUE_LABELS:
        return VALUE_LABELS[value]

    if isinstance(value, str) and ' ' not in value:
        return value.replace('_', ' ')

    return str(value)


def format_answer(answer: Optional[Answer]) -> str:
    """Answer for display, showing skips with their reason."""
    if answer is None:
        return "Not specified"
    if answer.is_skipped:
        reason = format_field_value(answer.skip_reason) if answer.skip_reason else "no reason"
        return f"Skipped ({reason})"
    return format_field_value(answer.value)


def issue_detail_to_dict(detail: Optional[IssueDetail]) -> Optional[Dict[str, Any]]:
    return detail.to_dict() if detail is not None else None


def field_view_to_dict(view: FieldView) -> Dict[str, Any]:
    """
    Project a FieldView for the JSON API.

    NOTE: answer is the stored Answer dict when present, otherwise the raw
    stored node (or None).
    """
    field = view.field
    answer = view.answer.to_dict() if isinstance(view.answer, Answer) else view.answer

    data = {
        'key': field.key,
        'label': field.label,
        'type': field.type,
        'ui': field.ui,
        'skippable': field.skippable,
        'required': field.required,
        'answer': answer,
        'value': view.value,
        'error': view.error,
        'is_gate': view.is_gate,
        'issue_capture': view.issue_capture,
        'issue_detail': issue_detail_to_dict(view.issue_detail),
    }
    if view.enum_values:
        data['enum_values'] = list(view.enum_values)
    if field.helper_text:
        data['helper_text'] = field.helper_text
    if field.min is not None:
        data['min'] = field.min
    if field.max is not None:
        data['max'] = field.max
    if field.item_schema:
        data['item_schema'] = {
            name: {k: v for k, v in asdict(spec).items() if v is not None}
            for name, spec in field.item_schema
        }
    return data


def section_view_to_dict(view: SectionView) -> Dict[str, Any]:
    return {
        'section_id': view.section_id,
        'title': view.title,
        'gated_out': view.gated_out,
        'auto_skipped': view.auto_skipped,
        'fields': [field_view_to_dict(f) for f in view.fields],
        'staged_photos': [p.to_dict() for p in view.staged_photos],
        'gate_status': dict(view.gate_status) if view.gate_status else None,
    }


def format_errors(errors: Dict[str, Dict[str, str]]) -> List[str]:
    """
    Flatten section errors into display lines.

    Example:
        >>> format_errors({'S10_SIGNOFF': {'signoff.technician_name': 'Required.'}})
        ['[S10_SIGNOFF] signoff.technician_name: Required.']
    """
    lines = []
    for section_id, section_errors in errors.items():
        for key, message in section_errors.items():
            lines.append(f"[{section_id}] {key}: {message}")
    return lines
