"""
Answer normalisation utilities.

Pure functions for moving between the JSON-shaped state tree and the
typed contracts. Every read site goes through as_answer(); no other
module inspects Answer dicts by hand.

Design principles:
- Pure functions (no side effects)
- No schema knowledge (doesn't know about sections, gates, etc.)
- Malformed input degrades to None, never raises

Contents:
- is_answer_shape(): shape check for a stored Answer dict
- as_answer(): stored node -> Answer or None
- coerce_answer(): write payload (Answer, Answer dict or bare value) -> Answer
- unwrap(): stored node -> value (passthrough for raw values)
- strip_answers(): recursively replace Answer dicts with their values
- as_issue_detail() / as_staged_photo(): side-channel nodes -> contracts

Usage:
    from inspection_form.answer_helpers import as_answer, coerce_answer

    answer = as_answer(node)
    if answer is not None and answer.is_skipped:
        ...
"""

from typing import Any, Optional

from inspection_form.contracts import (
    Answer,
    IssueDetail,
    StagedPhoto,
    STATUS_ANSWERED,
    STATUS_SKIPPED,
)

VALID_STATUSES = {STATUS_ANSWERED, STATUS_SKIPPED}


def is_answer_shape(node: Any) -> bool:
    """
    Check whether a stored node is an Answer.

    An Answer carries both 'value' and 'status'. Plain objects (table rows,
    address components, intermediate path containers) do not.

    Examples:
        >>> is_answer_shape({'value': 3, 'status': 'answered'})
        True
        >>> is_answer_shape({'value': 3})
        False
        >>> is_answer_shape('3')
        False
    """
    return isinstance(node, dict) and "value" in node and "status" in node


def as_answer(node: Any) -> Optional[Answer]:
    """
    Convert a stored node to an Answer.

    Returns None for anything that is not Answer-shaped or carries an
    unknown status, so callers treat it as absent.
    """
    if not is_answer_shape(node):
        return None
    status = node.get("status")
    if status not in VALID_STATUSES:
        return None
    return Answer(
        value=node.get("value"),
        status=status,
        skip_reason=node.get("skip_reason"),
        skip_note=node.get("skip_note"),
    )


def coerce_answer(payload: Any) -> Answer:
    """
    Normalise a write payload to an Answer.

    Accepts:
    - Answer instances (returned unchanged)
    - dicts carrying a 'status' key (full Answer supplied by the caller)
    - anything else, wrapped as {value: payload, status: 'answered'}

    Examples:
        >>> coerce_answer('sunny')
        Answer(value='sunny', status='answered', skip_reason=None, skip_note=None)
        >>> coerce_answer({'status': 'skipped', 'skip_reason': 'unsafe_to_test'}).is_skipped
        True
        >>> coerce_answer({'suburb': 'Carlton'}).value
        {'suburb': 'Carlton'}
    """
    if isinstance(payload, Answer):
        return payload
    if isinstance(payload, dict) and "status" in payload:
        status = payload.get("status")
        if status not in VALID_STATUSES:
            status = STATUS_ANSWERED
        return Answer(
            value=payload.get("value"),
            status=status,
            skip_reason=payload.get("skip_reason"),
            skip_note=payload.get("skip_note"),
        )
    return Answer(value=payload, status=STATUS_ANSWERED)


def unwrap(node: Any) -> Any:
    """
    Return the value of an Answer node, or the node itself.

    Unlike strip_answers(), this does NOT recurse into containers.
    """
    answer = as_answer(node)
    if answer is not None:
        return answer.value
    return node


def strip_answers(data: Any) -> Any:
    """
    Recursively replace Answer dicts with their values.

    Creates new containers rather than mutating the input.

    Examples:
        >>> strip_answers({'job': {'address': {'value': '1 Main St', 'status': 'answered'}}})
        {'job': {'address': '1 Main St'}}
    """
    if is_answer_shape(data):
        return data.get("value")

    if isinstance(data, dict):
        return {k: strip_answers(v) for k, v in data.items()}

    if isinstance(data, list):
        return [strip_answers(item) for item in data]

    return data


def as_issue_detail(node: Any) -> Optional[IssueDetail]:
    """Convert a stored issue-detail dict; None when the node is malformed."""
    if not isinstance(node, dict):
        return None
    photo_ids = node.get("photo_ids") or []
    if not isinstance(photo_ids, list):
        photo_ids = []
    return IssueDetail(
        location=str(node.get("location") or ""),
        photo_ids=tuple(str(p) for p in photo_ids),
        notes=str(node.get("notes") or ""),
    )


def as_staged_photo(node: Any) -> Optional[StagedPhoto]:
    """Convert a stored staged-photo dict; None when the node is malformed."""
    if not isinstance(node, dict) or not node.get("dataUrl"):
        return None
    return StagedPhoto(caption=str(node.get("caption") or ""), data_url=str(node["dataUrl"]))
