"""
Result types returned by the store, the validator and the form session.

These are plain frozen value objects; none of them is ever raised.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class SectionValidation:
    """
    Outcome of validating one section.

    Attributes:
        section_id: Section identifier
        valid: True iff errors is empty
        errors: field key -> message (at most one message per key)
    """
    section_id: str
    valid: bool
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GateChangeApplied:
    """
    Gate-checked write went through.

    Attributes:
        state: New inspection state
        cleared_paths: Paths deleted in the same transition
    """
    state: Dict[str, Any]
    cleared_paths: List[str]


@dataclass(frozen=True)
class GateCascadeConflict:
    """
    Gate flip would clear dependent answers and was not confirmed.

    The state is unchanged. The caller asks the user and resubmits with
    confirmed=True to proceed.

    Attributes:
        field_key: Gate field that was being changed
        clear_paths: Paths that would be deleted
        message: Confirmation prompt for the user
    """
    field_key: str
    clear_paths: List[str]
    message: str = "Changing this will clear related answers (e.g. exceptions). Continue?"


@dataclass(frozen=True)
class SubmissionResult:
    """
    Submission accepted by the external consumer.

    Attributes:
        inspection_id: Identifier returned by the consumer (or generated)
        payload: The snapshot that was handed over
        submitted_at: ISO 8601 timestamp
    """
    inspection_id: str
    payload: Dict[str, Any]
    submitted_at: str


@dataclass(frozen=True)
class AnswerApplied:
    """
    Answer written by the form session.

    Attributes:
        state: New inspection state
        cleared_paths: Paths deleted by a gate flip
        auto_skipped: Sections whose auto-skip was applied by this write
        issue_capture: The answer opened (or keeps open) issue capture
    """
    state: Dict[str, Any]
    cleared_paths: List[str] = field(default_factory=list)
    auto_skipped: List[str] = field(default_factory=list)
    issue_capture: bool = False
