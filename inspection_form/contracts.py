"""
Semantic contracts for the inspection form engine.

This module defines immutable data structures that serve as contracts
between modules. These are NOT validators - they define shape and
semantics without enforcing rules.

Design principles:
- Frozen dataclasses (immutable after creation)
- No validation logic (contracts, not validators)
- No dependencies on other modules
- Definition layer only (no enforcement)

Contents:
- FieldDefinition / ItemFieldSpec: one question and its table sub-fields
- GateDefinition / ClearOnGateChange / SectionAutoSkip: section-level rules
- SectionDefinition / PageDefinition: ordered groups of fields
- CrossFieldValidation: declarative numeric consistency rule
- Answer / IssueDetail / StagedPhoto: values stored in the inspection state
- FieldView / SectionView: what the form renderer receives per section

Usage:
    from inspection_form.contracts import FieldDefinition, Answer
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


# Field types understood by the engine
FIELD_TYPES = (
    "string",
    "integer",
    "number",
    "boolean",
    "enum",
    "array_enum",
    "array_object",
)

STATUS_ANSWERED = "answered"
STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class ItemFieldSpec:
    """
    Sub-field of a repeatable (table) field.

    Mirrors the FieldDefinition attributes that make sense for a single
    cell of a table row.
    """
    type: str
    label: Optional[str] = None
    enum: Optional[str] = None
    enum_values: Optional[Tuple[str, ...]] = None
    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass(frozen=True)
class FieldDefinition:
    """
    Immutable definition of one question in the field dictionary.

    Attributes:
        key: Dot-delimited path, globally unique.
            Example: 'rcd_tests.summary.total_tested'
        label: Human-readable question label.
        type: One of FIELD_TYPES.
        required: Always required when the section is active.
        required_when: Expression making the field conditionally required
            (and conditionally visible).
            Example: 'rcd_tests.performed == true'
        show_when: Expression controlling visibility only.
        skippable: Whether the renderer offers a skip-with-reason control.
        enum: Name of a shared enum in the dictionary.
        enum_values: Inline enum values (tuple for immutability).
        min / max: Numeric bounds for integer and number fields.
        item_schema: Sub-field specs for array_object fields, as a tuple of
            (name, ItemFieldSpec) pairs in document order.
        ui: Presentation hint. Only 'address_autocomplete' matters to the core.
        helper_text: Text shown below the label.
        on_issue_capture: An affirmative answer triggers mandatory
            location/photo/notes capture.
    """
    key: str
    label: str
    type: str
    required: bool = False
    required_when: Optional[str] = None
    show_when: Optional[str] = None
    skippable: bool = False
    enum: Optional[str] = None
    enum_values: Optional[Tuple[str, ...]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    item_schema: Optional[Tuple[Tuple[str, ItemFieldSpec], ...]] = None
    ui: str = "text"
    helper_text: Optional[str] = None
    on_issue_capture: bool = False


@dataclass(frozen=True)
class GateDefinition:
    """
    Section-level precondition.

    The section stays visible only while the value at depends_on strictly
    equals `equals`. on_false carries the status shown for a gated-out
    section (e.g. section_status=skipped, skip_reason=not_accessible).
    """
    depends_on: str
    equals: Any
    on_false: Optional[Tuple[Tuple[str, str], ...]] = None


@dataclass(frozen=True)
class ClearOnGateChange:
    """
    Retracting an answer invalidates dependent answers.

    When if_changed flips from_value -> to_value, every path in
    clear_paths is deleted from the state in the same transition.
    """
    if_changed: str
    from_value: bool
    to_value: bool
    clear_paths: Tuple[str, ...]


@dataclass(frozen=True)
class SectionAutoSkip:
    """
    Marks a section not-applicable when `when` holds.

    set_status / skip_reason are written to the section's status_field,
    clear_paths are deleted.
    """
    when: str
    set_status: str = "not_applicable"
    skip_reason: str = ""
    clear_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SectionDefinition:
    """
    Named, ordered group of fields.

    Attributes:
        id: Section identifier (e.g., 'S7A_GPO_BY_ROOM')
        title: Display title
        fields: Ordered field definitions
        gates: All must hold for the section to stay visible
        status_field: Optional key where auto-skip status is recorded
        clear_on_gate_change: Cascading clear rules
        section_auto_skip: Optional auto-skip rule
    """
    id: str
    title: str
    fields: Tuple[FieldDefinition, ...] = ()
    gates: Tuple[GateDefinition, ...] = ()
    status_field: Optional[str] = None
    clear_on_gate_change: Tuple[ClearOnGateChange, ...] = ()
    section_auto_skip: Optional[SectionAutoSkip] = None


@dataclass(frozen=True)
class PageDefinition:
    """Wizard page: sections the technician fills together."""
    id: str
    title: str
    section_ids: Tuple[str, ...]


@dataclass(frozen=True)
class CrossFieldValidation:
    """
    Declarative numeric consistency rule.

    Attributes:
        id: Rule identifier
        rule_id: Selects a fixed predicate from the validator's registry
        fields: Field keys whose values feed the predicate
        error_message: Template with {short_key} placeholders, where
            short_key is the last dot-segment of each field key
        condition: Optional 'path === literal' guard
        description: Free text for config authors
    """
    id: str
    rule_id: str
    fields: Tuple[str, ...]
    error_message: str
    condition: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Answer:
    """
    Stored value for one field.

    The inspection state holds Answers as plain dicts (JSON friendly);
    this dataclass is the typed view produced by
    answer_helpers.as_answer() at read sites.

    Examples:
        >>> Answer(value=True)
        Answer(value=True, status='answered', skip_reason=None, skip_note=None)
        >>> Answer(value=None, status='skipped', skip_reason='not_accessible')
    """
    value: Any = None
    status: str = STATUS_ANSWERED
    skip_reason: Optional[str] = None
    skip_note: Optional[str] = None

    @property
    def is_skipped(self) -> bool:
        return self.status == STATUS_SKIPPED

    def to_dict(self) -> Dict[str, Any]:
        data = {"value": self.value, "status": self.status}
        if self.skip_reason is not None:
            data["skip_reason"] = self.skip_reason
        if self.skip_note is not None:
            data["skip_note"] = self.skip_note
        return data


@dataclass(frozen=True)
class IssueDetail:
    """Follow-up capture for a field whose answer indicates a problem."""
    location: str = ""
    photo_ids: Tuple[str, ...] = ()
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "photo_ids": list(self.photo_ids),
            "notes": self.notes,
        }

    @property
    def is_empty(self) -> bool:
        return not (self.location or self.notes or self.photo_ids)


@dataclass(frozen=True)
class StagedPhoto:
    """Section photo held in the draft until submission uploads it."""
    caption: str
    data_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"caption": self.caption, "dataUrl": self.data_url}


@dataclass(frozen=True)
class FieldView:
    """
    Everything the renderer needs for one field.

    The renderer must not apply its own validation or defaulting;
    `answer` is the stored Answer when present, otherwise the raw value.
    """
    field: FieldDefinition
    answer: Any
    value: Any
    error: Optional[str] = None
    is_gate: bool = False
    issue_capture: bool = False
    issue_detail: Optional[IssueDetail] = None
    enum_values: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SectionView:
    """Renderable projection of one section for the current state."""
    section_id: str
    title: str
    gated_out: bool
    auto_skipped: bool
    fields: Tuple[FieldView, ...] = field(default_factory=tuple)
    staged_photos: Tuple[StagedPhoto, ...] = field(default_factory=tuple)
    # on_false status of the first failing gate, when gated out
    gate_status: Optional[Tuple[Tuple[str, str], ...]] = None

    @property
    def skipped(self) -> bool:
        return self.gated_out or self.auto_skipped
