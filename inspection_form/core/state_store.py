"""
Answer State Store - Nested answer tree for one inspection session

Responsibilities:
- Seed an empty state from the field dictionary (type-appropriate defaults)
- Path-based get/set/delete of Answers
- Gate-triggered cascading clears (true -> false retractions)
- Issue-detail and staged-photo side channels
- Mirror every transition to best-effort draft persistence

Design principles:
- Copy-on-write: every operation returns a new tree, the previous tree is
  never mutated (callers may keep it for undo/diffing)
- Targeted path copy: only dicts along the written path are copied,
  siblings (e.g. large room tables) are shared
- No validation (the Validator owns required/skip-reason checks)
- Malformed stored nodes read as absent, never raise

State layout:
    {
        "job": {"address": {"value": "...", "status": "answered"}, ...},
        "rcd_tests": {"summary": {"total_tested": {...}}, ...},
        "_staged_photos": {section_id: [{"caption": ..., "dataUrl": ...}]},
        "_issue_details": {field_key: {"location": ..., "photo_ids": [...], "notes": ...}}
    }

The module-level functions are pure. AnswerStateStore wraps them for a
single active editor and owns persistence.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from inspection_form.answer_helpers import (
    as_answer,
    as_issue_detail,
    as_staged_photo,
    coerce_answer,
)
from inspection_form.contracts import Answer, IssueDetail, StagedPhoto, STATUS_SKIPPED
from inspection_form.core.schema_repository import SchemaRepository
from inspection_form.results import GateCascadeConflict, GateChangeApplied
from inspection_form.utils.state_paths import (
    ISSUE_DETAILS_KEY,
    MISSING,
    STAGED_PHOTOS_KEY,
    assoc_in,
    dissoc_in,
    get_in,
)

logger = logging.getLogger(__name__)

# Maximum photos per section (staged) and per field (issue capture)
MAX_PHOTOS = 2

EXCEPTIONS_SUFFIX = ".exceptions"
NO_EXCEPTIONS_SUFFIX = ".no_exceptions"

InspectionState = Dict[str, Any]


# =============================================================================
# Pure operations
# =============================================================================

def build_empty_state(schema: SchemaRepository) -> InspectionState:
    """
    Seed every schema leaf with a default Answer.

    Skips array_object fields and keys ending in '.exceptions'.
    Defaults: boolean -> False, array_enum -> [], '.no_exceptions' -> False,
    everything else -> None. Status is always 'answered'.
    """
    return seed_defaults({}, schema)


def _is_under(key: str, path: str) -> bool:
    return key == path or key.startswith(path + ".")


def seed_defaults(
    state: InspectionState,
    schema: SchemaRepository,
    paths: Optional[Iterable[str]] = None
) -> InspectionState:
    """
    Write the default Answer for every seedable field that is absent.

    Args:
        state: Current state (not modified)
        schema: Field dictionary
        paths: Only seed fields at or under these paths (all fields if None)
    """
    paths = None if paths is None else list(paths)
    for _, field in schema.iter_fields():
        if field.type == "array_object" or field.key.endswith(EXCEPTIONS_SUFFIX):
            continue
        if paths is not None and not any(_is_under(field.key, path) for path in paths):
            continue
        if get_in(state, field.key) is not MISSING:
            continue

        value: Any = None
        if field.type == "boolean" or field.key.endswith(NO_EXCEPTIONS_SUFFIX):
            value = False
        elif field.type == "array_enum":
            value = []

        state = assoc_in(state, field.key, Answer(value=value).to_dict())
    return state


def set_answer(state: InspectionState, key: str, payload: Any) -> InspectionState:
    """
    Write an Answer at key.

    Args:
        state: Current state (not modified)
        key: Dot path, e.g. 'rcd_tests.summary.total_tested'
        payload: Answer, Answer-shaped dict, or bare value (wrapped as answered)

    Returns:
        New state
    """
    answer = coerce_answer(payload)
    return assoc_in(state, key, answer.to_dict())


def clear_paths(state: InspectionState, paths: Iterable[str]) -> InspectionState:
    """
    Delete the Answer (or subtree) at each path, together with the issue
    details of every field at or under it.

    Missing intermediates are a no-op.
    """
    paths = list(paths)
    for path in paths:
        state = dissoc_in(state, path)

    channel = _side_channel(state, ISSUE_DETAILS_KEY)
    stale = [key for key in channel if any(_is_under(key, path) for path in paths)]
    if stale:
        logger.debug(f"Dropping issue details for cleared fields: {', '.join(stale)}")
        channel = {k: v for k, v in channel.items() if k not in stale}
        state = {**state, ISSUE_DETAILS_KEY: channel}
    return state


def get_answer(state: InspectionState, key: str) -> Optional[Answer]:
    """Stored Answer at key, or None if absent or not Answer-shaped."""
    return as_answer(get_in(state, key))


def get_value(state: InspectionState, key: str) -> Any:
    """Value of the Answer at key, or None."""
    answer = get_answer(state, key)
    return answer.value if answer is not None else None


def get_clear_paths_for_gate_change(
    schema: SchemaRepository,
    changed_key: str,
    from_value: Any,
    to_value: Any
) -> List[str]:
    """
    Paths to clear when changed_key flips.

    Only a True -> False transition triggers clears. Returns the
    deduplicated union (first-seen order) of clear_paths across every
    section rule whose if_changed is changed_key.
    """
    if from_value is not True or to_value is not False:
        return []

    paths: List[str] = []
    for section in schema.get_sections():
        for rule in section.clear_on_gate_change:
            if rule.if_changed == changed_key and rule.from_value is True and rule.to_value is False:
                for path in rule.clear_paths:
                    if path not in paths:
                        paths.append(path)
    return paths


# -----------------------------------------------------------------------------
# Issue details side channel
# -----------------------------------------------------------------------------

def _side_channel(state: InspectionState, channel: str) -> Dict[str, Any]:
    node = state.get(channel)
    return node if isinstance(node, dict) else {}


def get_issue_detail(state: InspectionState, field_key: str) -> Optional[IssueDetail]:
    return as_issue_detail(_side_channel(state, ISSUE_DETAILS_KEY).get(field_key))


def get_issue_details(state: InspectionState) -> Dict[str, IssueDetail]:
    details = {}
    for field_key, node in _side_channel(state, ISSUE_DETAILS_KEY).items():
        detail = as_issue_detail(node)
        if detail is not None:
            details[field_key] = detail
    return details


def set_issue_detail(state: InspectionState, field_key: str, detail: IssueDetail) -> InspectionState:
    """
    Store issue detail for a field. Photos beyond MAX_PHOTOS are dropped.
    """
    if len(detail.photo_ids) > MAX_PHOTOS:
        logger.debug(f"Issue detail for {field_key}: dropping photos beyond {MAX_PHOTOS}")
        detail = IssueDetail(
            location=detail.location,
            photo_ids=detail.photo_ids[:MAX_PHOTOS],
            notes=detail.notes,
        )
    channel = dict(_side_channel(state, ISSUE_DETAILS_KEY))
    channel[field_key] = detail.to_dict()
    return {**state, ISSUE_DETAILS_KEY: channel}


def remove_issue_detail(state: InspectionState, field_key: str) -> InspectionState:
    channel = _side_channel(state, ISSUE_DETAILS_KEY)
    if field_key not in channel:
        return state
    channel = {k: v for k, v in channel.items() if k != field_key}
    return {**state, ISSUE_DETAILS_KEY: channel}


def add_issue_photo(state: InspectionState, field_key: str, photo_id: str) -> InspectionState:
    """Append a photo to a field's issue detail; silently ignored at the cap."""
    detail = get_issue_detail(state, field_key) or IssueDetail()
    if len(detail.photo_ids) >= MAX_PHOTOS:
        logger.debug(f"Issue detail for {field_key}: photo cap reached, add ignored")
        return state
    return set_issue_detail(state, field_key, IssueDetail(
        location=detail.location,
        photo_ids=detail.photo_ids + (photo_id,),
        notes=detail.notes,
    ))


def remove_issue_photo(state: InspectionState, field_key: str, index: int) -> InspectionState:
    detail = get_issue_detail(state, field_key)
    if detail is None or not 0 <= index < len(detail.photo_ids):
        return state
    photo_ids = detail.photo_ids[:index] + detail.photo_ids[index + 1:]
    return set_issue_detail(state, field_key, IssueDetail(
        location=detail.location,
        photo_ids=photo_ids,
        notes=detail.notes,
    ))


# -----------------------------------------------------------------------------
# Staged photos side channel
# -----------------------------------------------------------------------------

def get_staged_photos(state: InspectionState, section_id: str) -> List[StagedPhoto]:
    nodes = _side_channel(state, STAGED_PHOTOS_KEY).get(section_id)
    if not isinstance(nodes, list):
        return []
    photos = [as_staged_photo(node) for node in nodes]
    return [p for p in photos if p is not None]


def _replace_staged(state: InspectionState, section_id: str, photos: List[StagedPhoto]) -> InspectionState:
    channel = dict(_side_channel(state, STAGED_PHOTOS_KEY))
    channel[section_id] = [p.to_dict() for p in photos]
    return {**state, STAGED_PHOTOS_KEY: channel}


def add_staged_photo(state: InspectionState, section_id: str, photo: StagedPhoto) -> InspectionState:
    """Stage a photo for a section; silently ignored at the cap."""
    photos = get_staged_photos(state, section_id)
    if len(photos) >= MAX_PHOTOS:
        logger.debug(f"Section {section_id}: photo cap reached, add ignored")
        return state
    return _replace_staged(state, section_id, photos + [photo])


def remove_staged_photo(state: InspectionState, section_id: str, index: int) -> InspectionState:
    photos = get_staged_photos(state, section_id)
    if not 0 <= index < len(photos):
        return state
    return _replace_staged(state, section_id, photos[:index] + photos[index + 1:])


def update_staged_photo_caption(
    state: InspectionState,
    section_id: str,
    index: int,
    caption: str
) -> InspectionState:
    photos = get_staged_photos(state, section_id)
    if not 0 <= index < len(photos):
        return state
    photos[index] = StagedPhoto(caption=caption, data_url=photos[index].data_url)
    return _replace_staged(state, section_id, photos)


# =============================================================================
# Store
# =============================================================================

class AnswerStateStore:
    """
    Owns the answer tree for one active editing session.

    Every transition replaces self.state wholesale and is mirrored to the
    optional persistence layer. Persistence failures never affect the
    in-memory state.
    """

    def __init__(
        self,
        schema: SchemaRepository,
        persistence=None,
        initial_state: Optional[InspectionState] = None
    ):
        """
        Initialize store.

        Args:
            schema: Loaded SchemaRepository
            persistence: Optional object with load()/save(state)/clear()
            initial_state: Explicit starting state (skips persistence load)
        """
        self.schema = schema
        self.persistence = persistence

        if initial_state is not None:
            self._state = initial_state
        else:
            self._state = self._load_or_build()

        logger.info(f"Answer State Store initialized (schema version {schema.version})")

    def _load_or_build(self) -> InspectionState:
        if self.persistence is not None:
            draft = self.persistence.load()
            if isinstance(draft, dict):
                logger.info("Restored inspection draft from persistence")
                return draft
        return build_empty_state(self.schema)

    # ========================
    # Private Helpers
    # ========================

    def _commit(self, new_state: InspectionState) -> InspectionState:
        self._state = new_state
        if self.persistence is not None:
            self.persistence.save(new_state)
        return new_state

    # ========================
    # Reads
    # ========================

    @property
    def state(self) -> InspectionState:
        return self._state

    def snapshot(self) -> InspectionState:
        """Current state (safe to keep: it is never mutated in place)."""
        return self._state

    def get_answer(self, key: str) -> Optional[Answer]:
        return get_answer(self._state, key)

    def get_value(self, key: str) -> Any:
        return get_value(self._state, key)

    # ========================
    # Answer Writes
    # ========================

    def set_answer(self, key: str, payload: Any) -> InspectionState:
        """
        Write an answer (bare values are wrapped as answered).

        Example:
            store.set_answer('job.client_name', 'A. Client')
            store.set_answer('roof.cable_condition',
                             {'value': None, 'status': 'skipped', 'skip_reason': 'not_accessible'})
        """
        logger.debug(f"Set answer: {key}")
        return self._commit(set_answer(self._state, key, payload))

    def get_clear_paths_for_gate_change(self, key: str, from_value: Any, to_value: Any) -> List[str]:
        return get_clear_paths_for_gate_change(self.schema, key, from_value, to_value)

    def set_answer_with_gate_check(
        self,
        key: str,
        payload: Any,
        previous_value: Any = None,
        confirmed: bool = False
    ):
        """
        Write a gate answer, clearing dependent paths on a True -> False flip.

        Atomic: the write and the clears land in one transition, or neither.

        Args:
            key: Gate field key (e.g., 'rcd_tests.performed')
            payload: New Answer or bare value
            previous_value: Value before the change
            confirmed: User confirmed the clear

        Returns:
            GateChangeApplied, or GateCascadeConflict when clears are needed
            and confirmed is False
        """
        answer = coerce_answer(payload)
        paths = self.get_clear_paths_for_gate_change(key, previous_value, answer.value)

        if paths and not confirmed:
            logger.info(f"Gate change on {key} needs confirmation (would clear {len(paths)} paths)")
            return GateCascadeConflict(field_key=key, clear_paths=paths)

        new_state = set_answer(self._state, key, answer)
        new_state = clear_paths(new_state, paths)
        if paths:
            logger.info(f"Gate change on {key} cleared: {', '.join(paths)}")
        return GateChangeApplied(state=self._commit(new_state), cleared_paths=paths)

    def clear_paths(self, paths: Iterable[str]) -> InspectionState:
        return self._commit(clear_paths(self._state, list(paths)))

    def apply_auto_skip(self, section_id: str) -> InspectionState:
        """
        Apply a section's auto-skip: clear its paths and record the
        not-applicable status at the section's status_field.
        """
        section = self.schema.get_section(section_id)
        if section is None or section.section_auto_skip is None:
            return self._state

        auto = section.section_auto_skip
        new_state = clear_paths(self._state, auto.clear_paths)
        if section.status_field:
            current = get_answer(new_state, section.status_field)
            status_answer = Answer(
                value=auto.set_status,
                status=STATUS_SKIPPED,
                skip_reason=auto.skip_reason or None,
            )
            if current != status_answer:
                new_state = set_answer(new_state, section.status_field, status_answer)

        if new_state is self._state:
            return self._state
        logger.info(f"Section {section_id} auto-skipped ({auto.skip_reason or auto.set_status})")
        return self._commit(new_state)

    def release_auto_skip(self, section_id: str) -> InspectionState:
        """
        Undo an applied auto-skip: drop the recorded status and re-seed the
        defaults of the cleared fields.

        No-op unless the status_field holds the auto-skip status.
        """
        section = self.schema.get_section(section_id)
        if section is None or section.section_auto_skip is None or not section.status_field:
            return self._state

        auto = section.section_auto_skip
        status = get_answer(self._state, section.status_field)
        if status is None or not status.is_skipped or status.value != auto.set_status:
            return self._state

        new_state = dissoc_in(self._state, section.status_field)
        new_state = seed_defaults(new_state, self.schema, auto.clear_paths)
        logger.info(f"Section {section_id} applicable again, auto-skip status released")
        return self._commit(new_state)

    # ========================
    # Side Channels
    # ========================

    def get_issue_detail(self, field_key: str) -> Optional[IssueDetail]:
        return get_issue_detail(self._state, field_key)

    def get_issue_details(self) -> Dict[str, IssueDetail]:
        return get_issue_details(self._state)

    def set_issue_detail(self, field_key: str, detail: IssueDetail) -> InspectionState:
        return self._commit(set_issue_detail(self._state, field_key, detail))

    def remove_issue_detail(self, field_key: str) -> InspectionState:
        return self._commit(remove_issue_detail(self._state, field_key))

    def add_issue_photo(self, field_key: str, photo_id: str) -> InspectionState:
        return self._commit(add_issue_photo(self._state, field_key, photo_id))

    def remove_issue_photo(self, field_key: str, index: int) -> InspectionState:
        return self._commit(remove_issue_photo(self._state, field_key, index))

    def get_staged_photos(self, section_id: str) -> List[StagedPhoto]:
        return get_staged_photos(self._state, section_id)

    def add_staged_photo(self, section_id: str, photo: StagedPhoto) -> InspectionState:
        return self._commit(add_staged_photo(self._state, section_id, photo))

    def remove_staged_photo(self, section_id: str, index: int) -> InspectionState:
        return self._commit(remove_staged_photo(self._state, section_id, index))

    def update_staged_photo_caption(self, section_id: str, index: int, caption: str) -> InspectionState:
        return self._commit(update_staged_photo_caption(self._state, section_id, index, caption))

    # ========================
    # Utility Methods
    # ========================

    def reset(self) -> InspectionState:
        """
        Discard the draft and start from an empty skeleton.

        Warning: This erases all answers. Use after submission or on an
        explicit clear.
        """
        if self.persistence is not None:
            self.persistence.clear()
        self._state = build_empty_state(self.schema)
        logger.info("Answer State Store reset - draft cleared")
        return self._state
