"""
Form Session - Page-by-page inspection flow (renderer-facing)

Responsibilities:
- Project sections into renderable views (answers, errors, gate flags,
  issue capture)
- Route answer writes: gate keys through the gate check, issue capture
  seeding, auto-skip application
- Step navigation with per-page validation
- Build and hand over the submission payload

Design principles:
- Thin orchestration layer (business logic in specialized modules)
- Single active editor: one session per process
- Validation errors are remembered per section for the renderer, never
  raised, except that submission refuses to proceed (SubmissionBlocked)
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from inspection_form.answer_helpers import as_answer
from inspection_form.contracts import (
    FieldView,
    IssueDetail,
    PageDefinition,
    SectionView,
    StagedPhoto,
)
from inspection_form.core.expression_evaluator import ExpressionEvaluator
from inspection_form.core.gate_resolver import GateResolver
from inspection_form.core.schema_repository import DEFAULT_SCHEMA_PATH, SchemaRepository
from inspection_form.core.state_store import AnswerStateStore
from inspection_form.core.validator import Validator
from inspection_form.persistence import DEFAULT_DRAFT_PATH, DraftStore
from inspection_form.results import (
    AnswerApplied,
    GateCascadeConflict,
    GateChangeApplied,
    SubmissionResult,
)
from inspection_form.utils.helpers import generate_inspection_id, utc_timestamp
from inspection_form.utils.state_paths import (
    MISSING,
    RESERVED_KEYS,
    flatten_state,
    get_in,
    lookup,
)

logger = logging.getLogger(__name__)

ISSUE_DETAILS_META_KEY = "_issue_details_meta"

# consumer(inspection_id, payload) -> anything; raising means not submitted
SubmissionConsumer = Callable[[str, Dict[str, Any]], Any]


class SubmissionBlocked(Exception):
    """
    Raised when submission is attempted while validation errors remain.

    Attributes:
        errors: section_id -> {field_key: message}
    """

    def __init__(self, errors: Dict[str, Dict[str, str]]):
        self.errors = errors
        count = sum(len(e) for e in errors.values())
        super().__init__(
            f"Submission blocked: {count} error(s) in {len(errors)} section(s)"
        )


class FormSession:
    """
    Coordinates store, resolver and validator for one inspection.
    """

    def __init__(
        self,
        schema: SchemaRepository,
        store: AnswerStateStore,
        resolver: Optional[GateResolver] = None,
        validator: Optional[Validator] = None
    ):
        """
        Initialize session.

        Args:
            schema: Loaded SchemaRepository
            store: AnswerStateStore (owns state and draft persistence)
            resolver: GateResolver (built if omitted)
            validator: Validator sharing the resolver (built if omitted)
        """
        self.schema = schema
        self.store = store
        self.resolver = resolver or GateResolver(schema, ExpressionEvaluator())
        self.validator = validator or Validator(schema, self.resolver.evaluator, self.resolver)

        self._gate_keys = self.resolver.gate_keys()
        self._section_errors: Dict[str, Dict[str, str]] = {}
        self.current_step = 0

        logger.info(f"Form session started ({len(self.visible_steps())} visible steps)")

    @property
    def state(self) -> Dict[str, Any]:
        return self.store.state

    # =========================================================================
    # Steps
    # =========================================================================

    def visible_steps(self) -> List[PageDefinition]:
        """Pages with at least one active section, in order."""
        state = self.store.state
        flat = flatten_state(state)
        return [
            page for page in self.schema.get_pages()
            if any(self.resolver.is_section_active(sid, state, flat) for sid in page.section_ids)
        ]

    def step_sections(self, index: int) -> List[str]:
        """Active section ids on a visible step (empty if out of range)."""
        steps = self.visible_steps()
        if not 0 <= index < len(steps):
            return []
        state = self.store.state
        flat = flatten_state(state)
        return [
            sid for sid in steps[index].section_ids
            if self.resolver.is_section_active(sid, state, flat)
        ]

    def is_last_step(self) -> bool:
        return self.current_step >= len(self.visible_steps()) - 1

    def advance(self) -> Dict[str, Dict[str, str]]:
        """
        Validate the current step and move forward when it is clean.

        Returns:
            Errors for the current step (empty when the step advanced or
            is the last one and ready for submission)
        """
        errors = self.validate_step(self.current_step)
        if errors:
            return errors
        if not self.is_last_step():
            self.current_step += 1
        return {}

    def go_back(self) -> int:
        self.current_step = max(0, self.current_step - 1)
        return self.current_step

    # =========================================================================
    # Rendering
    # =========================================================================

    def render_section(self, section_id: str) -> Optional[SectionView]:
        """
        Project a section for the renderer.

        Gated-out and auto-skipped sections come back with no fields.

        Returns:
            SectionView, or None for an unknown section
        """
        section = self.schema.get_section(section_id)
        if section is None:
            return None

        state = self.store.state
        flat = flatten_state(state)
        failing_gate = self.resolver.failing_gate(section_id, state, flat)
        gated_out = failing_gate is not None
        auto_skipped = self.resolver.is_section_auto_skipped(section_id, state, flat)

        fields = []
        if not (gated_out or auto_skipped):
            errors = self._section_errors.get(section_id, {})
            for field in section.fields:
                if not self.resolver.is_field_visible(field, flat):
                    continue
                node = get_in(state, field.key)
                answer = as_answer(node)
                value = lookup(flat, field.key)
                value = None if value is MISSING else value
                triggered = self.resolver.is_issue_triggered(field, value)
                fields.append(FieldView(
                    field=field,
                    answer=answer if answer is not None else (None if node is MISSING else node),
                    value=value,
                    error=errors.get(field.key),
                    is_gate=field.key in self._gate_keys,
                    issue_capture=triggered,
                    issue_detail=self.store.get_issue_detail(field.key) if triggered else None,
                    enum_values=tuple(self.schema.resolve_enum_values(field)),
                ))

        return SectionView(
            section_id=section.id,
            title=section.title,
            gated_out=gated_out,
            auto_skipped=auto_skipped,
            fields=tuple(fields),
            staged_photos=tuple(self.store.get_staged_photos(section_id)),
            gate_status=failing_gate.on_false if failing_gate else None,
        )

    def get_errors(self, section_id: str) -> Dict[str, str]:
        """Errors remembered from the last validation of a section."""
        return dict(self._section_errors.get(section_id, {}))

    # =========================================================================
    # Writes
    # =========================================================================

    def apply_answer(
        self,
        key: str,
        payload: Any,
        confirmed: bool = False
    ) -> Union[AnswerApplied, GateCascadeConflict]:
        """
        Write one answer and apply its consequences.

        Args:
            key: Field key (keys outside the dictionary, such as address
                place ids, are stored as-is)
            payload: Answer, Answer-shaped dict, or bare value
            confirmed: User confirmed clearing dependent answers

        Returns:
            AnswerApplied, or GateCascadeConflict with the state untouched
        """
        cleared: List[str] = []
        if key in self._gate_keys:
            previous = self.store.get_value(key)
            result = self.store.set_answer_with_gate_check(key, payload, previous, confirmed)
            if isinstance(result, GateCascadeConflict):
                return result
            if isinstance(result, GateChangeApplied):
                cleared = result.cleared_paths
        else:
            self.store.set_answer(key, payload)

        issue_capture = self._sync_issue_capture(key)
        auto_skipped = self._sync_auto_skips()

        return AnswerApplied(
            state=self.store.state,
            cleared_paths=cleared,
            auto_skipped=auto_skipped,
            issue_capture=issue_capture,
        )

    def clear(self, paths: List[str]) -> Dict[str, Any]:
        return self.store.clear_paths(paths)

    def _sync_issue_capture(self, key: str) -> bool:
        """
        Open capture with an empty detail on an affirmative answer; drop
        the detail when the answer is withdrawn.
        """
        field = self.schema.get_field(key)
        if field is None or not field.on_issue_capture:
            return False

        if self.resolver.is_issue_triggered(field, self.store.get_value(key)):
            if self.store.get_issue_detail(key) is None:
                self.store.set_issue_detail(key, IssueDetail())
                logger.debug(f"Issue capture opened for {key}")
            return True

        if self.store.get_issue_detail(key) is not None:
            self.store.remove_issue_detail(key)
            logger.debug(f"Issue capture closed for {key}")
        return False

    def _sync_auto_skips(self) -> List[str]:
        """
        Apply auto-skip for sections that just became inapplicable and
        release the status of sections that are applicable again.
        """
        applied = []
        for section in self.schema.get_sections():
            rule = section.section_auto_skip
            if rule is None:
                continue

            state = self.store.state
            if self.resolver.is_section_auto_skipped(section.id, state):
                if self.store.apply_auto_skip(section.id) is not state:
                    applied.append(section.id)
            else:
                self.store.release_auto_skip(section.id)
        return applied

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    def update_issue_detail(
        self,
        key: str,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        photo_ids: Optional[List[str]] = None
    ) -> IssueDetail:
        """Merge the given parts into the field's issue detail."""
        current = self.store.get_issue_detail(key) or IssueDetail()
        detail = IssueDetail(
            location=current.location if location is None else location,
            photo_ids=current.photo_ids if photo_ids is None else tuple(photo_ids),
            notes=current.notes if notes is None else notes,
        )
        self.store.set_issue_detail(key, detail)
        return self.store.get_issue_detail(key)

    def add_staged_photo(self, section_id: str, caption: str, data_url: str) -> List[StagedPhoto]:
        self.store.add_staged_photo(section_id, StagedPhoto(caption=caption, data_url=data_url))
        return self.store.get_staged_photos(section_id)

    def remove_staged_photo(self, section_id: str, index: int) -> List[StagedPhoto]:
        self.store.remove_staged_photo(section_id, index)
        return self.store.get_staged_photos(section_id)

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_step(self, index: int) -> Dict[str, Dict[str, str]]:
        """
        Validate every active section on a visible step.

        Remembered errors are replaced for each validated section.

        Returns:
            section_id -> errors, only for sections with errors
        """
        result = {}
        for section_id in self.step_sections(index):
            validation = self.validator.validate_section(section_id, self.store.state)
            if validation.errors:
                self._section_errors[section_id] = validation.errors
                result[section_id] = validation.errors
            else:
                self._section_errors.pop(section_id, None)
        return result

    def validate_all(self) -> Dict[str, Dict[str, str]]:
        result = self.validator.validate_all(self.store.state)
        self._section_errors = {sid: dict(errors) for sid, errors in result.items()}
        return result

    # =========================================================================
    # Submission
    # =========================================================================

    def build_submission_payload(self, now: Optional[str] = None) -> Dict[str, Any]:
        """
        Snapshot for submission.

        Side channels are stripped; issue details that carry anything are
        summarised under _issue_details_meta as {location, notes}.

        Raises:
            SubmissionBlocked: If any active section has errors
        """
        errors = self.validate_all()
        if errors:
            raise SubmissionBlocked(errors)

        state = self.store.state
        payload: Dict[str, Any] = {"created_at": now or utc_timestamp()}
        payload.update({k: v for k, v in state.items() if k not in RESERVED_KEYS})

        meta = {}
        for key, detail in self.store.get_issue_details().items():
            if not detail.is_empty:
                meta[key] = {"location": detail.location, "notes": detail.notes}
        payload[ISSUE_DETAILS_META_KEY] = meta

        return payload

    def submit(self, consumer: SubmissionConsumer, now: Optional[str] = None) -> SubmissionResult:
        """
        Hand the payload to consumer and discard the draft.

        The draft is only reset when the consumer returns; a raising
        consumer leaves everything in place for a retry.

        Raises:
            SubmissionBlocked: If validation errors remain
        """
        payload = self.build_submission_payload(now=now)
        inspection_id = generate_inspection_id()

        consumer(inspection_id, payload)

        self.reset()
        logger.info(f"Inspection {inspection_id} submitted")
        return SubmissionResult(
            inspection_id=inspection_id,
            payload=payload,
            submitted_at=payload["created_at"],
        )

    def reset(self) -> Dict[str, Any]:
        self._section_errors = {}
        self.current_step = 0
        return self.store.reset()


def build_session(
    schema_path: str = DEFAULT_SCHEMA_PATH,
    draft_path: Optional[str] = DEFAULT_DRAFT_PATH
) -> FormSession:
    """
    Wire the modules for one editing session.

    Args:
        schema_path: Field dictionary JSON
        draft_path: Draft file, or None to disable draft persistence
    """
    schema = SchemaRepository(schema_path)
    persistence = DraftStore(draft_path) if draft_path else None
    store = AnswerStateStore(schema, persistence=persistence)
    return FormSession(schema, store)
