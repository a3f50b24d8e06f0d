"""
Gate Resolver - Section gating, auto-skip and field visibility

Responsibilities:
- Decide whether a section is gated out (any gate mismatch)
- Decide whether a section is auto-skipped (whole area inapplicable)
- Decide which fields are visible and which are required
- Detect fields whose answer triggers issue capture

Design principles:
- Stateless: all state comes from the state parameter
- Deterministic: same input always produces same output
- Unknown sections are never gated out or skipped (logged by the schema)

Two readings of any(...) are kept apart on purpose:
- Field expressions (required_when/show_when) use the general evaluator,
  where any(p1, p2) == literal means "some path equals literal"
- section_auto_skip.when reads any(p1, p2) as "every listed path is
  False" (all_false): auto-skip fires only when a whole access-gated
  area is uniformly inapplicable
"""

import logging
from typing import Any, Dict, List, Optional, Set

from inspection_form.contracts import FieldDefinition, GateDefinition, SectionDefinition
from inspection_form.core.expression_evaluator import (
    AnyEquals,
    AnyOf,
    ExpressionEvaluator,
    all_false,
    strict_equals,
)
from inspection_form.core.schema_repository import SchemaRepository
from inspection_form.core.state_store import get_issue_detail
from inspection_form.utils.state_paths import flatten_state, lookup

logger = logging.getLogger(__name__)

# Enum whose affirmative answer triggers issue capture
YES_NO_UNSURE_ENUM = "yes_no_unsure"


class GateResolver:
    """Stateless visibility decisions over the current answer tree."""

    def __init__(self, schema: SchemaRepository, evaluator: Optional[ExpressionEvaluator] = None):
        self.schema = schema
        self.evaluator = evaluator or ExpressionEvaluator()

    # =========================================================================
    # Section level
    # =========================================================================

    def is_section_gated_out(self, section_id: str, state: Dict[str, Any], flat: Optional[Dict[str, Any]] = None) -> bool:
        """
        True iff any gate's depends_on value does not strictly equal gate.equals.

        Gates are AND-combined; an unset dependency is a mismatch.
        """
        return self.failing_gate(section_id, state, flat) is not None

    def failing_gate(self, section_id: str, state: Dict[str, Any], flat: Optional[Dict[str, Any]] = None) -> Optional[GateDefinition]:
        """First gate whose dependency does not match, or None."""
        section = self.schema.get_section(section_id)
        if section is None or not section.gates:
            return None

        if flat is None:
            flat = flatten_state(state)

        for gate in section.gates:
            if not strict_equals(lookup(flat, gate.depends_on), gate.equals):
                return gate
        return None

    def is_section_auto_skipped(self, section_id: str, state: Dict[str, Any], flat: Optional[Dict[str, Any]] = None) -> bool:
        """
        Evaluate section_auto_skip.when.

        any(p1, p2, ...) (with or without a trailing literal) means all
        listed paths are False. Any other form is evaluated by the general
        evaluator.
        """
        section = self.schema.get_section(section_id)
        if section is None or section.section_auto_skip is None:
            return False

        if flat is None:
            flat = flatten_state(state)

        when = section.section_auto_skip.when
        node = self.evaluator.parse(when)
        if isinstance(node, (AnyEquals, AnyOf)):
            return all_false(flat, self.evaluator.paths_of(when))
        return self.evaluator.evaluate(when, flat)

    def is_section_active(self, section_id: str, state: Dict[str, Any], flat: Optional[Dict[str, Any]] = None) -> bool:
        """Neither gated out nor auto-skipped."""
        if flat is None:
            flat = flatten_state(state)
        return not (
            self.is_section_gated_out(section_id, state, flat)
            or self.is_section_auto_skipped(section_id, state, flat)
        )

    def active_sections(self, state: Dict[str, Any]) -> List[SectionDefinition]:
        flat = flatten_state(state)
        return [
            section for section in self.schema.get_sections()
            if self.is_section_active(section.id, state, flat)
        ]

    def auto_skipped_sections(self, state: Dict[str, Any]) -> List[str]:
        flat = flatten_state(state)
        return [
            section.id for section in self.schema.get_sections()
            if self.is_section_auto_skipped(section.id, state, flat)
        ]

    def gate_keys(self) -> Set[str]:
        """
        Keys whose change can gate sections or cascade clears.

        The renderer routes these through the gate-change setter.
        """
        keys = set()
        for section in self.schema.get_sections():
            keys.update(gate.depends_on for gate in section.gates)
            keys.update(rule.if_changed for rule in section.clear_on_gate_change)
        return keys

    # =========================================================================
    # Field level
    # =========================================================================

    def is_field_required(self, field: FieldDefinition, flat: Dict[str, Any]) -> bool:
        if field.required:
            return True
        if field.required_when:
            return self.evaluator.evaluate(field.required_when, flat)
        return False

    def is_field_visible(self, field: FieldDefinition, flat: Dict[str, Any]) -> bool:
        """
        show_when must hold when present; required_when doubles as a
        visibility condition for the renderer.
        """
        if field.show_when and not self.evaluator.evaluate(field.show_when, flat):
            return False
        if field.required_when and not self.evaluator.evaluate(field.required_when, flat):
            return False
        return True

    def visible_fields(self, section_id: str, state: Dict[str, Any]) -> List[FieldDefinition]:
        """
        Fields to present for a section; empty when the section is skipped.
        """
        section = self.schema.get_section(section_id)
        if section is None:
            return []

        flat = flatten_state(state)
        if not self.is_section_active(section_id, state, flat):
            return []
        return [f for f in section.fields if self.is_field_visible(f, flat)]

    # =========================================================================
    # Issue capture
    # =========================================================================

    @staticmethod
    def is_issue_triggered(field: FieldDefinition, value: Any) -> bool:
        """
        True for an affirmative answer on an on_issue_capture field:
        boolean True, or 'yes' on a yes/no/unsure enum.
        """
        if not field.on_issue_capture:
            return False
        if field.type == "boolean":
            return value is True
        if field.enum == YES_NO_UNSURE_ENUM:
            return value == "yes"
        return False

    def triggered_issue_fields(self, section_id: str, state: Dict[str, Any]) -> List[FieldDefinition]:
        """Visible fields in the section whose current answer triggers capture."""
        flat = flatten_state(state)
        return [
            field for field in self.visible_fields(section_id, state)
            if self.is_issue_triggered(field, lookup(flat, field.key))
        ]

    def pending_issue_captures(self, section_id: str, state: Dict[str, Any]) -> List[str]:
        """Keys of triggered fields that have no issue detail recorded yet."""
        return [
            field.key for field in self.triggered_issue_fields(section_id, state)
            if get_issue_detail(state, field.key) is None
        ]
