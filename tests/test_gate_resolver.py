"""
Test Gate Resolver - Section gating, auto-skip, field visibility, issue capture

Run with: pytest tests/test_gate_resolver.py -v
"""

import pytest

from conftest import build_state, load_schema
from inspection_form.contracts import IssueDetail
from inspection_form.core.gate_resolver import GateResolver
from inspection_form.core.state_store import set_answer, set_issue_detail
from inspection_form.utils.state_paths import flatten_state


class TestSectionGating:
    """Gates and auto-skip over the bundled dictionary"""

    @classmethod
    def setup_class(cls):
        cls.schema = load_schema()
        cls.resolver = GateResolver(cls.schema)

    def test_unset_gate_dependency_gates_out(self):
        assert self.resolver.is_section_gated_out("S2_SWITCHBOARD_OVERVIEW", {})

    def test_false_gate_dependency_gates_out(self):
        state = build_state(self.schema, {})
        assert self.resolver.is_section_gated_out("S2_SWITCHBOARD_OVERVIEW", state)

    def test_matching_gate_keeps_section(self):
        state = build_state(self.schema, {"access.switchboard_accessible": True})
        assert not self.resolver.is_section_gated_out("S2_SWITCHBOARD_OVERVIEW", state)
        assert self.resolver.is_section_active("S2_SWITCHBOARD_OVERVIEW", state)

    def test_gate_is_strict(self):
        state = set_answer({}, "access.switchboard_accessible", 1)
        assert self.resolver.is_section_gated_out("S2_SWITCHBOARD_OVERVIEW", state)

    def test_ungated_section(self):
        assert not self.resolver.is_section_gated_out("S0_START_CONTEXT", {})

    def test_unknown_section_not_gated(self):
        assert not self.resolver.is_section_gated_out("NOPE", {})
        assert not self.resolver.is_section_auto_skipped("NOPE", {})

    def test_auto_skip_when_all_access_false(self):
        state = build_state(self.schema, {
            "access.roof_accessible": False,
            "access.underfloor_accessible": False,
        })
        assert self.resolver.is_section_auto_skipped("S3F_ROOF_SPACE", state)
        assert not self.resolver.is_section_active("S3F_ROOF_SPACE", state)
        assert "S3F_ROOF_SPACE" in self.resolver.auto_skipped_sections(state)

    def test_no_auto_skip_when_one_accessible(self):
        state = build_state(self.schema, {
            "access.roof_accessible": True,
            "access.underfloor_accessible": False,
        })
        assert not self.resolver.is_section_auto_skipped("S3F_ROOF_SPACE", state)

    def test_no_auto_skip_when_untouched(self):
        state = set_answer({}, "access.roof_accessible", False)
        assert not self.resolver.is_section_auto_skipped("S3F_ROOF_SPACE", state)

    def test_active_sections_follow_gates(self):
        state = build_state(self.schema, {
            "gpo_tests.performed": True,
            "assets.has_solar_pv": True,
        })
        active = [s.id for s in self.resolver.active_sections(state)]
        assert "S8_GPO_LIGHTING_EXCEPTIONS" in active
        assert "S9C_SOLAR_DETAIL" in active
        assert "S2_SWITCHBOARD_OVERVIEW" not in active

    def test_gate_keys(self):
        keys = self.resolver.gate_keys()
        assert {
            "access.switchboard_accessible",
            "rcd_tests.performed",
            "gpo_tests.performed",
            "assets.has_solar_pv",
            "assets.has_battery",
        } <= keys
        assert "job.client_name" not in keys


class TestFieldVisibility:

    @classmethod
    def setup_class(cls):
        cls.schema = load_schema()
        cls.resolver = GateResolver(cls.schema)

    def test_show_when(self):
        keys = [f.key for f in self.resolver.visible_fields("S10_SIGNOFF", build_state(self.schema, {}))]
        assert "signoff.additional_notes" not in keys

        state = build_state(self.schema, {"signoff.declaration": True})
        keys = [f.key for f in self.resolver.visible_fields("S10_SIGNOFF", state)]
        assert "signoff.additional_notes" in keys

    def test_required_when_hides_field(self):
        state = build_state(self.schema, {"rcd_tests.performed": False})
        keys = [f.key for f in self.resolver.visible_fields("S5_RCD_TESTS_SUMMARY", state)]
        assert keys == ["rcd_tests.performed"]

        state = set_answer(state, "rcd_tests.performed", True)
        keys = [f.key for f in self.resolver.visible_fields("S5_RCD_TESTS_SUMMARY", state)]
        assert "rcd_tests.summary.total_tested" in keys
        assert "rcd_tests.exceptions" in keys

    def test_skipped_section_has_no_visible_fields(self):
        assert self.resolver.visible_fields("S2_SWITCHBOARD_OVERVIEW", {}) == []

    @pytest.mark.parametrize("answers, required", [
        ({"access.switchboard_accessible": True, "access.roof_accessible": True,
          "access.underfloor_accessible": True}, False),
        ({"access.switchboard_accessible": True, "access.roof_accessible": False,
          "access.underfloor_accessible": True}, True),
    ])
    def test_wildcard_required_when(self, answers, required):
        flat = flatten_state(build_state(self.schema, answers))
        field = self.schema.get_field("access.limitations_note")
        assert self.resolver.is_field_required(field, flat) is required


class TestIssueCapture:

    @classmethod
    def setup_class(cls):
        cls.schema = load_schema()
        cls.resolver = GateResolver(cls.schema)

    def test_trigger_values(self):
        heat_marks = self.schema.get_field("switchboard.heat_marks")
        insulation = self.schema.get_field("roof.insulation_contact")
        condition = self.schema.get_field("switchboard.enclosure_condition")

        assert GateResolver.is_issue_triggered(heat_marks, "yes")
        assert not GateResolver.is_issue_triggered(heat_marks, "unsure")
        assert GateResolver.is_issue_triggered(insulation, True)
        assert not GateResolver.is_issue_triggered(insulation, False)
        assert not GateResolver.is_issue_triggered(condition, "poor")

    def test_pending_captures(self):
        state = build_state(self.schema, {
            "access.switchboard_accessible": True,
            "switchboard.heat_marks": "yes",
        })
        assert self.resolver.pending_issue_captures("S2_SWITCHBOARD_OVERVIEW", state) == [
            "switchboard.heat_marks"
        ]

        state = set_issue_detail(state, "switchboard.heat_marks", IssueDetail(location="Main board"))
        assert self.resolver.pending_issue_captures("S2_SWITCHBOARD_OVERVIEW", state) == []
