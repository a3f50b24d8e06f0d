"""
Test Answer State Store - Nested answer tree, gate clears, side channels

Run with: pytest tests/test_state_store.py -v
"""

from unittest.mock import Mock

import pytest

from conftest import load_schema
from inspection_form.contracts import Answer, IssueDetail, StagedPhoto
from inspection_form.core.state_store import (
    MAX_PHOTOS,
    AnswerStateStore,
    add_issue_photo,
    add_staged_photo,
    build_empty_state,
    clear_paths,
    get_answer,
    get_clear_paths_for_gate_change,
    get_staged_photos,
    get_value,
    remove_staged_photo,
    seed_defaults,
    set_answer,
    set_issue_detail,
    update_staged_photo_caption,
)
from inspection_form.results import GateCascadeConflict, GateChangeApplied
from inspection_form.utils.state_paths import (
    ISSUE_DETAILS_KEY,
    MISSING,
    assoc_in,
    dissoc_in,
    flatten_state,
    get_in,
    lookup,
)

schema = load_schema()


# =============================================================================
# Path helpers
# =============================================================================

def test_assoc_in_copies_only_written_path():
    tree = {"a": {"x": 1}, "b": {"y": 2}}
    updated = assoc_in(tree, "a.x", 5)

    assert updated["a"]["x"] == 5
    assert tree["a"]["x"] == 1
    assert updated["b"] is tree["b"]


def test_assoc_in_replaces_answer_intermediate():
    tree = {"a": {"value": 1, "status": "answered"}}
    updated = assoc_in(tree, "a.b", 2)
    assert updated == {"a": {"b": 2}}


def test_dissoc_in_missing_path_is_noop():
    tree = {"a": {"x": 1}}
    assert dissoc_in(tree, "a.y.z") is tree
    assert dissoc_in(tree, "a.x") == {"a": {}}
    assert tree == {"a": {"x": 1}}


def test_flatten_state():
    state = {
        "job": {"address": {"value": "1 Main St", "status": "answered"}},
        "gpo_tests": {"rooms": {"value": [{"room_type": "kitchen", "pass_count": 2}], "status": "answered"}},
        "raw": {"rows": [{"n": 1}, {"n": 2}], "leaf": None},
        ISSUE_DETAILS_KEY: {"x": {"location": "Hall"}},
    }
    flat = flatten_state(state)

    assert flat["job.address"] == "1 Main St"
    # Answer-shaped nodes stop descent
    assert flat["gpo_tests.rooms"] == [{"room_type": "kitchen", "pass_count": 2}]
    assert "gpo_tests.rooms[0].room_type" not in flat
    # Plain arrays of objects are indexed
    assert flat["raw.rows[1].n"] == 2
    assert flat["raw.leaf"] is None
    assert not any(key.startswith(ISSUE_DETAILS_KEY) for key in flat)


def test_lookup_flat_then_nested():
    flat = {"rcd_tests.performed": True}
    assert lookup(flat, "rcd_tests.performed") is True
    assert lookup({"a": {"b": 1}}, "a.b") == 1
    assert lookup({}, "a.b") is MISSING


# =============================================================================
# Pure operations
# =============================================================================

def test_empty_state_defaults():
    state = build_empty_state(schema)

    assert get_in(state, "access.roof_accessible") == {"value": False, "status": "answered"}
    assert get_value(state, "rcd_tests.no_exceptions") is False
    assert get_value(state, "job.reported_issues") == []
    assert get_value(state, "job.address") is None
    # No table or exceptions entries
    assert get_in(state, "gpo_tests.rooms") is MISSING
    assert get_in(state, "rcd_tests.exceptions") is MISSING
    assert get_in(state, "gpo_tests.exceptions") is MISSING


def test_set_answer_round_trip():
    state = build_empty_state(schema)
    updated = set_answer(state, "rcd_tests.summary.total_tested", {"value": 5, "status": "answered"})

    assert get_answer(updated, "rcd_tests.summary.total_tested") == Answer(value=5)
    assert get_value(state, "rcd_tests.summary.total_tested") is None


@pytest.mark.parametrize("value", [
    "A. Client",
    "",
    42,
    13.5,
    True,
    False,
    ["tripping", "other"],
    [{"room_type": "kitchen", "pass_count": 2}, {"room_type": "garage"}],
    [{"value": 1, "status": "answered"}],
    None,
])
def test_set_answer_get_value_round_trip(value):
    state = set_answer(build_empty_state(schema), "job.client_name", value)
    assert get_value(state, "job.client_name") == value
    assert type(get_value(state, "job.client_name")) is type(value)


def test_set_answer_wraps_bare_value():
    state = set_answer({}, "job.client_name", "A. Client")
    assert get_in(state, "job.client_name") == {"value": "A. Client", "status": "answered"}


def test_set_answer_skipped():
    state = set_answer({}, "roof.cable_condition", {
        "value": None, "status": "skipped", "skip_reason": "not_accessible"
    })
    answer = get_answer(state, "roof.cable_condition")
    assert answer.is_skipped
    assert answer.skip_reason == "not_accessible"


def test_set_answer_idempotent():
    state = build_empty_state(schema)
    once = set_answer(state, "job.client_name", "A. Client")
    twice = set_answer(once, "job.client_name", "A. Client")
    assert once == twice


def test_set_answer_shares_siblings():
    state = build_empty_state(schema)
    updated = set_answer(state, "job.client_name", "A. Client")
    assert updated["access"] is state["access"]
    assert updated["job"] is not state["job"]


def test_malformed_node_reads_as_absent():
    state = {"job": {"client_name": {"value": "x", "status": "weird"}}}
    assert get_answer(state, "job.client_name") is None
    assert get_value(state, "job.client_name") is None


def test_clear_paths():
    state = set_answer({}, "rcd_tests.summary.total_tested", 5)
    state = set_answer(state, "rcd_tests.performed", True)
    cleared = clear_paths(state, ["rcd_tests.summary", "rcd_tests.exceptions"])

    assert get_in(cleared, "rcd_tests.summary") is MISSING
    assert get_value(cleared, "rcd_tests.performed") is True
    assert get_value(state, "rcd_tests.summary.total_tested") == 5


def test_clear_paths_drops_issue_details_under_path():
    state = set_answer({}, "assets.solar.isolator_damage", True)
    state = set_issue_detail(state, "assets.solar.isolator_damage", IssueDetail(location="Roof"))
    state = set_issue_detail(state, "assets.solar_extra", IssueDetail(location="Shed"))
    state = set_issue_detail(state, "switchboard.heat_marks", IssueDetail(location="Board"))

    cleared = clear_paths(state, ["assets.solar"])

    # Prefix match is by whole path segment
    assert set(cleared[ISSUE_DETAILS_KEY]) == {"assets.solar_extra", "switchboard.heat_marks"}
    assert set(state[ISSUE_DETAILS_KEY]) == {
        "assets.solar.isolator_damage", "assets.solar_extra", "switchboard.heat_marks"
    }


def test_clear_paths_exact_issue_key():
    state = set_issue_detail({}, "roof.insulation_contact", IssueDetail(location="Above kitchen"))
    assert clear_paths(state, ["roof.insulation_contact"])[ISSUE_DETAILS_KEY] == {}


def test_clear_paths_nothing_to_clear_keeps_state():
    state = set_issue_detail({}, "roof.insulation_contact", IssueDetail(location="Above kitchen"))
    assert clear_paths(state, ["rcd_tests.summary"]) is state


def test_seed_defaults_only_missing_fields_under_paths():
    state = set_answer({}, "roof.cable_condition", "poor")
    seeded = seed_defaults(state, schema, ["roof.cable_condition", "roof.insulation_contact"])

    assert get_value(seeded, "roof.cable_condition") == "poor"
    assert get_answer(seeded, "roof.insulation_contact") == Answer(value=False)
    assert get_in(seeded, "access") is MISSING


def test_gate_clear_paths_only_on_true_to_false():
    paths = get_clear_paths_for_gate_change(schema, "rcd_tests.performed", True, False)
    assert paths == ["rcd_tests.summary", "rcd_tests.exceptions", "rcd_tests.no_exceptions"]

    assert get_clear_paths_for_gate_change(schema, "rcd_tests.performed", False, True) == []
    assert get_clear_paths_for_gate_change(schema, "rcd_tests.performed", None, False) == []
    assert get_clear_paths_for_gate_change(schema, "rcd_tests.performed", True, True) == []
    assert get_clear_paths_for_gate_change(schema, "job.client_name", True, False) == []


# =============================================================================
# Side channels
# =============================================================================

def test_issue_photos_capped():
    state = {}
    for photo in ("p1", "p2", "p3"):
        state = add_issue_photo(state, "switchboard.heat_marks", photo)
    assert state[ISSUE_DETAILS_KEY]["switchboard.heat_marks"]["photo_ids"] == ["p1", "p2"]


def test_set_issue_detail_truncates_photos():
    state = set_issue_detail({}, "roof.insulation_contact", IssueDetail(
        location="Above kitchen", photo_ids=("a", "b", "c"), notes="Batts on downlight"
    ))
    stored = state[ISSUE_DETAILS_KEY]["roof.insulation_contact"]
    assert stored == {"location": "Above kitchen", "photo_ids": ["a", "b"], "notes": "Batts on downlight"}


def test_staged_photos():
    state = {}
    for index in range(MAX_PHOTOS + 1):
        state = add_staged_photo(state, "S1_ACCESS_LIMITATIONS", StagedPhoto(f"photo {index}", f"data:{index}"))

    photos = get_staged_photos(state, "S1_ACCESS_LIMITATIONS")
    assert [p.caption for p in photos] == ["photo 0", "photo 1"]

    state = update_staged_photo_caption(state, "S1_ACCESS_LIMITATIONS", 1, "Manhole")
    assert get_staged_photos(state, "S1_ACCESS_LIMITATIONS")[1].caption == "Manhole"

    state = remove_staged_photo(state, "S1_ACCESS_LIMITATIONS", 0)
    assert state["_staged_photos"]["S1_ACCESS_LIMITATIONS"] == [{"caption": "Manhole", "dataUrl": "data:1"}]


def test_side_channels_not_visible_to_evaluator():
    state = add_staged_photo({}, "S1", StagedPhoto("c", "data:x"))
    assert flatten_state(state) == {}


# =============================================================================
# Store
# =============================================================================

def make_store(**kwargs):
    persistence = Mock()
    persistence.load.return_value = None
    return AnswerStateStore(schema, persistence=persistence, **kwargs), persistence


def test_store_persists_every_transition():
    store, persistence = make_store()
    store.set_answer("job.client_name", "A. Client")

    persistence.save.assert_called_once_with(store.state)


def test_store_restores_draft():
    persistence = Mock()
    persistence.load.return_value = {"job": {"client_name": {"value": "Restored", "status": "answered"}}}
    store = AnswerStateStore(schema, persistence=persistence)
    assert store.get_value("job.client_name") == "Restored"


def test_gate_check_conflict_leaves_state():
    store, _ = make_store()
    store.set_answer("rcd_tests.performed", True)
    store.set_answer("rcd_tests.summary.total_tested", 5)
    before = store.state

    result = store.set_answer_with_gate_check("rcd_tests.performed", False, previous_value=True)

    assert isinstance(result, GateCascadeConflict)
    assert "rcd_tests.summary" in result.clear_paths
    assert store.state is before


def test_gate_check_confirmed_clears():
    store, _ = make_store()
    store.set_answer("rcd_tests.performed", True)
    store.set_answer("rcd_tests.summary.total_tested", 5)

    result = store.set_answer_with_gate_check(
        "rcd_tests.performed", False, previous_value=True, confirmed=True
    )

    assert isinstance(result, GateChangeApplied)
    assert store.get_value("rcd_tests.performed") is False
    assert get_in(store.state, "rcd_tests.summary") is MISSING
    assert get_in(store.state, "rcd_tests.no_exceptions") is MISSING


def test_gate_check_without_clears_applies():
    store, _ = make_store()
    result = store.set_answer_with_gate_check("rcd_tests.performed", True, previous_value=False)
    assert isinstance(result, GateChangeApplied)
    assert result.cleared_paths == []


def test_apply_auto_skip():
    store, _ = make_store()
    store.set_answer("roof.cable_condition", "good")

    store.apply_auto_skip("S3F_ROOF_SPACE")

    status = store.get_answer("roof.section_status")
    assert status == Answer(value="not_applicable", status="skipped", skip_reason="not_accessible")
    assert get_in(store.state, "roof.cable_condition") is MISSING
    assert get_in(store.state, "roof.insulation_contact") is MISSING

    # Second application changes nothing
    state = store.state
    assert store.apply_auto_skip("S3F_ROOF_SPACE") is state


def test_gate_check_drops_issue_details_of_cleared_fields():
    store, _ = make_store()
    store.set_answer_with_gate_check("assets.has_solar_pv", True, previous_value=False)
    store.set_answer("assets.solar.isolator_damage", True)
    store.set_issue_detail("assets.solar.isolator_damage", IssueDetail(location="Roof", notes="cracked"))

    result = store.set_answer_with_gate_check(
        "assets.has_solar_pv", False, previous_value=True, confirmed=True
    )

    assert result.cleared_paths == ["assets.solar"]
    assert store.get_issue_detail("assets.solar.isolator_damage") is None


def test_release_auto_skip_restores_defaults():
    store, _ = make_store()
    store.set_answer("roof.cable_condition", "good")
    store.apply_auto_skip("S3F_ROOF_SPACE")

    store.release_auto_skip("S3F_ROOF_SPACE")

    assert get_in(store.state, "roof.section_status") is MISSING
    assert store.get_answer("roof.cable_condition") == Answer(value=None)
    assert store.get_answer("roof.insulation_contact") == Answer(value=False)

    # Nothing recorded: nothing to release
    state = store.state
    assert store.release_auto_skip("S3F_ROOF_SPACE") is state


def test_reset_clears_draft():
    store, persistence = make_store()
    store.set_answer("job.client_name", "A. Client")

    store.reset()

    persistence.clear.assert_called_once()
    assert store.get_value("job.client_name") is None
