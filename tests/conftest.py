"""
Shared fixtures: the bundled field dictionary and a fully answered inspection.
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from inspection_form.core.schema_repository import SchemaRepository
from inspection_form.core.state_store import build_empty_state, set_answer

SCHEMA_PATH = project_root / "data" / "field_dictionary.json"


def load_schema():
    return SchemaRepository(str(SCHEMA_PATH))


def build_state(schema, answers):
    """Empty skeleton with the given key -> payload answers applied in order."""
    state = build_empty_state(schema)
    for key, payload in answers.items():
        state = set_answer(state, key, payload)
    return state


# Every required field answered; all optional test areas switched off
COMPLETE_ANSWERS = {
    "job.address": "12 Lygon St, Carlton VIC 3053",
    "job.address_place_id": "place-123",
    "job.address_components": {"suburb": "Carlton", "state": "VIC", "postcode": "3053"},
    "job.client_name": "A. Client",
    "job.property_type": "house",
    "access.switchboard_accessible": True,
    "access.roof_accessible": True,
    "access.underfloor_accessible": True,
    "switchboard.enclosure_condition": "good",
    "switchboard.heat_marks": "no",
    "switchboard.main_switch_rating_a": 63,
    "roof.cable_condition": "good",
    "roof.insulation_contact": False,
    "rcd_tests.performed": False,
    "gpo_tests.performed": False,
    "assets.has_solar_pv": False,
    "assets.has_battery": False,
    "assets.has_ev_charger": False,
    "signoff.technician_name": "T. Technician",
    "signoff.declaration": True,
}


@pytest.fixture(scope="session")
def schema():
    return load_schema()


@pytest.fixture
def complete_state(schema):
    return build_state(schema, COMPLETE_ANSWERS)
