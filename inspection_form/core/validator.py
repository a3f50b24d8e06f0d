"""
Validator - Per-section and whole-form validation

Responsibilities:
- Required / skip-reason / type / range checks per field
- Address autocomplete completeness
- Structural rules for room tables and exception lists
- Cross-field numeric rules from the field dictionary

Design principles:
- Never raises for data-shape problems: messages are accumulated
- At most one message per field key (later structural checks overwrite)
- Gated-out and auto-skipped sections produce no errors
- Stateless: all state comes from the state parameter
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from inspection_form.answer_helpers import as_answer, unwrap
from inspection_form.contracts import FieldDefinition
from inspection_form.core.expression_evaluator import ExpressionEvaluator
from inspection_form.core.gate_resolver import GateResolver
from inspection_form.core.schema_repository import SchemaRepository
from inspection_form.core.state_store import EXCEPTIONS_SUFFIX, NO_EXCEPTIONS_SUFFIX
from inspection_form.results import SectionValidation
from inspection_form.utils.helpers import format_number, to_number
from inspection_form.utils.state_paths import MISSING, flatten_state, get_in, lookup

logger = logging.getLogger(__name__)

# Messages
MSG_REQUIRED = "Required."
MSG_SKIP_REASON = "Skip reason required."
MSG_ADDRESS = "Please select a valid address from suggestions."
MSG_EXCEPTIONS = "Add at least one exception or tick «No exceptions»."
MSG_REPORTED_OTHER = "Please specify when 'Other' is selected."

# Room types where outlets sit near water and always need photo evidence
SINK_ADJACENT_ROOMS = frozenset({"kitchen", "bathroom", "ensuite", "laundry"})

ADDRESS_UI = "address_autocomplete"
ADDRESS_COMPONENT_KEYS = ("suburb", "state", "postcode")


# =============================================================================
# Cross-field rule registry
# =============================================================================

def _rcd_pass_fail_sum(values: Dict[str, float]) -> bool:
    return (
        values.get("total_pass", 0) + values.get("total_fail", 0)
        == values.get("total_tested", 0)
    )


def _gpo_polarity_earth_sum(values: Dict[str, float]) -> bool:
    total = values.get("total_gpo_tested", 0)
    return (
        values.get("polarity_pass", 0) <= total
        and values.get("earth_present_pass", 0) <= total
    )


CROSS_FIELD_RULES: Dict[str, Callable[[Dict[str, float]], bool]] = {
    "rcd_pass_fail_sum": _rcd_pass_fail_sum,
    "gpo_polarity_earth_sum": _gpo_polarity_earth_sum,
}


def _is_empty(value: Any) -> bool:
    return value is MISSING or value is None or value == ""


def _text(row: Dict[str, Any], key: str) -> str:
    value = row.get(key)
    if value is None:
        return ""
    return str(value).strip()


def _count(row: Dict[str, Any], key: str):
    number = to_number(row.get(key))
    return number if number is not None else 0


def _has_photos(row: Dict[str, Any]) -> bool:
    photo_ids = row.get("photo_ids")
    return isinstance(photo_ids, list) and len(photo_ids) > 0


def _rows(value: Any) -> List[Dict[str, Any]]:
    """Table value as a list of row dicts (malformed rows read as empty)."""
    value = unwrap(value)
    if not isinstance(value, list):
        return []
    return [row if isinstance(row, dict) else {} for row in value]


def room_label(row: Dict[str, Any]) -> str:
    """
    Display label for a room row.

    Examples:
        >>> room_label({'room_type': 'living_room'})
        'living room'
        >>> room_label({'room_type': 'other', 'room_name_custom': 'Sunroom'})
        'Sunroom'
    """
    room_type = _text(row, "room_type")
    custom = _text(row, "room_name_custom")
    if room_type == "other" and custom:
        return custom
    return room_type.replace("_", " ") or "room"


class Validator:
    """
    Validates inspection state against the field dictionary.

    Shares the evaluator (and its parse cache) with the resolver.
    """

    def __init__(
        self,
        schema: SchemaRepository,
        evaluator: Optional[ExpressionEvaluator] = None,
        resolver: Optional[GateResolver] = None
    ):
        self.schema = schema
        self.evaluator = evaluator or (resolver.evaluator if resolver else ExpressionEvaluator())
        self.resolver = resolver or GateResolver(schema, self.evaluator)

        # Structural rules per section, run after the field loop
        self._structural_rules = {
            "S0_START_CONTEXT": [self._check_reported_issues_other],
            "S7A_GPO_BY_ROOM": [self._check_outlet_rooms],
            "S7B_LIGHTING_BY_ROOM": [self._check_lighting_rooms],
            "S8_GPO_LIGHTING_EXCEPTIONS": [self._check_gpo_failures],
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def validate_section(self, section_id: str, state: Dict[str, Any]) -> SectionValidation:
        """
        Validate one section.

        Args:
            section_id: Section identifier
            state: Inspection state

        Returns:
            SectionValidation; valid with no errors for unknown, gated-out
            or auto-skipped sections
        """
        section = self.schema.get_section(section_id)
        if section is None:
            return SectionValidation(section_id=section_id, valid=True, errors={})

        flat = flatten_state(state)
        if not self.resolver.is_section_active(section_id, state, flat):
            return SectionValidation(section_id=section_id, valid=True, errors={})

        errors: Dict[str, str] = {}
        for field in section.fields:
            message = self._validate_field(field, state, flat)
            if message:
                errors[field.key] = message

        for rule in self._structural_rules.get(section_id, []):
            rule(flat, errors)

        errors.update(self.validate_cross_field_rules(section_id, flat))

        if errors:
            logger.debug(f"Section {section_id}: {len(errors)} validation error(s)")
        return SectionValidation(section_id=section_id, valid=not errors, errors=errors)

    def validate_all(self, state: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
        """
        Validate every active section.

        Returns:
            section_id -> {field_key: message}, only for sections with
            errors. Empty means submission is allowed.
        """
        flat = flatten_state(state)
        result = {}
        for section in self.schema.get_sections():
            if not self.resolver.is_section_active(section.id, state, flat):
                continue
            validation = self.validate_section(section.id, state)
            if validation.errors:
                result[section.id] = validation.errors
        return result

    def validate_cross_field_rules(self, section_id: str, flat: Dict[str, Any]) -> Dict[str, str]:
        """
        Evaluate cross-field rules that touch fields of this section.

        A rule is skipped when its condition fails or any of its fields is
        absent or non-numeric. The error lands on the first rule field that
        belongs to the section.
        """
        section = self.schema.get_section(section_id)
        if section is None:
            return {}

        section_keys = {f.key for f in section.fields}
        errors: Dict[str, str] = {}

        for rule in self.schema.get_cross_field_validations():
            relevant = [key for key in rule.fields if key in section_keys]
            if not relevant:
                continue

            if rule.condition and not self.evaluator.evaluate_strict_condition(rule.condition, flat):
                continue

            values = self._numeric_values(rule.fields, flat)
            if values is None:
                continue

            predicate = CROSS_FIELD_RULES.get(rule.rule_id)
            if predicate is None:
                logger.warning(f"Unknown cross-field rule '{rule.rule_id}' ({rule.id}) - treated as passing")
                continue

            if not predicate(values):
                message = rule.error_message
                for short_key, number in values.items():
                    message = message.replace("{" + short_key + "}", format_number(number))
                errors[relevant[0]] = message

        return errors

    # =========================================================================
    # Field checks
    # =========================================================================

    def _validate_field(
        self,
        field: FieldDefinition,
        state: Dict[str, Any],
        flat: Dict[str, Any]
    ) -> Optional[str]:
        """Return the first failing message for a field, or None."""
        if field.show_when and not self.evaluator.evaluate(field.show_when, flat):
            return None

        if not self.resolver.is_field_required(field, flat):
            return None

        answer = as_answer(get_in(state, field.key))
        if answer is not None and answer.is_skipped:
            reason = answer.skip_reason
            return None if isinstance(reason, str) and reason.strip() else MSG_SKIP_REASON

        if field.key.endswith(EXCEPTIONS_SUFFIX) or field.key.endswith(NO_EXCEPTIONS_SUFFIX):
            return self._check_exceptions_pair(field.key, flat)

        if field.type == "array_object":
            return None

        value = lookup(flat, field.key)

        if field.ui == ADDRESS_UI and not _is_empty(value):
            if not self._address_complete(field.key, state, flat):
                return MSG_ADDRESS

        if _is_empty(value):
            return MSG_REQUIRED

        return self._check_type(field, value)

    def _check_exceptions_pair(self, key: str, flat: Dict[str, Any]) -> Optional[str]:
        """
        An exceptions list and its 'No exceptions' box: ticking the box
        satisfies both; an unticked box needs at least one exception.
        """
        prefix = key.rsplit(".", 1)[0]
        no_exceptions = lookup(flat, prefix + NO_EXCEPTIONS_SUFFIX)
        if no_exceptions is True:
            return None
        if key.endswith(EXCEPTIONS_SUFFIX) and no_exceptions is False:
            exceptions = lookup(flat, key)
            if not isinstance(exceptions, list) or not exceptions:
                return MSG_EXCEPTIONS
        return None

    def _address_complete(self, key: str, state: Dict[str, Any], flat: Dict[str, Any]) -> bool:
        """
        A selected suggestion leaves a place id and at least one
        locality component beside the address.
        """
        place_id = lookup(flat, key + "_place_id")
        if not isinstance(place_id, str) or not place_id.strip():
            return False

        components = as_answer(get_in(state, key + "_components"))
        if components is None or not isinstance(components.value, dict):
            return False
        return any(components.value.get(part) for part in ADDRESS_COMPONENT_KEYS)

    @staticmethod
    def _check_type(field: FieldDefinition, value: Any) -> Optional[str]:
        if field.type == "boolean":
            return None if isinstance(value, bool) else MSG_REQUIRED

        if field.type == "array_enum":
            return None if isinstance(value, list) and value else MSG_REQUIRED

        if field.type == "integer":
            is_integer = (
                not isinstance(value, bool)
                and (isinstance(value, int) or (isinstance(value, float) and value.is_integer()))
            )
            if not is_integer:
                return MSG_REQUIRED
            return Validator._check_range(field, value)

        if field.type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return MSG_REQUIRED
            return Validator._check_range(field, value)

        return None

    @staticmethod
    def _check_range(field: FieldDefinition, value) -> Optional[str]:
        if field.min is not None and value < field.min:
            return f"Must be at least {format_number(field.min)}."
        if field.max is not None and value > field.max:
            return f"Must be at most {format_number(field.max)}."
        return None

    def _numeric_values(self, keys, flat: Dict[str, Any]) -> Optional[Dict[str, float]]:
        """Short key -> number for every rule field, or None if any is unusable."""
        values = {}
        for key in keys:
            raw = lookup(flat, key)
            if _is_empty(raw) or isinstance(raw, bool):
                return None
            number = to_number(raw)
            if number is None:
                return None
            values[key.rsplit(".", 1)[-1]] = number
        return values

    # =========================================================================
    # Structural rules
    # =========================================================================

    def _check_reported_issues_other(self, flat: Dict[str, Any], errors: Dict[str, str]) -> None:
        issues = lookup(flat, "job.reported_issues")
        if isinstance(issues, list) and "other" in issues:
            other = lookup(flat, "job.reported_issues_other")
            if not isinstance(other, str) or not other.strip():
                errors["job.reported_issues_other"] = MSG_REPORTED_OTHER

    @staticmethod
    def _not_accessible_error(row: Dict[str, Any], other_message: str) -> Optional[str]:
        reason = _text(row, "room_not_accessible_reason")
        if not reason:
            return "Reason required when room is not accessible."
        if reason == "other" and not _text(row, "room_not_accessible_reason_other"):
            return other_message
        return None

    def _check_outlet_rooms(self, flat: Dict[str, Any], errors: Dict[str, str]) -> None:
        """
        GPO room table. Fail fast: only the first failing row is reported.
        """
        key = "gpo_tests.rooms"
        for index, row in enumerate(_rows(lookup(flat, key))):
            message = self._outlet_row_error(row)
            if message:
                errors[key] = f"Row {index + 1} ({room_label(row)}): {message}"
                return

    def _outlet_row_error(self, row: Dict[str, Any]) -> Optional[str]:
        if row.get("room_access") == "not_accessible":
            return self._not_accessible_error(
                row, 'Please describe the reason when "Other" is selected.'
            )

        total = _count(row, "gpo_count")
        tested = _count(row, "tested_count")
        passed = _count(row, "pass_count")
        issue = _text(row, "issue") or "none"

        if tested > total:
            return "Tested count cannot exceed GPO count (total)."
        if tested < total and not _text(row, "note"):
            return "Reason required when tested count is less than total GPO count."
        if passed > tested:
            return "Pass count cannot exceed tested count."
        if passed < tested and issue == "none":
            return "Issue required when pass count is less than tested count."
        if issue == "other" and not _text(row, "issue_other"):
            return "Describe the issue when Issue is Other."
        if issue != "none" and not _has_photos(row):
            return "Photo evidence required when Issue is not None."
        if _text(row, "room_type") in SINK_ADJACENT_ROOMS and not _has_photos(row):
            return "Photo evidence required for rooms with water (kitchen, bathroom, ensuite, laundry)."
        return None

    def _check_lighting_rooms(self, flat: Dict[str, Any], errors: Dict[str, str]) -> None:
        key = "lighting.rooms"
        for index, row in enumerate(_rows(lookup(flat, key))):
            message = self._lighting_row_error(row)
            if message:
                errors[key] = f"Row {index + 1} ({room_label(row)}): {message}"
                return

    def _lighting_row_error(self, row: Dict[str, Any]) -> Optional[str]:
        if row.get("room_access") == "not_accessible":
            return self._not_accessible_error(
                row, 'Please describe the reason when "Other" is selected.'
            )

        issues = row.get("issues")
        if not isinstance(issues, list) or not issues or issues == ["none"]:
            return None
        if "other" in issues and not _text(row, "issue_other"):
            return 'Describe the issue when "Other" is selected.'
        if not _has_photos(row):
            return "Photo evidence required when issues are present."
        return None

    def _check_gpo_failures(self, flat: Dict[str, Any], errors: Dict[str, str]) -> None:
        """
        Failed polarity/earth tests need documented exceptions with photos.

        Totals come from the summary; when it is zero but room rows exist,
        the row sums are used instead.
        """
        if lookup(flat, "gpo_tests.performed") is not True:
            return

        total = to_number(lookup(flat, "gpo_tests.summary.total_gpo_tested")) or 0
        polarity = to_number(lookup(flat, "gpo_tests.summary.polarity_pass")) or 0
        earth = to_number(lookup(flat, "gpo_tests.summary.earth_present_pass")) or 0

        rows = _rows(lookup(flat, "gpo_tests.rooms"))
        if rows and total == 0:
            total = sum(_count(row, "tested_count") for row in rows)
            polarity = earth = sum(_count(row, "pass_count") for row in rows)

        if polarity >= total and earth >= total:
            return

        if lookup(flat, "gpo_tests.no_exceptions") is True:
            errors["gpo_tests.no_exceptions"] = (
                "Failures detected (pass count < total tested). Please uncheck «No exceptions» "
                "and add exception(s) with location, issue type, and photos for each failed outlet."
            )
            return

        exceptions = _rows(lookup(flat, "gpo_tests.exceptions"))
        if not exceptions:
            errors["gpo_tests.exceptions"] = (
                "At least one exception required when pass count is less than total tested. "
                "Please add location, issue type, and photos for each failed outlet."
            )
            return

        if any(not _has_photos(item) for item in exceptions):
            errors["gpo_tests.exceptions"] = (
                "Photos required for each failed outlet. Please add photo evidence to each exception."
            )
