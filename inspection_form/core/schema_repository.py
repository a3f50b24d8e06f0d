"""
Schema Repository - Immutable field dictionary for the inspection form

Responsibilities:
- Load the field dictionary (sections, fields, enums, rules) once
- Expose ordered sections, enums, skip reasons, pages, cross-field rules
- Validate dictionary structure on load

Design principles:
- Read-only after construction (contracts are frozen dataclasses)
- Explicit instance passed to every consumer (no module-level caches)
- Fail fast on structural errors at load time
- Fail closed on lookups: unknown enum/section/field -> empty result

Dictionary document shape:
    {
        "version": "1.4.0",
        "enums": {"condition": ["good", "fair", ...], ...},
        "sections": [{"id": ..., "title": ..., "fields": [...], ...}],
        "cross_field_validations": [...],   # optional
        "pages": [...]                      # optional
    }
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from inspection_form.contracts import (
    FIELD_TYPES,
    ClearOnGateChange,
    CrossFieldValidation,
    FieldDefinition,
    GateDefinition,
    ItemFieldSpec,
    PageDefinition,
    SectionAutoSkip,
    SectionDefinition,
)

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PATH = "data/field_dictionary.json"


class SchemaError(ValueError):
    """Raised when the field dictionary is structurally invalid."""


class SchemaRepository:
    """
    Immutable, process-wide view of the field dictionary.

    Construct once at process start and pass by reference to the store,
    resolver and validator.
    """

    SKIP_REASON_ENUM = "skip_reason"

    def __init__(self, schema_path: str = DEFAULT_SCHEMA_PATH):
        """
        Load dictionary from disk.

        Args:
            schema_path: Path to field dictionary JSON

        Raises:
            FileNotFoundError: If the dictionary doesn't exist
            SchemaError: If the dictionary is structurally invalid
        """
        self.schema_path = Path(schema_path)

        if not self.schema_path.exists():
            raise FileNotFoundError(f"Field dictionary not found: {schema_path}")

        with open(self.schema_path, "r", encoding="utf-8") as f:
            document = json.load(f)

        self._load(document)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "SchemaRepository":
        """
        Build a repository from an in-memory dictionary document.

        Raises:
            SchemaError: If the document is structurally invalid
        """
        repo = cls.__new__(cls)
        repo.schema_path = None
        repo._load(document)
        return repo

    def _load(self, document: Dict[str, Any]) -> None:
        if not isinstance(document, dict):
            raise SchemaError("Field dictionary must be a JSON object")

        self._document = document
        self.version = str(document.get("version", "unknown"))
        self._enums: Dict[str, Tuple[str, ...]] = {
            name: tuple(values or ())
            for name, values in (document.get("enums") or {}).items()
        }

        errors: List[str] = []
        self._sections: Tuple[SectionDefinition, ...] = tuple(
            self._parse_section(raw, index, errors)
            for index, raw in enumerate(document.get("sections") or [])
        )
        self._cross_field: Tuple[CrossFieldValidation, ...] = tuple(
            self._parse_cross_field(raw, index, errors)
            for index, raw in enumerate(document.get("cross_field_validations") or [])
        )
        self._pages: Tuple[PageDefinition, ...] = tuple(
            self._parse_page(raw, index, errors)
            for index, raw in enumerate(document.get("pages") or [])
        )

        self._section_index = {s.id: s for s in self._sections}
        self._field_index: Dict[str, Tuple[FieldDefinition, SectionDefinition]] = {}

        self._validate(errors)

        logger.info(
            f"Schema Repository loaded (version {self.version}, "
            f"{len(self._sections)} sections, {len(self._field_index)} fields)"
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def get_sections(self) -> List[SectionDefinition]:
        """Ordered section definitions."""
        return list(self._sections)

    def get_section(self, section_id: str) -> Optional[SectionDefinition]:
        """Section by id, or None (logged) when unknown."""
        section = self._section_index.get(section_id)
        if section is None:
            logger.warning(f"Unknown section: {section_id}")
        return section

    def get_enum(self, name: str) -> List[str]:
        """
        Ordered enum values.

        Returns:
            list[str]: Values, or [] when the enum is unknown. Rendering code
            must degrade gracefully on one bad reference.
        """
        values = self._enums.get(name)
        if values is None:
            logger.warning(f"Unknown enum: {name}")
            return []
        return list(values)

    def get_enums(self) -> Dict[str, List[str]]:
        return {name: list(values) for name, values in self._enums.items()}

    def get_skip_reasons(self) -> List[str]:
        return list(self._enums.get(self.SKIP_REASON_ENUM, ()))

    def resolve_enum_values(self, field: FieldDefinition) -> List[str]:
        """Inline enum_values win over a named enum reference."""
        if field.enum_values:
            return list(field.enum_values)
        if field.enum:
            return self.get_enum(field.enum)
        return []

    def get_field(self, key: str) -> Optional[FieldDefinition]:
        entry = self._field_index.get(key)
        return entry[0] if entry else None

    def get_field_section(self, key: str) -> Optional[SectionDefinition]:
        entry = self._field_index.get(key)
        return entry[1] if entry else None

    def iter_fields(self) -> Iterator[Tuple[SectionDefinition, FieldDefinition]]:
        """Yield (section, field) pairs in document order."""
        for section in self._sections:
            for field in section.fields:
                yield section, field

    def get_document(self) -> Dict[str, Any]:
        """Raw dictionary document as loaded (served to renderers as-is)."""
        return self._document

    def get_cross_field_validations(self) -> List[CrossFieldValidation]:
        return list(self._cross_field)

    def get_pages(self) -> List[PageDefinition]:
        """
        Wizard pages in order.

        When the dictionary declares no pages, every section is its own page.
        """
        if self._pages:
            return list(self._pages)
        return [
            PageDefinition(id=s.id, title=s.title, section_ids=(s.id,))
            for s in self._sections
        ]

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse_section(self, raw: Dict[str, Any], index: int, errors: List[str]) -> SectionDefinition:
        section_id = raw.get("id")
        if not section_id:
            errors.append(f"Section at index {index} missing 'id'")
            section_id = f"__section_{index}"

        fields = []
        for i, raw_field in enumerate(raw.get("fields") or []):
            field = self._parse_field(raw_field, section_id, i, errors)
            if field is not None:
                fields.append(field)

        gates = []
        for i, raw_gate in enumerate(raw.get("gates") or []):
            if not raw_gate.get("depends_on"):
                errors.append(f"Gate at index {i} in section '{section_id}' missing 'depends_on'")
                continue
            on_false = raw_gate.get("on_false")
            gates.append(GateDefinition(
                depends_on=raw_gate["depends_on"],
                equals=raw_gate.get("equals"),
                on_false=tuple(on_false.items()) if isinstance(on_false, dict) else None,
            ))

        clear_rules = tuple(
            ClearOnGateChange(
                if_changed=rule.get("if_changed", ""),
                from_value=rule.get("from") is True,
                to_value=rule.get("to") is True,
                clear_paths=tuple(rule.get("clear_paths") or ()),
            )
            for rule in raw.get("clear_on_gate_change") or []
        )

        auto_skip = None
        raw_auto = raw.get("section_auto_skip")
        if raw_auto:
            if not raw_auto.get("when"):
                errors.append(f"section_auto_skip in section '{section_id}' missing 'when'")
            else:
                set_block = raw_auto.get("set") or {}
                auto_skip = SectionAutoSkip(
                    when=raw_auto["when"],
                    set_status=set_block.get("status", "not_applicable"),
                    skip_reason=set_block.get("skip_reason", ""),
                    clear_paths=tuple(raw_auto.get("clear_paths") or ()),
                )

        return SectionDefinition(
            id=section_id,
            title=raw.get("title", section_id),
            fields=tuple(fields),
            gates=tuple(gates),
            status_field=raw.get("status_field"),
            clear_on_gate_change=clear_rules,
            section_auto_skip=auto_skip,
        )

    def _parse_field(
        self,
        raw: Dict[str, Any],
        section_id: str,
        index: int,
        errors: List[str]
    ) -> Optional[FieldDefinition]:
        key = raw.get("key")
        if not key:
            errors.append(f"Field at index {index} in section '{section_id}' missing 'key'")
            return None

        field_type = raw.get("type", "string")
        if field_type not in FIELD_TYPES:
            errors.append(f"Field '{key}' has unknown type '{field_type}'")

        item_schema = None
        if isinstance(raw.get("item_schema"), dict):
            item_schema = tuple(
                (name, ItemFieldSpec(
                    type=spec.get("type", "string"),
                    label=spec.get("label"),
                    enum=spec.get("enum"),
                    enum_values=tuple(spec["enum_values"]) if spec.get("enum_values") else None,
                    required=spec.get("required") is True,
                    min=spec.get("min"),
                    max=spec.get("max"),
                ))
                for name, spec in raw["item_schema"].items()
            )

        return FieldDefinition(
            key=key,
            label=raw.get("label", key),
            type=field_type,
            required=raw.get("required") is True,
            required_when=raw.get("required_when") or None,
            show_when=raw.get("show_when") or None,
            skippable=raw.get("skippable") is True,
            enum=raw.get("enum"),
            enum_values=tuple(raw["enum_values"]) if raw.get("enum_values") else None,
            min=raw.get("min"),
            max=raw.get("max"),
            item_schema=item_schema,
            ui=raw.get("ui", "text"),
            helper_text=raw.get("helper_text"),
            on_issue_capture=raw.get("on_issue_capture") is True,
        )

    def _parse_cross_field(self, raw: Dict[str, Any], index: int, errors: List[str]) -> CrossFieldValidation:
        rule_id = raw.get("rule_id") or raw.get("rule") or raw.get("id") or f"__rule_{index}"
        fields = tuple(raw.get("fields") or ())
        if not fields:
            errors.append(f"Cross-field validation '{rule_id}' has no fields")
        return CrossFieldValidation(
            id=raw.get("id", rule_id),
            rule_id=rule_id,
            fields=fields,
            error_message=raw.get("error_message", "Values are inconsistent."),
            condition=raw.get("condition") or None,
            description=raw.get("description"),
        )

    def _parse_page(self, raw: Dict[str, Any], index: int, errors: List[str]) -> PageDefinition:
        page_id = raw.get("id") or f"__page_{index}"
        section_ids = tuple(raw.get("section_ids") or ())
        if not section_ids:
            errors.append(f"Page '{page_id}' has no sections")
        return PageDefinition(id=page_id, title=raw.get("title", page_id), section_ids=section_ids)

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate(self, errors: List[str]) -> None:
        """
        Check dictionary structure and build the field index.

        Checks:
        - No duplicate section ids
        - Field keys unique across the whole dictionary
        - Pages reference defined sections
        - Cross-field rules reference defined fields

        Raises:
            SchemaError: If any check fails (all problems listed)
        """
        seen_sections = set()
        for section in self._sections:
            if section.id in seen_sections:
                errors.append(f"Duplicate section id '{section.id}'")
            seen_sections.add(section.id)

            for field in section.fields:
                if field.key in self._field_index:
                    other = self._field_index[field.key][1].id
                    errors.append(
                        f"Duplicate field key '{field.key}' (sections '{other}' and '{section.id}')"
                    )
                    continue
                self._field_index[field.key] = (field, section)

        for page in self._pages:
            for section_id in page.section_ids:
                if section_id not in self._section_index:
                    errors.append(f"Page '{page.id}' references undefined section '{section_id}'")

        for rule in self._cross_field:
            for key in rule.fields:
                if key not in self._field_index:
                    errors.append(f"Cross-field validation '{rule.id}' references undefined field '{key}'")

        if errors:
            error_msg = "Field dictionary validation failed:\n  - " + "\n  - ".join(errors)
            raise SchemaError(error_msg)

        logger.debug("Field dictionary validation passed")
