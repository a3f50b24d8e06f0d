"""
Expression Evaluator - Path-predicate expressions over flattened state

Responsibilities:
- Parse the small condition grammar used by required_when, show_when,
  section_auto_skip and cross-field conditions
- Evaluate parsed expressions against a flattened key -> value map
- Provide the two named any(...) predicates: any_equals and all_false

Grammar (first match wins):
    any(p1, p2, ...) == literal   any listed path strictly equals literal
    any(e1, e2, ...)              any sub-expression 'path==literal' holds
    path != literal
    path == literal

Literals: true, false, a bare integer (stored value coerced to a number
first), or an unquoted string. Paths inside any(...) may contain '*'
wildcards, expanded against the flattened keys.

Absent paths resolve to MISSING: '==' against an absent path is always
false, '!=' against an absent path is always true. A dependency that was
never touched is not the same as one explicitly set False.

Design principles:
- Pure: no state beyond the parse cache
- Parsed once per expression text, cached by text
- Unrecognised expressions parse to Never (evaluates False), logged once
"""

import logging
import re
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Dict, Iterable, List, Tuple, Union

from inspection_form.utils.helpers import render_value, to_number
from inspection_form.utils.state_paths import MISSING, lookup

logger = logging.getLogger(__name__)

_INTEGER_RE = re.compile(r"^\d+$")
_NEQ_RE = re.compile(r"^(.+?)!=(.+)$")
_EQ_RE = re.compile(r"^(.+?)==(.+)$")
_STRICT_EQ_RE = re.compile(r"^(.+?)\s*===\s*(.+)$")


# =============================================================================
# AST
# =============================================================================

@dataclass(frozen=True)
class Literal:
    """Right-hand side of a comparison. kind is 'bool', 'int' or 'str'."""
    kind: str
    value: Any


@dataclass(frozen=True)
class Comparison:
    path: str
    literal: Literal
    negate: bool = False


@dataclass(frozen=True)
class AnyEquals:
    paths: Tuple[str, ...]
    literal: Literal


@dataclass(frozen=True)
class AnyOf:
    predicates: Tuple[Comparison, ...]
    # Every listed path, including bare ones that are not predicates
    paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Never:
    source: str


Node = Union[Comparison, AnyEquals, AnyOf, Never]


def parse_literal(text: str) -> Literal:
    """
    Parse a literal token.

    Examples:
        >>> parse_literal('true')
        Literal(kind='bool', value=True)
        >>> parse_literal('3')
        Literal(kind='int', value=3)
        >>> parse_literal('not_accessible')
        Literal(kind='str', value='not_accessible')
    """
    token = text.strip()
    if token == "true":
        return Literal("bool", True)
    if token == "false":
        return Literal("bool", False)
    if _INTEGER_RE.match(token):
        return Literal("int", int(token))
    return Literal("str", token)


def parse_expression(expression: str) -> Node:
    """
    Parse an expression string into an AST node.

    Never raises: anything outside the grammar becomes Never.
    """
    text = (expression or "").strip()

    if text.startswith("any("):
        rest = text[4:]
        close = rest.find(")")
        if close == -1:
            return Never(text)
        inner = rest[:close].strip()
        suffix = rest[close + 1:].strip()
        items = [item.strip() for item in inner.split(",") if item.strip()]

        if suffix.startswith("=="):
            return AnyEquals(paths=tuple(items), literal=parse_literal(suffix[2:]))

        # Only 'path==literal' items take part in the disjunction
        predicates = tuple(
            _parse_comparison(item) for item in items if "==" in item
        )
        predicates = tuple(p for p in predicates if isinstance(p, Comparison))
        paths = tuple(re.split(r"[!=]=", item, maxsplit=1)[0].strip() for item in items)
        return AnyOf(predicates=predicates, paths=paths)

    return _parse_comparison(text)


def _parse_comparison(text: str) -> Node:
    match = _NEQ_RE.match(text)
    if match:
        left, right = match.groups()
        return Comparison(path=left.strip(), literal=parse_literal(right), negate=True)

    match = _EQ_RE.match(text)
    if match:
        left, right = match.groups()
        return Comparison(path=left.strip(), literal=parse_literal(right), negate=False)

    return Never(text)


# =============================================================================
# Predicates
# =============================================================================

def strict_equals(actual: Any, expected: Any) -> bool:
    """
    Type-strict equality.

    Booleans only equal booleans (True never equals 1), numbers compare by
    value across int/float, MISSING equals nothing.

    Examples:
        >>> strict_equals(True, True)
        True
        >>> strict_equals(1, True)
        False
        >>> strict_equals(2, 2.0)
        True
    """
    if actual is MISSING or expected is MISSING:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if isinstance(actual, (int, float)) and isinstance(expected, (int, float)):
        return actual == expected
    if type(actual) is not type(expected):
        return False
    return actual == expected


def matches_literal(value: Any, literal: Literal) -> bool:
    """Equality between a flattened value and a parsed literal."""
    if literal.kind == "int":
        number = to_number(value) if value is not MISSING else None
        return number is not None and number == literal.value
    return strict_equals(value, literal.value)


def expand_paths(flat: Dict[str, Any], paths: Iterable[str]) -> List[str]:
    """Expand '*' wildcards against the flattened keys; plain paths pass through."""
    expanded: List[str] = []
    for path in paths:
        if "*" in path:
            expanded.extend(key for key in sorted(flat) if fnmatchcase(key, path))
        else:
            expanded.append(path)
    return expanded


def any_equals(flat: Dict[str, Any], paths: Iterable[str], literal: Any) -> bool:
    """
    True iff any listed path strictly equals literal.

    Args:
        literal: A parsed Literal or a raw Python value
    """
    if not isinstance(literal, Literal):
        literal = Literal("raw", literal)
    for path in expand_paths(flat, paths):
        if matches_literal(lookup(flat, path), literal):
            return True
    return False


def all_false(flat: Dict[str, Any], paths: Iterable[str]) -> bool:
    """
    True iff every listed path is explicitly False.

    Absent paths are not False, so an untouched area never counts as
    uniformly inapplicable. An empty path list is never all-false.
    """
    expanded = expand_paths(flat, paths)
    if not expanded:
        return False
    return all(lookup(flat, path) is False for path in expanded)


# =============================================================================
# Evaluator
# =============================================================================

class ExpressionEvaluator:
    """
    Evaluates expressions against flattened state, caching parsed ASTs.

    One instance is shared by the resolver and the validator.
    """

    def __init__(self):
        self._cache: Dict[str, Node] = {}

    def parse(self, expression: str) -> Node:
        """Parse with caching by expression text."""
        node = self._cache.get(expression)
        if node is None:
            node = parse_expression(expression)
            if isinstance(node, Never):
                logger.warning(f"Unrecognised expression evaluates False: {expression!r}")
            self._cache[expression] = node
        return node

    def evaluate(self, expression: str, flat: Dict[str, Any]) -> bool:
        """
        Evaluate expression against a flattened state map.

        Args:
            expression: Expression text (see module docstring)
            flat: Output of flatten_state()

        Returns:
            bool: Evaluation result
        """
        return self._evaluate_node(self.parse(expression), flat)

    def _evaluate_node(self, node: Node, flat: Dict[str, Any]) -> bool:
        if isinstance(node, AnyEquals):
            return any_equals(flat, node.paths, node.literal)

        if isinstance(node, AnyOf):
            return any(self._evaluate_node(p, flat) for p in node.predicates)

        if isinstance(node, Comparison):
            if "*" in node.path:
                paths = expand_paths(flat, [node.path])
                if not paths:
                    return False
                return any(self._compare(lookup(flat, p), node) for p in paths)
            return self._compare(lookup(flat, node.path), node)

        return False

    @staticmethod
    def _compare(value: Any, node: Comparison) -> bool:
        matched = matches_literal(value, node.literal)
        return not matched if node.negate else matched

    def paths_of(self, expression: str) -> Tuple[str, ...]:
        """
        Paths referenced by an expression (wildcards unexpanded).

        Used by the auto-skip rule, which reads any(...) as a path list.
        """
        node = self.parse(expression)
        if isinstance(node, AnyEquals):
            return node.paths
        if isinstance(node, AnyOf):
            return node.paths
        if isinstance(node, Comparison):
            return (node.path,)
        return ()

    def evaluate_strict_condition(self, condition: str, flat: Dict[str, Any]) -> bool:
        """
        Evaluate a cross-field 'path === literal' guard.

        Boolean literals compare strictly; any other literal is compared
        with the rendered value. A condition outside this form is treated
        as met.
        """
        match = _STRICT_EQ_RE.match((condition or "").strip())
        if not match:
            return True
        path, expected = match.group(1).strip(), match.group(2).strip()
        value = lookup(flat, path)
        if expected == "true":
            return value is True
        if expected == "false":
            return value is False
        if value is MISSING:
            return expected == "undefined"
        return render_value(value) == expected

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)
