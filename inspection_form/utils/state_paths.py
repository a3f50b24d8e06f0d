"""
Dot-path helpers shared by the evaluator, the store and the validator.

Responsibilities:
- Read nested values by dot path (get_in)
- Copy-on-write writes and deletes (assoc_in / dissoc_in)
- Flatten the answer tree into a dot-path -> value map (flatten_state)
- Look up a path in either a flat or a nested map (lookup)

Writes copy only the dicts along the written path; siblings are shared
with the previous tree, so large table answers are never copied just
because an unrelated field changed. Inputs are never mutated.

Absent paths resolve to MISSING, which is distinct from None: a field
whose dependency was never touched is not the same as one explicitly
set to null or False.
"""

from typing import Any, Dict, List

from inspection_form.answer_helpers import is_answer_shape

# Side channels colocated with the answer tree but never schema-addressed
STAGED_PHOTOS_KEY = "_staged_photos"
ISSUE_DETAILS_KEY = "_issue_details"
RESERVED_KEYS = frozenset({STAGED_PHOTOS_KEY, ISSUE_DETAILS_KEY})


class _Missing:
    """Sentinel for absent paths."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()


def split_path(path: str) -> List[str]:
    """Split a dot path into non-empty segments."""
    return [part for part in path.split(".") if part]


def get_in(tree: Any, path: str) -> Any:
    """
    Walk a nested dict by dot path.

    Returns:
        The node at path, or MISSING if any segment is absent or a
        non-dict is met on the way.
    """
    node = tree
    for part in split_path(path):
        if not isinstance(node, dict) or part not in node:
            return MISSING
        node = node[part]
    return node


def assoc_in(tree: Any, path: str, value: Any) -> Dict[str, Any]:
    """
    Return a new tree with value written at path.

    Intermediate containers are created as needed. An intermediate that is
    not a plain dict (including a stored Answer) is replaced by a fresh dict.
    """
    parts = split_path(path)
    if not parts:
        raise ValueError("Cannot write to an empty path")
    return _assoc(tree, parts, value)


def _assoc(node: Any, parts: List[str], value: Any) -> Dict[str, Any]:
    if isinstance(node, dict) and not is_answer_shape(node):
        copied = dict(node)
    else:
        copied = {}

    head = parts[0]
    if len(parts) == 1:
        copied[head] = value
    else:
        copied[head] = _assoc(copied.get(head), parts[1:], value)
    return copied


def dissoc_in(tree: Dict[str, Any], path: str) -> Dict[str, Any]:
    """
    Return a new tree without the node at path.

    Missing intermediate objects are a no-op: the input tree is returned
    unchanged (same object).
    """
    parts = split_path(path)
    if not parts or get_in(tree, path) is MISSING:
        return tree
    return _dissoc(tree, parts)


def _dissoc(node: Dict[str, Any], parts: List[str]) -> Dict[str, Any]:
    copied = dict(node)
    head = parts[0]
    if len(parts) == 1:
        del copied[head]
    else:
        copied[head] = _dissoc(copied[head], parts[1:])
    return copied


def flatten_state(state: Any) -> Dict[str, Any]:
    """
    Project the nested answer tree onto a dot-path -> value map.

    Rules:
    - Answer-shaped node: record prefix -> value, stop descending
    - Plain object: recurse, joining keys with '.'
    - Array: record as-is; when its first element is a plain object
      (not an Answer), also recurse into each item as 'path[i]'
    - Primitive (including None): record as-is
    - Reserved side-channel keys at the root are skipped

    Example:
        >>> flatten_state({'job': {'address': {'value': '1 Main St', 'status': 'answered'}}})
        {'job.address': '1 Main St'}
        >>> flatten_state({'t': {'rows': [{'n': 1}]}})
        {'t.rows': [{'n': 1}], 't.rows[0].n': 1}
    """
    flat: Dict[str, Any] = {}
    if not isinstance(state, dict):
        return flat

    for key, child in state.items():
        if key in RESERVED_KEYS:
            continue
        _walk(flat, key, child)
    return flat


def _walk(flat: Dict[str, Any], path: str, node: Any) -> None:
    if is_answer_shape(node):
        flat[path] = node.get("value")
        return

    if isinstance(node, dict):
        for key, child in node.items():
            _walk(flat, f"{path}.{key}", child)
        return

    if isinstance(node, list):
        flat[path] = node
        if node and isinstance(node[0], dict) and not is_answer_shape(node[0]):
            for index, item in enumerate(node):
                if isinstance(item, dict):
                    for key, child in item.items():
                        _walk(flat, f"{path}[{index}].{key}", child)
        return

    flat[path] = node


def lookup(mapping: Any, path: str) -> Any:
    """
    Resolve path against a flat map, falling back to a nested walk.

    Works for both the flattened view ('rcd_tests.summary.total_tested' as
    one key) and raw nested dicts.
    """
    if isinstance(mapping, dict) and path in mapping:
        return mapping[path]
    return get_in(mapping, path)
