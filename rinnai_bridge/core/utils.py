"""Core utility functions shared across modules."""

from __future__ import annotations

import copy
from typing import Any, Dict, Mapping, Sequence

from ..errors import MalformedFrame


def deep_merge(target: Dict[str, Any], updates: Mapping[str, Any]) -> None:
    """Recursively merge updates into target dict, modifying target in-place.

    For each key in updates:
    - If both target[key] and updates[key] are dicts, recursively merge them
    - Otherwise, overwrite target[key] with a deep copy of updates[key]

    Examples:
        >>> target = {"SYST": {"CFG": {"MTSP": "N"}}}
        >>> deep_merge(target, {"SYST": {"AVM": {"HG": "Y"}}})
        >>> target
        {"SYST": {"CFG": {"MTSP": "N"}, "AVM": {"HG": "Y"}}}
    """
    for key, value in updates.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            deep_merge(existing, value)
        else:
            target[key] = copy.deepcopy(value)


def lookup_path(tree: Mapping[str, Any], segments: Sequence[str]) -> Any:
    """Walk ``segments`` into ``tree``.

    Absent keys yield ``None``. Running into a scalar where a branch is
    expected means the state tree does not have the shape the schema
    describes, which is reported as :class:`MalformedFrame`.
    """
    node: Any = tree
    for depth, segment in enumerate(segments):
        if node is None:
            return None
        if not isinstance(node, Mapping):
            located = ".".join(segments[:depth])
            raise MalformedFrame(
                f"expected a group at {located!r}, found {type(node).__name__}"
            )
        node = node.get(segment)
    return node
