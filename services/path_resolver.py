"""
Path Resolver for provider raw records

Resolves dotted field paths (e.g. "media.images") against the schema-less
JSON trees returned by each provider. Providers disagree on key casing
("Images" vs "images"), so every level tries the exact key first and then
falls back to a case-insensitive match.

Absence is never an error: any missing intermediate resolves to None.
"""

import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


def split_path(path: Optional[str]) -> List[str]:
    """Split a dotted path into its non-empty segments"""
    if not path:
        return []
    return [part.strip() for part in str(path).split('.') if part.strip()]


def lookup_key(node: Any, key: str) -> Any:
    """
    Look up a single key on one level of the tree.

    Dicts are tried with the exact key, then case-insensitively. Lists accept
    a numeric index. Anything else has no children.
    """
    if isinstance(node, dict):
        if key in node:
            return node[key]
        return case_insensitive_lookup(node, key)

    if isinstance(node, list) and key.lstrip('-').isdigit():
        index = int(key)
        if -len(node) <= index < len(node):
            return node[index]

    return None


def case_insensitive_lookup(node: dict, key: str) -> Any:
    """Return the value of the first key matching `key` ignoring case"""
    wanted = key.lower()
    for candidate in node:
        if isinstance(candidate, str) and candidate.lower() == wanted:
            return node[candidate]
    return None


def resolve(tree: Any, path: Optional[str]) -> Any:
    """
    Resolve a dotted path against a raw record tree.

    Args:
        tree: Provider raw record (dict/list/scalar tree)
        path: Dot-separated key path; empty means "not mapped"

    Returns:
        The value at the path, or None when any segment is missing
    """
    parts = split_path(path)
    if tree is None or not parts:
        return None

    node = tree
    for part in parts:
        node = lookup_key(node, part)
        if node is None:
            return None

    return node


__all__ = ['resolve', 'split_path', 'lookup_key', 'case_insensitive_lookup']
