"""
Value Equality Classifier

Decides whether two provider values for the same canonical field should be
treated as "the same". Providers serialise data differently, so equality is
field-aware:

- image collections are compared by item count (URLs differ per provider)
- long text (description/content/details) is compared by first sentence
- everything else by trimmed string representation
"""

import json
import logging
import re
from typing import Any, Optional

from config.sync_config import get_config, SourceSyncConfig

logger = logging.getLogger(__name__)

# A sentence ends at . ! or ? followed by whitespace or end of text
_FIRST_SENTENCE = re.compile(r'.*?[.!?](\s|$)')


def item_count(value: Any) -> int:
    """Number of items in an image collection (list length or map key count)"""
    if isinstance(value, (list, tuple)):
        return len(value)
    if isinstance(value, dict):
        return len(value)
    return 0


def first_sentence(text: str) -> str:
    """Text up to and including the first sentence terminator, trimmed"""
    match = _FIRST_SENTENCE.search(text)
    return match.group(0).strip() if match else text.strip()


def to_comparable_string(value: Any) -> str:
    """
    String form used for default equality.

    Numbers that are whole compare equal to their integer form, so 300000,
    300000.0 and "300000" all agree.
    """
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(',', ':'), default=str)
    return str(value).strip()


class ValueEqualityClassifier:
    """Field-aware equality between two present provider values"""

    def __init__(self, config: Optional[SourceSyncConfig] = None):
        self.config = config or get_config()

    def are_equal(self, field_name: str, a: Any, b: Any) -> bool:
        """
        Check whether two values for `field_name` should be considered equal.

        Args:
            field_name: Canonical field name from the mapping table
            a: First value
            b: Second value

        Returns:
            True if the values agree under the field's equality rule
        """
        if a is None or b is None:
            return False

        if self.config.is_image_field(field_name):
            return item_count(a) == item_count(b)

        if self.config.is_long_text_field(field_name) and isinstance(a, str) and isinstance(b, str):
            return first_sentence(a) == first_sentence(b)

        return to_comparable_string(a) == to_comparable_string(b)


def are_equal(field_name: str, a: Any, b: Any, config: Optional[SourceSyncConfig] = None) -> bool:
    """Convenience wrapper around ValueEqualityClassifier.are_equal"""
    return ValueEqualityClassifier(config).are_equal(field_name, a, b)


__all__ = ['ValueEqualityClassifier', 'are_equal', 'first_sentence', 'item_count', 'to_comparable_string']
