"""
Line identity keys used to match lines across parses.

Two granularities:
- merge key (strict): references when present, otherwise the descriptive
  fields plus a manufacturer signature
- match key (soft): the same, without the manufacturer signature, so a line
  still matches when only its manufacturer list changed

Lines with references are keyed by references alone: designators are the
most stable identity a BOM row has.
"""

import hashlib
import json
import re
from typing import Dict, Iterable, List, Optional, Set

from ..models import ComponentLine, normalize_value

REF_KEY_PREFIX = "ref:"
LINE_KEY_PREFIX = "line:"


def normalize_references(references: str) -> str:
    """Lowercase references and canonicalize the spacing around commas."""
    value = normalize_value(references)
    value = re.sub(r'\s*,\s*', ',', value)
    return re.sub(r'\s+', ' ', value)


def manufacturer_signature(line: ComponentLine) -> str:
    """Sorted, normalized 'manufacturer|part' pairs joined together."""
    pairs = sorted(f"{mfr}|{part}" for mfr, part in (m.normalized_pair() for m in line.manufacturers))
    return ";".join(pairs)


def _descriptive_parts(line: ComponentLine) -> List[str]:
    return [
        normalize_value(line.description),
        normalize_value(line.package),
        normalize_value(line.customer_item_no),
        normalize_value(line.comment),
        str(line.quantity),
        line.line_type.value.lower(),
    ]


def _hash_parts(parts: List[str]) -> str:
    key_str = json.dumps(parts, ensure_ascii=False)
    return LINE_KEY_PREFIX + hashlib.md5(key_str.encode("utf-8")).hexdigest()


def merge_key(line: ComponentLine) -> str:
    """Strict identity of a line."""
    if line.references.strip():
        return REF_KEY_PREFIX + normalize_references(line.references)
    return _hash_parts(_descriptive_parts(line) + [manufacturer_signature(line)])


def match_key(line: ComponentLine) -> str:
    """Soft identity of a line (merge key without the manufacturer signature)."""
    if line.references.strip():
        return REF_KEY_PREFIX + normalize_references(line.references)
    return _hash_parts(_descriptive_parts(line))


class LineIndex:
    """
    O(1) lookup of lines by merge key, match key and id.

    The first line indexed under a key wins.
    """

    def __init__(self, lines: Iterable[ComponentLine] = ()):
        self.by_merge_key: Dict[str, ComponentLine] = {}
        self.by_match_key: Dict[str, ComponentLine] = {}
        self.by_id: Dict[str, ComponentLine] = {}
        for line in lines:
            self.add(line)

    def add(self, line: ComponentLine) -> None:
        self.by_merge_key.setdefault(merge_key(line), line)
        self.by_match_key.setdefault(match_key(line), line)
        self.by_id.setdefault(line.id, line)

    def contains(self, line: ComponentLine) -> bool:
        """Whether a line with the same strict or soft key is indexed."""
        return merge_key(line) in self.by_merge_key or match_key(line) in self.by_match_key

    def find(self, line: ComponentLine) -> Optional[ComponentLine]:
        """Indexed line with the same strict key, falling back to the soft key."""
        found = self.by_merge_key.get(merge_key(line))
        if found is None:
            found = self.by_match_key.get(match_key(line))
        return found


def dedupe_lines(lines: Iterable[ComponentLine]) -> List[ComponentLine]:
    """Drop lines whose merge key was already seen (first occurrence wins)."""
    seen: Set[str] = set()
    unique = []
    for line in lines:
        key = merge_key(line)
        if key in seen:
            continue
        seen.add(key)
        unique.append(line)
    return unique
