"""
Per-file parse cache.

A source is only re-parsed when its signature changes. The signature is a
cheap fingerprint (length, head and tail slices, serialized import options),
not a cryptographic hash of the whole content: an edit confined to the
middle of a very large file can go unnoticed.
"""

import hashlib
import json
from typing import Dict, Iterable, Optional, Union

from ..models import ImportOptions, ParseResult, SourceCacheEntry


def compute_signature(content: Union[str, bytes], options: Optional[ImportOptions] = None,
                      slice_size: int = 512) -> str:
    """
    Fingerprint source content and its import options.

    Args:
        content: Text or raw bytes of the source
        options: Import options (serialized into the signature)
        slice_size: Characters (or bytes) taken from each end

    Returns:
        Hex digest string
    """
    options = options or ImportOptions()
    if isinstance(content, bytes):
        kind = "bytes"
        head = content[:slice_size].hex()
        tail = content[-slice_size:].hex() if content else ""
    else:
        kind = "text"
        head = content[:slice_size]
        tail = content[-slice_size:] if content else ""

    key_str = json.dumps([kind, len(content), head, tail, options.serialize()], ensure_ascii=False)
    return hashlib.md5(key_str.encode("utf-8")).hexdigest()


class SignatureCache:
    """
    Memoized ParseResults keyed by file id.

    No time-based eviction: an entry goes away only when its signature
    changes, the cache is cleared, or its file leaves the active set.
    """

    def __init__(self, entries: Optional[Dict[str, SourceCacheEntry]] = None):
        self._entries: Dict[str, SourceCacheEntry] = dict(entries or {})

    def lookup(self, file_id: str, signature: str) -> Optional[ParseResult]:
        """Cached result for a file if its signature is unchanged."""
        entry = self._entries.get(file_id)
        if entry is not None and entry.signature == signature:
            return entry.result
        return None

    def get(self, file_id: str) -> Optional[SourceCacheEntry]:
        return self._entries.get(file_id)

    def store(self, file_id: str, signature: str, result: ParseResult) -> None:
        self._entries[file_id] = SourceCacheEntry(signature=signature, result=result)

    def retain(self, file_ids: Iterable[str]) -> None:
        """Drop entries for files no longer present."""
        keep = set(file_ids)
        for file_id in list(self._entries):
            if file_id not in keep:
                del self._entries[file_id]

    def clear(self) -> None:
        self._entries.clear()

    def copy(self) -> "SignatureCache":
        return SignatureCache(self._entries)

    def results(self) -> Dict[str, ParseResult]:
        return {file_id: entry.result for file_id, entry in self._entries.items()}

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
