import hashlib
import json
import logging

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000


def derive_cache_key(sql: str, challenge_id=None, title=None, grade_status=None) -> str:
    """
    Creates a stable cache key from the fields that change the explanation.

    description is left out on purpose: the same SQL for the same challenge
    gets the same answer even if the description text differs.
    Missing values serialize as null, so None and "" give different keys.
    """
    key_material = {
        "sql": sql,
        "challengeId": challenge_id,
        "title": title,
        "gradeStatus": grade_status,
    }
    # ASCII escaping keeps lone surrogates encodable
    canonical = json.dumps(key_material, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ExplanationCache:
    """
    In-memory map of cache key -> explanation text.

    Bounded by max_entries: when a put pushes the size over the bound the
    whole cache is cleared (including the entry just written). No LRU, no TTL.
    One instance per process, created at startup.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._entries.get(key)

    def put(self, key: str, value: str) -> None:
        self._entries[key] = value

        if self.size() > self.max_entries:
            logger.warning(
                "Explanation cache exceeded %d entries, clearing all %d entries",
                self.max_entries,
                self.size(),
            )
            self.clear()

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        """
        Debug view of the cache for /cache/stats.
        """
        return {
            "cache_size": self.size(),
            "cache_max_size": self.max_entries,
            "cache_keys_preview": list(self._entries.keys())[:10],
        }
