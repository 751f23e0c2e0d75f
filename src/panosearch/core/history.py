"""
Recent-search history.

A short most-recent-first list of query terms, de-duplicated
case-insensitively, persisted as a JSON array.  Storage problems degrade to
"no history"; none of the public methods raise.
"""

import json
import logging
from typing import Any, List, Optional

from panosearch.core.storage import HISTORY_KEY, Storage, is_available
from panosearch.exceptions import StorageQuotaExceeded

logger = logging.getLogger(__name__)

# Serialized size above which two tail entries are dropped before writing.
SOFT_CAP_CHARS = 5000


class SearchHistoryStore:
    def __init__(self, storage: Optional[Storage], max_items: int = 5,
                 key: str = HISTORY_KEY):
        self.storage = storage
        self.max_items = max(1, int(max_items))
        self.key = key

    def save(self, term: Any) -> bool:
        """Record *term* at the front of the history."""
        if not isinstance(term, str) or not term.strip():
            return False
        if not is_available(self.storage):
            return False

        cleaned = term.strip()
        lowered = cleaned.lower()
        history = [h for h in self.get() if h.lower() != lowered]
        history.insert(0, cleaned)
        del history[self.max_items:]

        if len(json.dumps(history)) > SOFT_CAP_CHARS:
            del history[max(1, len(history) - 2):]

        try:
            self._write(history)
            return True
        except StorageQuotaExceeded as e:
            if len(history) > 1:
                history.pop()
                try:
                    self._write(history)
                    return True
                except Exception as retry_error:
                    logger.warning(f"Failed to save search history: {retry_error}")
                    return False
            logger.warning(f"Failed to save search history: {e}")
            return False
        except Exception as e:
            logger.warning(f"Failed to save search history: {e}")
            return False

    def get(self) -> List[str]:
        """Stored terms, most recent first; an invalid payload resets storage."""
        if not is_available(self.storage):
            return []
        try:
            stored = self.storage.get_item(self.key)
        except Exception as e:
            logger.warning(f"Failed to read search history: {e}")
            return []
        if not stored:
            return []
        try:
            parsed = json.loads(stored)
        except (json.JSONDecodeError, TypeError):
            parsed = None
        if not isinstance(parsed, list):
            logger.warning("Invalid search history format, resetting")
            self.clear()
            return []
        return [h for h in parsed if isinstance(h, str) and h.strip()]

    def clear(self) -> bool:
        try:
            if is_available(self.storage):
                self.storage.remove_item(self.key)
            return True
        except Exception as e:
            logger.warning(f"Failed to clear search history: {e}")
            return False

    def _write(self, history: List[str]) -> None:
        self.storage.set_item(self.key, json.dumps(history))
