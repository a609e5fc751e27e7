# split_store.py
import json
import os
import re
from typing import List, Optional

import config
from models import ReceiptItem, SplitState
from utils import get_logger

log = get_logger("split_store")

KEY_PREFIX = "splitCheck_"
ITEMS_PREFIX = "splitCheckItems_"


class SplitStateStore:
    """
    Device-local JSON snapshots of in-progress splits, one file per receipt session.

    Writes are best effort: a failure is logged and the split carries on.
    The last write for a key wins.
    """

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or config.SPLIT_STATE_DIR

    def _path(self, key: str, prefix: str = KEY_PREFIX) -> str:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", str(key))
        return os.path.join(self.directory, f"{prefix}{safe}.json")

    def _write(self, path: str, payload) -> bool:
        try:
            os.makedirs(self.directory, exist_ok=True)
            tmp = path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
            os.replace(tmp, path)
            return True
        except (OSError, TypeError, ValueError) as e:
            log.warning(f"Could not save to {path}: {e}")
            return False

    def _read(self, path: str):
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            log.warning(f"Could not read {path}: {e}")
            return None

    def save(self, key: str, state: SplitState) -> bool:
        return self._write(self._path(key), state.to_dict())

    def load(self, key: str) -> Optional[SplitState]:
        path = self._path(key)
        data = self._read(path)
        if data is None:
            return None
        try:
            return SplitState.from_dict(data)
        except (TypeError, ValueError) as e:
            log.warning(f"Ignoring unusable split state in {path}: {e}")
            return None

    def save_items(self, key: str, items) -> bool:
        """Keep the extracted items next to the split so it can be rebuilt later."""
        return self._write(self._path(key, ITEMS_PREFIX), [item.to_dict() for item in items])

    def load_items(self, key: str) -> Optional[List[ReceiptItem]]:
        data = self._read(self._path(key, ITEMS_PREFIX))
        if not isinstance(data, list):
            return None
        return [ReceiptItem.from_dict(raw) for raw in data if isinstance(raw, dict)]

    def clear(self) -> int:
        """Forget every saved split, as when a new receipt is uploaded."""
        removed = 0
        try:
            names = os.listdir(self.directory)
        except OSError:
            return 0
        for name in names:
            if not name.startswith((KEY_PREFIX, ITEMS_PREFIX)):
                continue
            try:
                os.remove(os.path.join(self.directory, name))
                removed += 1
            except OSError as e:
                log.warning(f"Could not remove {name}: {e}")
        return removed
