from __future__ import annotations

import json
from typing import NamedTuple


class StatKey(NamedTuple):
    """Identity of a stat inside the ledger: (category id, stat name).

    Compared structurally, so ids or names containing separators never collide.
    """

    category_id: str
    stat_name: str

    def encode(self) -> str:
        # JSON array form is stable across restarts and independent of dict order.
        return json.dumps([self.category_id, self.stat_name], separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def decode(cls, raw: str) -> "StatKey":
        parts = json.loads(raw)
        if not isinstance(parts, list) or len(parts) != 2:
            raise ValueError(f"Not an encoded stat key: {raw!r}")
        return cls(str(parts[0]), str(parts[1]))


def setting_key(category_id: str, stat_name: str) -> StatKey:
    return StatKey(str(category_id), str(stat_name))
