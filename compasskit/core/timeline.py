from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List


@dataclass
class Event:
    ts: str
    session: int
    type: str  # session_start|session_stop|session_failed|accuracy_low|self_heal|info
    label: str
    data: Dict[str, Any]


class Timeline:
    """Bounded ring of runtime events, safe to read from the API thread."""

    def __init__(self, maxlen: int = 200) -> None:
        self._buf: Deque[Event] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def add(self, session: int, type_: str, label: str, **data: Any) -> Dict[str, Any]:
        ts = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        evt = Event(ts=ts, session=session, type=type_, label=label, data=data)
        with self._lock:
            self._buf.append(evt)
        return asdict(evt)

    def last(self, n: int = 50) -> List[Dict[str, Any]]:
        if n <= 0:
            return []
        with self._lock:
            items = list(self._buf)[-n:]
        return [asdict(e) for e in items]
