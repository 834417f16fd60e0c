"""rtcstats wire messages.

Every frame sent to the rtcstats server is a JSON object with a ``type``
(``identity``, ``stats-entry`` or ``close``) and the ``statsSessionId`` of
the conference dump it belongs to.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .tracker import ConferenceRecord

IDENTITY = "identity"
STATS_ENTRY = "stats-entry"
CLOSE = "close"

_COMPACT = (",", ":")


def identity_message(record: ConferenceRecord) -> dict[str, Any]:
    return {
        "type": IDENTITY,
        "statsSessionId": record.session_id,
        "data": record.identity_data(),
    }


def close_message(session_id: str) -> dict[str, Any]:
    return {"type": CLOSE, "statsSessionId": session_id}


def stats_entry_message(session_id: str, delta: dict[str, Any]) -> dict[str, Any]:
    """Build a stats entry; the server expects ``data`` as a JSON string."""
    return {
        "type": STATS_ENTRY,
        "statsSessionId": session_id,
        "data": json.dumps(delta, separators=_COMPACT),
    }


def encode(message: dict[str, Any]) -> str:
    """Serialize a message into one text frame."""
    return json.dumps(message, separators=_COMPACT)
