"""Conference lifecycle tracking.

Each conference seen in a Jicofo snapshot gets a :class:`ConferenceRecord`
holding the rtcstats session id for its dump, the endpoints ever seen in
it, and the last raw record (the diff baseline).

Lifecycle per conference id::

    absent ──(appears in snapshot)──▶ tracked ──(missing from snapshot)──▶ absent
             identity message                    close message

While tracked, every cycle produces a ``stats-entry`` delta, preceded by a
fresh ``identity`` message whenever new endpoints join.  Endpoints that
leave are kept in the record and are not signalled.
"""

from __future__ import annotations

import copy
import logging
import socket
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from .diff import diff
from .messages import close_message, identity_message, stats_entry_message

logger = logging.getLogger(__name__)

APPLICATION_NAME = "Jicofo"


@dataclass
class ConferenceRecord:
    """State kept for one tracked conference."""

    session_id: str
    conference_name: str
    display_name: str
    meeting_unique_id: str
    application_name: str = APPLICATION_NAME
    endpoints: list[str] = field(default_factory=list)
    previous_snapshot: Optional[dict[str, Any]] = None

    def add_endpoints(self, endpoint_ids: list[str]) -> list[str]:
        """Union *endpoint_ids* into the known endpoints; return the new ones."""
        known = set(self.endpoints)
        added = []
        for endpoint_id in endpoint_ids:
            if endpoint_id not in known:
                known.add(endpoint_id)
                added.append(endpoint_id)
        self.endpoints.extend(added)
        return added

    def identity_data(self) -> dict[str, Any]:
        return {
            "confName": self.conference_name,
            "displayName": self.display_name,
            "meetingUniqueId": self.meeting_unique_id,
            "applicationName": self.application_name,
            "endpoints": list(self.endpoints),
        }


class ConferenceStore:
    """Tracked conferences keyed by Jicofo conference id."""

    def __init__(self) -> None:
        self._records: dict[str, ConferenceRecord] = {}

    def create(self, conference_id: str, record: ConferenceRecord) -> ConferenceRecord:
        if conference_id in self._records:
            raise KeyError(f"Conference already tracked: {conference_id}")
        self._records[conference_id] = record
        return record

    def get(self, conference_id: str) -> Optional[ConferenceRecord]:
        return self._records.get(conference_id)

    def delete(self, conference_id: str) -> ConferenceRecord:
        try:
            return self._records.pop(conference_id)
        except KeyError:
            raise KeyError(f"Conference not tracked: {conference_id}") from None

    def ids(self) -> list[str]:
        return list(self._records)

    def session_ids(self) -> set[str]:
        return {record.session_id for record in self._records.values()}

    def __contains__(self, conference_id: object) -> bool:
        return conference_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))


def conference_name(conference_id: str) -> str:
    """Room part of a conference id (``room@conference.example.com`` → ``room``)."""
    return conference_id.split("@", 1)[0]


def endpoint_ids(raw: Mapping[str, Any]) -> list[str]:
    """Endpoint ids in a raw conference record; missing participants → ``[]``."""
    participants = raw.get("participants")
    if not isinstance(participants, Mapping):
        return []
    return list(participants)


class SessionTracker:
    """Turns successive Jicofo snapshots into rtcstats messages.

    The tracker holds no conference state itself; callers own a
    :class:`ConferenceStore` and pass it to :meth:`process_snapshot` each
    cycle.
    """

    def __init__(
        self,
        display_name: str | None = None,
        application_name: str = APPLICATION_NAME,
        session_id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.display_name = display_name or socket.gethostname()
        self.application_name = application_name
        self._new_session_id = session_id_factory or (lambda: str(uuid.uuid4()))

    def process_snapshot(
        self, store: ConferenceStore, snapshot: Mapping[str, Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        """Apply one poll's snapshot to *store* and return the messages to send."""
        tracked = set(store.ids())
        current = set(snapshot)
        added = [conf_id for conf_id in snapshot if conf_id not in tracked]
        removed = [conf_id for conf_id in store.ids() if conf_id not in current]

        messages: list[dict[str, Any]] = []

        for conf_id in added:
            record = self._create_record(store, conf_id, snapshot[conf_id])
            store.create(conf_id, record)
            logger.info(
                "New conference %s (session %s)", conf_id, record.session_id
            )

        for conf_id in removed:
            record = store.delete(conf_id)
            logger.info(
                "Conference %s ended (session %s)", conf_id, record.session_id
            )
            messages.append(close_message(record.session_id))

        new_ids = set(added)
        for conf_id, raw in snapshot.items():
            record = store.get(conf_id)
            if record is None:
                continue
            messages.extend(
                self._process_conference(record, raw, created=conf_id in new_ids)
            )
        return messages

    def _create_record(
        self, store: ConferenceStore, conf_id: str, raw: Mapping[str, Any]
    ) -> ConferenceRecord:
        return ConferenceRecord(
            session_id=self._allocate_session_id(store),
            conference_name=conference_name(conf_id),
            display_name=self.display_name,
            meeting_unique_id=raw.get("meeting_id") or conf_id,
            application_name=self.application_name,
        )

    def _process_conference(
        self, record: ConferenceRecord, raw: Mapping[str, Any], created: bool
    ) -> list[dict[str, Any]]:
        messages = []
        joined = record.add_endpoints(endpoint_ids(raw))
        if joined:
            logger.debug(
                "Session %s: new endpoints %s", record.session_id, ", ".join(joined)
            )
        if created or joined:
            messages.append(identity_message(record))

        delta = diff(record.previous_snapshot or {}, raw)
        messages.append(stats_entry_message(record.session_id, delta))
        record.previous_snapshot = copy.deepcopy(dict(raw))
        return messages

    def _allocate_session_id(self, store: ConferenceStore) -> str:
        live = store.session_ids()
        session_id = self._new_session_id()
        while session_id in live:
            logger.warning("Session id %s already in use, regenerating", session_id)
            session_id = self._new_session_id()
        return session_id
