"""
Subscription journal.
Append-only JSONL file per sentry recording accepted control events, so the
subscriber sets of running sentries survive a process restart.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ticks_service.protocols import JournalEntry
from ticks_service.schemas.messages import Callback, JoinRequest, LeaveRequest, SentryKey
from ticks_service.services.sentry import apply_control

logger = logging.getLogger("journal")


class SubscriptionJournal:
    """One ``<sentry_id>.jsonl`` file per live sentry under ``directory``."""

    def __init__(self, directory: str = ".run/journal", enabled: bool = True):
        self.directory = directory
        self.enabled = enabled
        if self.enabled:
            os.makedirs(self.directory, exist_ok=True)

    def path_for(self, sentry_id: str) -> str:
        return os.path.join(self.directory, f"{sentry_id}.jsonl")

    def record_join(self, key: SentryKey, subscriber_id: str, callback: Callback) -> None:
        self._append(key, "join", subscriber_id, callback.model_dump())

    def record_leave(self, key: SentryKey, subscriber_id: str) -> None:
        self._append(key, "leave", subscriber_id)

    def record_evict(self, key: SentryKey, subscriber_id: str) -> None:
        self._append(key, "evict", subscriber_id)

    def record_terminate(self, key: SentryKey) -> None:
        """A terminated sentry has nothing to recover: drop its journal."""
        if not self.enabled:
            return
        path = self.path_for(key.sentry_id)
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"[journal] Failed to remove {path}: {e}")

    def _append(self, key: SentryKey, event: str, subscriber_id: Optional[str], callback: Optional[dict] = None):
        if not self.enabled:
            return
        entry = JournalEntry(
            ts=datetime.now(timezone.utc).isoformat(),
            event=event,
            sentry_id=key.sentry_id,
            venue=key.venue,
            instrument=key.instrument,
            subscriber_id=subscriber_id,
            callback=callback,
        )
        try:
            with open(self.path_for(key.sentry_id), "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.error(f"[journal] Failed to append {event} for {key.sentry_id}: {e}")

    def read(self, sentry_id: str) -> List[JournalEntry]:
        """All parseable entries of one sentry's journal, in file order."""
        path = self.path_for(sentry_id)
        if not os.path.exists(path):
            return []

        entries: List[JournalEntry] = []
        with open(path, "r") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    # A crash can leave a torn last line
                    logger.warning(f"[journal] Skipping unreadable line {line_no} of {path}")
        return entries

    def replay(self, sentry_id: str) -> Tuple[Optional[SentryKey], Dict[str, Callback]]:
        """Rebuild a sentry's subscriber set from its journal."""
        key: Optional[SentryKey] = None
        state: Dict[str, Callback] = {}
        for entry in self.read(sentry_id):
            key = SentryKey(entry["venue"], entry["instrument"])
            event = entry.get("event")
            if event == "join":
                message = JoinRequest(subscriber_id=entry["subscriber_id"], callback=Callback(**entry["callback"]))
            elif event in ("leave", "evict"):
                message = LeaveRequest(subscriber_id=entry["subscriber_id"])
            elif event == "terminate":
                state = {}
                continue
            else:
                logger.warning(f"[journal] Unknown event {event!r} in {sentry_id}")
                continue
            state = apply_control(state, message)
        return key, state

    def pending(self) -> List[Tuple[SentryKey, Dict[str, Callback]]]:
        """Every journaled sentry that still had subscribers."""
        if not self.enabled or not os.path.isdir(self.directory):
            return []

        recovered = []
        for filename in sorted(os.listdir(self.directory)):
            if not filename.endswith(".jsonl"):
                continue
            key, state = self.replay(filename[: -len(".jsonl")])
            if key is not None and state:
                recovered.append((key, state))
        return recovered
