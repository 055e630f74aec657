"""In-memory candidate store.

Every method is synchronous and never awaits, so on the event loop each call
is one atomic step. The engine is the only writer; readers get copies.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional

from leadfinder.models import (
    ENRICHED_FIELDS,
    BusinessStatus,
    Candidate,
    DedupeKey,
    EnrichmentState,
    can_transition,
)

logger = logging.getLogger(__name__)

RESEARCH_FAILED = "Research failed."
RETRY_FAILED = "Research failed on retry."

# Structured extras that are only replaced by a real value.
_OPTIONAL_FIELDS = ("rating", "rating_count", "opening_hours", "primary_type", "latitude", "longitude")


class CandidateStore:
    def __init__(self) -> None:
        self._records: Dict[str, Candidate] = {}
        self._keys: Dict[DedupeKey, str] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._records

    def has_key(self, key: DedupeKey) -> bool:
        return key in self._keys

    def admit(self, candidate: Candidate, key: DedupeKey) -> bool:
        """Insert if neither the id nor the dedupe key is known yet."""
        if key in self._keys or candidate.id in self._records:
            return False
        self._records[candidate.id] = candidate
        self._keys[key] = candidate.id
        return True

    def get(self, candidate_id: str) -> Optional[Candidate]:
        record = self._records.get(candidate_id)
        return replace(record) if record is not None else None

    def snapshot(self) -> List[Candidate]:
        """Copies of every record in insertion order."""
        return [replace(record) for record in self._records.values()]

    def ids_in_state(self, state: EnrichmentState) -> List[str]:
        return [cid for cid, record in self._records.items() if record.enrichment_state is state]

    def begin_attempt(self, candidate_id: str, *, retry: bool = False, today: Optional[str] = None) -> Optional[int]:
        """Move a record to InProgress and return the new attempt generation.

        Returns None when the record is unknown or the transition is not
        allowed, e.g. an attempt is already in flight.
        """
        record = self._records.get(candidate_id)
        if record is None:
            return None
        if not can_transition(record.enrichment_state, EnrichmentState.IN_PROGRESS, retry=retry):
            logger.info(
                "Not starting enrichment for %s: state=%s retry=%s",
                candidate_id,
                record.enrichment_state.value,
                retry,
            )
            return None

        changes: Dict[str, Any] = {
            "enrichment_state": EnrichmentState.IN_PROGRESS,
            "generation": record.generation + 1,
        }
        if retry and today:
            changes["date_found"] = today
        self._records[candidate_id] = replace(record, **changes)
        return record.generation + 1

    def is_current(self, candidate_id: str, generation: int) -> bool:
        record = self._records.get(candidate_id)
        return record is not None and record.generation == generation

    def merge(self, candidate_id: str, generation: int, fields: Mapping[str, Any], *, finish: bool = True) -> bool:
        """Apply enrichment fields from attempt ``generation``.

        Empty values never replace non-empty ones. Stale generations are
        discarded. With ``finish`` the record becomes Done.
        """
        record = self._records.get(candidate_id)
        if record is None or record.generation != generation:
            logger.info("Discarding stale enrichment result for %s (generation %s)", candidate_id, generation)
            return False
        if record.enrichment_state is not EnrichmentState.IN_PROGRESS:
            logger.info("Discarding enrichment result for %s in state %s", candidate_id, record.enrichment_state.value)
            return False

        changes: Dict[str, Any] = {}
        for name in ENRICHED_FIELDS:
            value = fields.get(name)
            if isinstance(value, str) and value.strip():
                changes[name] = value.strip()
        for name in _OPTIONAL_FIELDS:
            value = fields.get(name)
            if value not in (None, ""):
                changes[name] = value
        if finish:
            changes["enrichment_state"] = EnrichmentState.DONE
            changes["error"] = ""
            # Failure text only lives in `error` once an attempt succeeds.
            if "description" not in changes and record.description in (RESEARCH_FAILED, RETRY_FAILED):
                changes["description"] = ""
        self._records[candidate_id] = replace(record, **changes)
        return True

    def fail(self, candidate_id: str, generation: int, message: str, *, retry: bool = False) -> bool:
        """Mark attempt ``generation`` as Failed without touching enriched fields."""
        record = self._records.get(candidate_id)
        if record is None or record.generation != generation:
            return False
        if record.enrichment_state is not EnrichmentState.IN_PROGRESS:
            return False

        if retry:
            description = record.description or RETRY_FAILED
        else:
            description = RESEARCH_FAILED
        self._records[candidate_id] = replace(
            record,
            enrichment_state=EnrichmentState.FAILED,
            description=description,
            error=message,
        )
        return True

    def set_status(
        self,
        candidate_id: str,
        status: BusinessStatus,
        email_thread_id: Optional[str] = None,
    ) -> Optional[Candidate]:
        record = self._records.get(candidate_id)
        if record is None:
            return None
        changes: Dict[str, Any] = {"status": status}
        if email_thread_id is not None:
            changes["email_thread_id"] = email_thread_id.strip() or "N/A"
        updated = replace(record, **changes)
        self._records[candidate_id] = updated
        return replace(updated)
