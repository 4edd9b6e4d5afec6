"""
Snapshot store: append-only history of feed snapshots and forecasts, plus
the keyed table of tracked storms.

"Latest" is always derived at read time (max timestamp per (family, kind),
ties broken by insertion order); nothing is updated in place except storm
records, which are replaced whole under their stable id.
"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from stormwatch.models import (
    EnvironmentalSnapshot,
    FeedFamily,
    ForecastRecord,
    TrackedEntity,
    validate_feed,
)

logger = logging.getLogger(__name__)


class SnapshotStore(ABC):
    """Keyed repository contract shared by all storage backends."""

    # -- snapshots ---------------------------------------------------------

    @abstractmethod
    def append(self, snapshot: EnvironmentalSnapshot) -> EnvironmentalSnapshot:
        """Store a fully built snapshot; returns it with id and sequence assigned."""

    @abstractmethod
    def latest(self, family: FeedFamily, kind: str) -> Optional[EnvironmentalSnapshot]:
        """Newest snapshot by timestamp; on ties the most recently appended."""

    @abstractmethod
    def list_snapshots(self, family: FeedFamily, kind: str) -> List[EnvironmentalSnapshot]:
        """Snapshot history for (family, kind), newest first."""

    # -- entities ----------------------------------------------------------

    @abstractmethod
    def upsert_entity(self, entity: TrackedEntity) -> TrackedEntity:
        """Full replace keyed by ``entity.id``."""

    @abstractmethod
    def get_entity(self, entity_id: str) -> Optional[TrackedEntity]:
        ...

    @abstractmethod
    def list_entities(self, active_only: bool = True) -> List[TrackedEntity]:
        ...

    # -- forecasts ---------------------------------------------------------

    @abstractmethod
    def append_forecast(self, record: ForecastRecord) -> ForecastRecord:
        ...

    @abstractmethod
    def latest_forecast(self, entity_id: str) -> Optional[ForecastRecord]:
        """Most recently created forecast for ``entity_id``."""

    @abstractmethod
    def list_forecasts(self, entity_id: Optional[str] = None) -> List[ForecastRecord]:
        """Forecasts, newest first, optionally for one entity."""


def _latest_key(snapshot: EnvironmentalSnapshot) -> Tuple:
    return (snapshot.timestamp, snapshot.sequence)


def _forecast_key(record: ForecastRecord) -> Tuple:
    return (record.created_at, record.sequence)


class InMemorySnapshotStore(SnapshotStore):
    """
    Process-local store.

    A single lock serializes writes so ids and sequence numbers never
    collide; reads copy under the same lock and never see a half-built
    snapshot because snapshots are frozen before they arrive.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._sequence = 0
        self._snapshots: Dict[Tuple[FeedFamily, str], List[EnvironmentalSnapshot]] = {}
        self._entities: Dict[str, TrackedEntity] = {}
        self._forecasts: List[ForecastRecord] = []

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def append(self, snapshot: EnvironmentalSnapshot) -> EnvironmentalSnapshot:
        with self._lock:
            stored = replace(snapshot, id=str(uuid.uuid4()), sequence=self._next_sequence())
            self._snapshots.setdefault((stored.family, stored.kind), []).append(stored)
        logger.debug(f"Appended {stored.family.value}/{stored.kind} snapshot {stored.id}")
        return stored

    def latest(self, family: FeedFamily, kind: str) -> Optional[EnvironmentalSnapshot]:
        family = validate_feed(family, kind)
        with self._lock:
            history = list(self._snapshots.get((family, kind), ()))
        if not history:
            return None
        return max(history, key=_latest_key)

    def list_snapshots(self, family: FeedFamily, kind: str) -> List[EnvironmentalSnapshot]:
        family = validate_feed(family, kind)
        with self._lock:
            history = list(self._snapshots.get((family, kind), ()))
        return sorted(history, key=_latest_key, reverse=True)

    def upsert_entity(self, entity: TrackedEntity) -> TrackedEntity:
        stored = copy.deepcopy(entity)
        with self._lock:
            self._entities[stored.id] = stored
        return copy.deepcopy(stored)

    def get_entity(self, entity_id: str) -> Optional[TrackedEntity]:
        with self._lock:
            entity = self._entities.get(entity_id)
        return copy.deepcopy(entity) if entity is not None else None

    def list_entities(self, active_only: bool = True) -> List[TrackedEntity]:
        with self._lock:
            entities = [copy.deepcopy(e) for e in self._entities.values()]
        if active_only:
            entities = [e for e in entities if e.active]
        return entities

    def append_forecast(self, record: ForecastRecord) -> ForecastRecord:
        with self._lock:
            stored = replace(record, id=str(uuid.uuid4()), sequence=self._next_sequence())
            self._forecasts.append(stored)
        return stored

    def latest_forecast(self, entity_id: str) -> Optional[ForecastRecord]:
        records = self.list_forecasts(entity_id)
        return records[0] if records else None

    def list_forecasts(self, entity_id: Optional[str] = None) -> List[ForecastRecord]:
        with self._lock:
            records = list(self._forecasts)
        if entity_id is not None:
            records = [r for r in records if r.entity_id == entity_id]
        return sorted(records, key=_forecast_key, reverse=True)
