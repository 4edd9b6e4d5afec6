"""
StormService: the core facade consumed by the HTTP layer.

Wires store, adapters, orchestrator, scheduler, context builder, prediction
engine and status aggregator together, and exposes the operations callers
are allowed to perform. Unknown ids raise NotFound; unknown feed family or
kind raises ValueError.
"""

import logging
from typing import List, Optional, Sequence

import httpx

from stormwatch.config import Settings
from stormwatch.data.adapters import (
    USER_AGENT,
    ActiveStormFeed,
    CMEMSAdapter,
    GFSAdapter,
    NHCTrackAdapter,
    SourceAdapter,
)
from stormwatch.data.sql_store import SqlSnapshotStore
from stormwatch.data.store import InMemorySnapshotStore, SnapshotStore
from stormwatch.exceptions import NotFound, UpstreamUnavailable
from stormwatch.forecast.context import ForecastContextBuilder
from stormwatch.forecast.engine import PredictionEngine
from stormwatch.forecast.oracle import OpenAIChatOracle, PredictionOracle
from stormwatch.ingestion.orchestrator import FeedOrchestrator
from stormwatch.ingestion.scheduler import Scheduler
from stormwatch.models import (
    FEED_KINDS,
    CycleReport,
    EnvironmentalSnapshot,
    FeedFamily,
    ForecastRecord,
    IntensificationTrend,
    SystemStatusView,
    TrackedEntity,
    validate_feed,
)
from stormwatch.status import StatusAggregator

logger = logging.getLogger(__name__)

# Families whose summaries feed the prediction context
CONTEXT_FAMILIES = (FeedFamily.GRIDDED_WEATHER, FeedFamily.OCEAN_FIELD)


class StormService:
    """Core operations over tracked storms, feeds, forecasts and status."""

    def __init__(
        self,
        store: SnapshotStore,
        orchestrator: FeedOrchestrator,
        engine: PredictionEngine,
        status: StatusAggregator,
        context_builder: Optional[ForecastContextBuilder] = None,
        scheduler: Optional[Scheduler] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.engine = engine
        self.status = status
        self.context_builder = context_builder or ForecastContextBuilder()
        self.scheduler = scheduler
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[SnapshotStore] = None,
        adapters: Optional[Sequence[SourceAdapter]] = None,
        oracle: Optional[PredictionOracle] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "StormService":
        """
        Build the full object graph from settings.

        Explicit ``store``, ``adapters`` and ``oracle`` override what the
        settings would build; tests use this to inject fakes.
        """
        if store is None:
            if settings.database_url:
                store = SqlSnapshotStore(settings.database_url, echo=settings.db_echo)
            else:
                store = InMemorySnapshotStore()

        if http_client is None:
            http_client = httpx.AsyncClient(
                timeout=settings.http_timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )

        if adapters is None:
            adapters = [
                NHCTrackAdapter(store, settings, http_client),
                GFSAdapter(store, settings, http_client),
                CMEMSAdapter(store, settings, http_client),
            ]

        if oracle is None and settings.has_oracle_credentials:
            oracle = OpenAIChatOracle(
                api_key=settings.oracle_api_key,
                base_url=settings.oracle_base_url,
                model=settings.oracle_model,
                timeout_seconds=settings.oracle_timeout_seconds,
                temperature=settings.oracle_temperature,
                client=http_client,
            )
        if oracle is None:
            logger.warning("No oracle API key configured; forecasts are unavailable")

        orchestrator = FeedOrchestrator(
            store,
            adapters,
            fallback_source=ActiveStormFeed(settings, http_client),
            fetch_attempts=settings.fetch_attempts,
            fetch_backoff_seconds=settings.fetch_backoff_seconds,
        )
        engine = PredictionEngine(store, oracle, timeout_seconds=settings.oracle_timeout_seconds)
        status = StatusAggregator(
            settings,
            store,
            last_report=lambda: orchestrator.last_report,
            oracle_configured=engine.configured,
            breakers=[b for b in (getattr(oracle, "breaker", None),) if b is not None],
        )
        return cls(
            store=store,
            orchestrator=orchestrator,
            engine=engine,
            status=status,
            scheduler=Scheduler(orchestrator, settings.refresh_interval_minutes),
            http_client=http_client,
        )

    async def aclose(self):
        """Stop the scheduler and release the shared HTTP client."""
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self._http_client is not None:
            await self._http_client.aclose()

    # -------------------------------------------------------------------------
    # Storms
    # -------------------------------------------------------------------------

    def list_active_entities(self) -> List[TrackedEntity]:
        return sorted(self.store.list_entities(active_only=True), key=lambda e: e.id)

    def get_entity(self, entity_id: str) -> TrackedEntity:
        entity = self.store.get_entity(entity_id)
        if entity is None:
            raise NotFound("storm", entity_id)
        return entity

    # -------------------------------------------------------------------------
    # Feeds
    # -------------------------------------------------------------------------

    async def get_or_fetch(self, family: FeedFamily, kind: str) -> EnvironmentalSnapshot:
        """
        Latest snapshot for (family, kind); fetches and stores one first if
        none exists yet.

        Raises:
            ValueError: unknown family or kind
            FetchError: nothing stored and the fetch failed
        """
        family = validate_feed(family, kind)
        snapshot = self.store.latest(family, kind)
        if snapshot is not None:
            return snapshot

        adapter = self.orchestrator.adapter_for(family)
        if adapter is None:
            raise UpstreamUnavailable(f"No adapter configured for {family.value}")
        logger.info(f"No {family.value}/{kind} snapshot stored; fetching on read")
        return await self.orchestrator.fetch_with_retry(adapter, kind)

    async def trigger_manual_refresh(self) -> CycleReport:
        return await self.orchestrator.refresh_now()

    def get_status(self) -> SystemStatusView:
        return self.status.compute_status()

    # -------------------------------------------------------------------------
    # Forecasts
    # -------------------------------------------------------------------------

    def list_forecasts(self, entity_id: Optional[str] = None) -> List[ForecastRecord]:
        if entity_id is not None:
            self.get_entity(entity_id)
        return self.store.list_forecasts(entity_id)

    def get_latest_forecast(self, entity_id: str) -> ForecastRecord:
        self.get_entity(entity_id)
        record = self.store.latest_forecast(entity_id)
        if record is None:
            raise NotFound("forecast", entity_id)
        return record

    def context_snapshots(self) -> List[EnvironmentalSnapshot]:
        """Latest snapshot of every kind that contributes to a prediction context."""
        snapshots = []
        for family in CONTEXT_FAMILIES:
            for kind in FEED_KINDS[family]:
                snapshot = self.store.latest(family, kind)
                if snapshot is not None:
                    snapshots.append(snapshot)
        return snapshots

    async def generate_forecast(self, entity_id: str) -> ForecastRecord:
        """
        Raises:
            NotFound: unknown storm
            PredictionUnavailable: oracle failed; nothing was stored
        """
        entity = self.get_entity(entity_id)
        context = self.context_builder.build(entity, self.context_snapshots())
        return await self.engine.generate_forecast(entity, context)

    async def analyze_intensification(self, entity_id: str) -> IntensificationTrend:
        entity = self.get_entity(entity_id)
        return await self.engine.analyze_intensification_trend(entity)
