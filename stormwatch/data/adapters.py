"""
Upstream source adapters.

One adapter per feed family. Each ``fetch(kind)`` performs the network call,
parses the payload, appends exactly one snapshot to the store and returns
it. Adapters never retry; the orchestrator owns retry and fallback policy
so it sees the true failure count of a cycle.

Sources:
- NHC ArcGIS MapServer (track geometry), with a mirror chain per kind
- NOAA GFS 0.25 deg GRIB2 on the open-data S3 bucket (gridded weather)
- Copernicus Marine CMEMS OPeNDAP datasets (ocean fields)
- NHC active-storm KML (secondary source for the track fallback)
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from stormwatch.config import Settings
from stormwatch.data.parsers import ActiveStorm, parse_active_storms, parse_feature_collection
from stormwatch.data.store import SnapshotStore
from stormwatch.exceptions import UpstreamFormatError, UpstreamUnavailable
from stormwatch.models import (
    FEED_KINDS,
    EnvironmentalSnapshot,
    FeedFamily,
    GeometryPayload,
    RasterPayload,
    utcnow,
    validate_feed,
)

logger = logging.getLogger(__name__)

USER_AGENT = "Stormwatch/1.0"


class SourceAdapter(ABC):
    """
    Base class for feed adapters.

    Args:
        store: Snapshot store receiving one append per successful fetch
        settings: Application settings (URLs, credentials, timeouts)
        client: Optional shared ``httpx.AsyncClient``; when omitted a
            short-lived client is opened per fetch
    """

    family: FeedFamily
    name: str = "adapter"

    def __init__(
        self,
        store: SnapshotStore,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.settings = settings
        self._http = client

    @property
    def kinds(self) -> Tuple[str, ...]:
        return FEED_KINDS[self.family]

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            yield client

    async def _request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs
    ) -> httpx.Response:
        """Issue one request; transport and HTTP errors become UpstreamUnavailable."""
        try:
            response = await client.request(
                method, url, timeout=self.settings.http_timeout_seconds, **kwargs
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"Timeout requesting {url}", source=self.name) from e
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"HTTP {e.response.status_code} from {url}", source=self.name
            ) from e
        except httpx.RequestError as e:
            raise UpstreamUnavailable(f"Request to {url} failed: {e}", source=self.name) from e
        return response

    async def fetch(self, kind: str) -> EnvironmentalSnapshot:
        """
        Fetch ``kind`` from upstream and append the resulting snapshot.

        Raises:
            ValueError: ``kind`` is not carried by this adapter's family
            UpstreamUnavailable: network or HTTP failure
            UpstreamFormatError: payload could not be parsed
        """
        validate_feed(self.family, kind)
        snapshot = await self._fetch(kind)
        stored = self.store.append(snapshot)
        logger.info(f"{self.name}: stored {self.family.value}/{kind} snapshot {stored.id}")
        return stored

    @abstractmethod
    async def _fetch(self, kind: str) -> EnvironmentalSnapshot:
        """Build (but do not store) the snapshot for ``kind``."""


# =============================================================================
# NHC track geometry
# =============================================================================

NHC_LAYERS: Dict[str, int] = {
    "cones": 0,
    "tracks": 1,
    "warnings": 2,
}

ARCGIS_QUERY = {"where": "1=1", "outFields": "*", "f": "json"}


class NHCTrackAdapter(SourceAdapter):
    """NHC cones, tracks and warnings from the ArcGIS MapServer layers."""

    family = FeedFamily.TRACK_GEOMETRY
    name = "nhc"

    def endpoints(self, kind: str) -> List[str]:
        """Ordered layer query URLs for ``kind``: primary service first, then the mirror."""
        layer = NHC_LAYERS[kind]
        return [
            f"{base.rstrip('/')}/{layer}/query"
            for base in (self.settings.nhc_arcgis_url, self.settings.nhc_mirror_url)
            if base
        ]

    async def _fetch(self, kind: str) -> EnvironmentalSnapshot:
        last_error: Optional[Exception] = None
        async with self._client() as client:
            for url in self.endpoints(kind):
                try:
                    response = await self._request(
                        client, "GET", url, params=ARCGIS_QUERY,
                        headers={"Accept": "application/json, */*"},
                    )
                    features = parse_feature_collection(response.content)
                except (UpstreamUnavailable, UpstreamFormatError) as e:
                    logger.warning(f"NHC {kind} endpoint failed ({url}): {e}")
                    last_error = e
                    continue

                logger.debug(f"NHC {kind}: {len(features)} feature(s) from {url}")
                return EnvironmentalSnapshot(
                    family=self.family,
                    kind=kind,
                    timestamp=utcnow(),
                    payload=GeometryPayload(features=tuple(features)),
                    metadata={
                        "source": "NHC",
                        "endpoint": url,
                        "feature_count": len(features),
                    },
                )

        if last_error is None:
            raise UpstreamUnavailable(f"No NHC endpoints configured for {kind}", source=self.name)
        raise last_error


# =============================================================================
# GFS gridded weather
# =============================================================================

GFS_CYCLE_HOURS = 6
GFS_RESOLUTION = "0.25°"

# GRIB2 message selectors for each kind
GFS_VARIABLES: Dict[str, List[str]] = {
    "temperature": ["TMP:2 m above ground"],
    "pressure": ["PRMSL:mean sea level"],
    "wind": ["UGRD:10 m above ground", "VGRD:10 m above ground"],
}


def gfs_cycle(moment: datetime) -> datetime:
    """Start of the 6-hourly GFS cycle containing ``moment`` (UTC)."""
    moment = moment.astimezone(timezone.utc)
    hour = (moment.hour // GFS_CYCLE_HOURS) * GFS_CYCLE_HOURS
    return moment.replace(hour=hour, minute=0, second=0, microsecond=0)


def gfs_object_url(bucket_url: str, cycle: datetime, forecast_hour: int = 0) -> str:
    """``{bucket}/gfs.YYYYMMDD/HH/atmos/gfs.tHHz.pgrb2.0p25.fFFF``"""
    day = cycle.strftime("%Y%m%d")
    hh = f"{cycle.hour:02d}"
    return (
        f"{bucket_url.rstrip('/')}/gfs.{day}/{hh}/atmos/"
        f"gfs.t{hh}z.pgrb2.0p25.f{forecast_hour:03d}"
    )


class GFSAdapter(SourceAdapter):
    """
    Reference to the latest GFS analysis on the NOAA open-data bucket.

    The GRIB2 file itself is never downloaded: a HEAD confirms the object is
    published, and the snapshot stores the object URL plus a TiTiler tile
    template for rendering. A cycle is usually published a few hours after
    its nominal time, so ``cycle_lookback`` older cycles are tried as well.
    """

    family = FeedFamily.GRIDDED_WEATHER
    name = "gfs"

    def __init__(
        self,
        store: SnapshotStore,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
        cycle_lookback: int = 1,
    ):
        super().__init__(store, settings, client)
        self.clock = clock
        self.cycle_lookback = cycle_lookback

    def candidate_cycles(self) -> List[datetime]:
        newest = gfs_cycle(self.clock())
        return [
            newest - timedelta(hours=GFS_CYCLE_HOURS * i)
            for i in range(self.cycle_lookback + 1)
        ]

    def tile_url(self, source_url: str) -> str:
        return (
            f"{self.settings.titiler_url.rstrip('/')}/cog/tiles/WebMercatorQuad/"
            f"{{z}}/{{x}}/{{y}}.png?url={quote(source_url, safe='')}"
        )

    async def _fetch(self, kind: str) -> EnvironmentalSnapshot:
        last_error: Optional[UpstreamUnavailable] = None
        async with self._client() as client:
            for cycle in self.candidate_cycles():
                url = gfs_object_url(self.settings.gfs_bucket_url, cycle)
                try:
                    await self._request(client, "HEAD", url)
                except UpstreamUnavailable as e:
                    logger.debug(f"GFS cycle {cycle:%Y%m%d %H}z not available: {e}")
                    last_error = e
                    continue

                return EnvironmentalSnapshot(
                    family=self.family,
                    kind=kind,
                    timestamp=cycle,
                    payload=RasterPayload(source_url=url, tile_url=self.tile_url(url)),
                    metadata={
                        "source": "GFS",
                        "resolution": GFS_RESOLUTION,
                        "forecast_hour": 0,
                        "cycle": cycle.strftime("%Y%m%d/%H"),
                        "variables": list(GFS_VARIABLES[kind]),
                    },
                )

        raise last_error


# =============================================================================
# CMEMS ocean fields
# =============================================================================

CMEMS_DATASETS: Dict[str, Dict[str, Any]] = {
    "currents": {
        "dataset": "GLOBAL_ANALYSISFORECAST_PHY_001_024",
        "path": "global-analysis-forecast-phy-001-024",
        "variables": ["uo", "vo"],  # eastward/northward velocity
    },
    "waves": {
        "dataset": "GLOBAL_ANALYSISFORECAST_WAV_001_027",
        "path": "global-analysis-forecast-wav-001-027",
        "variables": ["VHM0"],  # significant wave height
    },
}

CMEMS_RESOLUTION = "1/12°"


class CMEMSAdapter(SourceAdapter):
    """Copernicus Marine global analysis/forecast datasets (credentials required)."""

    family = FeedFamily.OCEAN_FIELD
    name = "cmems"

    def dataset_url(self, kind: str) -> str:
        return f"{self.settings.cmems_base_url.rstrip('/')}/{CMEMS_DATASETS[kind]['path']}"

    async def _fetch(self, kind: str) -> EnvironmentalSnapshot:
        if not self.settings.has_cmems_credentials:
            raise UpstreamUnavailable("missing credentials", source=self.name)

        dataset = CMEMS_DATASETS[kind]
        url = self.dataset_url(kind)
        auth = (self.settings.cmems_username, self.settings.cmems_password)
        async with self._client() as client:
            # Dataset attribute structure: small, and authenticates the account
            await self._request(client, "GET", f"{url}.das", auth=auth)

        return EnvironmentalSnapshot(
            family=self.family,
            kind=kind,
            timestamp=utcnow(),
            payload=RasterPayload(source_url=url),
            metadata={
                "source": "CMEMS",
                "dataset": dataset["dataset"],
                "variables": list(dataset["variables"]),
                "resolution": CMEMS_RESOLUTION,
            },
        )


# =============================================================================
# NHC active-storm KML (secondary source)
# =============================================================================

class ActiveStormFeed:
    """
    Secondary live source for current storms.

    Not a SourceAdapter: it stores nothing itself. The orchestrator reads it
    only when every track-geometry call of a cycle failed.
    """

    name = "nhc-kml"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._http = client

    async def fetch_storms(self) -> List[ActiveStorm]:
        """
        Raises:
            UpstreamUnavailable: feed unreachable
            UpstreamFormatError: feed is not valid KML
        """
        url = self.settings.nhc_active_kml_url
        try:
            if self._http is not None:
                response = await self._http.get(url, timeout=self.settings.http_timeout_seconds)
            else:
                async with httpx.AsyncClient(
                    timeout=self.settings.http_timeout_seconds,
                    follow_redirects=True,
                    headers={"User-Agent": USER_AGENT},
                ) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"HTTP {e.response.status_code} from {url}", source=self.name
            ) from e
        except httpx.RequestError as e:
            raise UpstreamUnavailable(f"Request to {url} failed: {e}", source=self.name) from e

        return parse_active_storms(response.text)
