from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from app.core.config import Settings
from app.core.exceptions import ProviderUnavailable
from app.schemas.distance import Coordinate, TravelEstimate, TravelMode
from app.services.geo import haversine_meters, synthetic_seconds

logger = logging.getLogger(__name__)


# ── Interface ─────────────────────────────────────────────────────────────────

class RoutingProvider(ABC):
    """Computes distance and travel time for one origin → destination leg."""

    name: str = "abstract"
    # Whether rows this provider wrote are straight-line estimates; None when
    # that cannot be told from the row (mixed primary/fallback writes).
    stored_approximate: Optional[bool] = False

    @abstractmethod
    async def compute(
        self,
        origin: Coordinate,
        destination: Coordinate,
        mode: TravelMode,
    ) -> TravelEstimate:
        """Raise ProviderUnavailable if no estimate can be produced."""


# ── Haversine fallback ────────────────────────────────────────────────────────

class HaversineProvider(RoutingProvider):
    """
    Straight-line stand-in for a real router.
    Distance is rounded to the metre first, time is derived from it.
    """

    name = "haversine"
    stored_approximate = True

    def __init__(self, walking_speed_mps: float = 5000 / 3600, driving_speed_mps: float = 30000 / 3600):
        self.speeds = {
            TravelMode.walking: walking_speed_mps,
            TravelMode.driving: driving_speed_mps,
        }

    async def compute(self, origin, destination, mode):
        distance = round(haversine_meters(origin, destination))
        return TravelEstimate(
            distance_meters=distance,
            time_seconds=synthetic_seconds(distance, self.speeds[mode]),
            approximate=True,
        )


# ── HTTP providers ────────────────────────────────────────────────────────────

class HttpRoutingProvider(RoutingProvider):
    """Shared plumbing: one AsyncClient per call, errors mapped to ProviderUnavailable."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def compute(self, origin, destination, mode):
        try:
            return await self._fetch(origin, destination, mode)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(self.name, f"{type(exc).__name__}: {exc}") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderUnavailable(self.name, "unexpected response shape") from exc

    @abstractmethod
    async def _fetch(
        self,
        origin: Coordinate,
        destination: Coordinate,
        mode: TravelMode,
    ) -> TravelEstimate:
        ...

    def _check_status(self, resp: httpx.Response) -> None:
        if resp.status_code != 200:
            raise ProviderUnavailable(self.name, f"HTTP {resp.status_code}")


class TomTomProvider(HttpRoutingProvider):
    """TomTom Routing API, live traffic, fastest route."""

    name = "tomtom"
    _travel_modes = {TravelMode.driving: "car", TravelMode.walking: "pedestrian"}

    async def _fetch(self, origin, destination, mode):
        origin_str = f"{origin.latitude},{origin.longitude}"
        dest_str = f"{destination.latitude},{destination.longitude}"
        url = f"https://api.tomtom.com/routing/1/calculateRoute/{origin_str}:{dest_str}/json"

        async with self._client() as client:
            resp = await client.get(url, params={
                "key": self.api_key,
                "travelMode": self._travel_modes[mode],
                "traffic": "true",
                "routeType": "fastest",
            })
        self._check_status(resp)

        summary = resp.json()["routes"][0]["summary"]
        return TravelEstimate(
            distance_meters=round(summary["lengthInMeters"]),
            time_seconds=round(summary["travelTimeInSeconds"]),
        )


class OpenRouteServiceProvider(HttpRoutingProvider):
    name = "openrouteservice"
    _profiles = {TravelMode.driving: "driving-car", TravelMode.walking: "foot-walking"}

    async def _fetch(self, origin, destination, mode):
        async with self._client() as client:
            resp = await client.post(
                f"https://api.openrouteservice.org/v2/directions/{self._profiles[mode]}",
                json={"coordinates": [
                    [origin.longitude, origin.latitude],
                    [destination.longitude, destination.latitude],
                ]},
                headers={"Authorization": self.api_key},
            )
        self._check_status(resp)

        summary = resp.json()["routes"][0]["summary"]
        return TravelEstimate(
            distance_meters=round(summary["distance"]),
            time_seconds=round(summary["duration"]),
        )


class MapboxProvider(HttpRoutingProvider):
    name = "mapbox"
    _profiles = {TravelMode.driving: "driving", TravelMode.walking: "walking"}

    async def _fetch(self, origin, destination, mode):
        coords = f"{origin.longitude},{origin.latitude};{destination.longitude},{destination.latitude}"
        async with self._client() as client:
            resp = await client.get(
                f"https://api.mapbox.com/directions/v5/mapbox/{self._profiles[mode]}/{coords}",
                params={"access_token": self.api_key, "overview": "false"},
            )
        self._check_status(resp)

        route = resp.json()["routes"][0]
        return TravelEstimate(
            distance_meters=round(route["distance"]),
            time_seconds=round(route["duration"]),
        )


class GoogleDistanceMatrixProvider(HttpRoutingProvider):
    """Google Distance Matrix API, one origin and one destination per call."""

    name = "google"
    url = "https://maps.googleapis.com/maps/api/distancematrix/json"

    async def _fetch(self, origin, destination, mode):
        async with self._client() as client:
            resp = await client.get(self.url, params={
                "origins": f"{origin.latitude},{origin.longitude}",
                "destinations": f"{destination.latitude},{destination.longitude}",
                "mode": mode.value,
                "key": self.api_key,
            })
        self._check_status(resp)

        data = resp.json()
        # OVER_QUERY_LIMIT, REQUEST_DENIED, ... arrive with HTTP 200
        if data.get("status") != "OK":
            raise ProviderUnavailable(self.name, f"status {data.get('status')}")
        element = data["rows"][0]["elements"][0]
        if element.get("status") != "OK":
            raise ProviderUnavailable(self.name, f"element status {element.get('status')}")
        return TravelEstimate(
            distance_meters=element["distance"]["value"],
            time_seconds=element["duration"]["value"],
        )


# ── Degraded mode ─────────────────────────────────────────────────────────────

class FallbackRoutingProvider(RoutingProvider):
    """Answers from `fallback` (flagged approximate) whenever `primary` is unavailable."""

    stored_approximate = None

    def __init__(self, primary: RoutingProvider, fallback: RoutingProvider):
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    async def compute(self, origin, destination, mode):
        try:
            return await self.primary.compute(origin, destination, mode)
        except ProviderUnavailable as exc:
            logger.warning(
                "Routing via %s failed (%s); falling back to %s",
                self.primary.name, exc.reason, self.fallback.name,
            )
        estimate = await self.fallback.compute(origin, destination, mode)
        return estimate.model_copy(update={"approximate": True})


# ── Factory ───────────────────────────────────────────────────────────────────

_HTTP_PROVIDERS: dict[str, type[HttpRoutingProvider]] = {
    "tomtom": TomTomProvider,
    "openrouteservice": OpenRouteServiceProvider,
    "mapbox": MapboxProvider,
    "google": GoogleDistanceMatrixProvider,
}


def build_routing_provider(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RoutingProvider:
    haversine = HaversineProvider(
        walking_speed_mps=settings.WALKING_SPEED_MPS,
        driving_speed_mps=settings.DRIVING_SPEED_MPS,
    )
    name = settings.ROUTING_PROVIDER.lower()
    if name == "haversine":
        return haversine

    provider_cls = _HTTP_PROVIDERS.get(name)
    if provider_cls is None:
        raise ValueError(f"Unknown routing provider: {settings.ROUTING_PROVIDER}")

    if not settings.ROUTING_API_KEY:
        logger.warning(
            "ROUTING_API_KEY not set for %s; using straight-line distances", name
        )
        return haversine

    provider = provider_cls(
        api_key=settings.ROUTING_API_KEY,
        timeout=settings.ROUTING_TIMEOUT_SECONDS,
        transport=transport,
    )
    if settings.ROUTING_FALLBACK_TO_HAVERSINE:
        return FallbackRoutingProvider(provider, haversine)
    return provider
