"""Forward geocoding of free-text location hints via Mapbox.

Queries always carry the country hint and, where the country is in
``COUNTRY_CODES``, a country filter, so a bare city name does not resolve
to a same-named place on another continent. Two names are known to come
back wrong even then and are corrected after resolution.
"""

import logging
import os
from dataclasses import dataclass
from typing import Protocol

import httpx
import yaml
from dotenv import load_dotenv

from data_models.geocode import GeocodeOutcome, GeocodeResult
from processing.country_codes import country_code
from processing.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

MAPBOX_GEOCODE_URL = "https://api.mapbox.com/search/geocode/v6/forward"


class GeocodeCache(Protocol):
    """Storage for resolved queries, keyed by normalized query string."""

    def get(self, key: str) -> GeocodeResult | None: ...

    def put(self, key: str, result: GeocodeResult) -> None: ...


class InMemoryGeocodeCache:
    """Process-lifetime cache. Entries are never evicted."""

    def __init__(self):
        self._entries: dict[str, GeocodeResult] = {}

    def get(self, key: str) -> GeocodeResult | None:
        return self._entries.get(key)

    def put(self, key: str, result: GeocodeResult) -> None:
        self._entries[key] = result

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class LocationCorrection:
    """Hard-coded fix for a name the geocoder resolves to the wrong place."""

    name: str
    country: str
    query: str
    expected_latitude: float
    expected_longitude: float
    tolerance_degrees: float
    latitude: float
    longitude: float
    canonical_country: str
    canonical_city: str

    def applies_to(self, query: str) -> bool:
        lowered = query.lower()
        return self.name in lowered and self.country in lowered

    def is_plausible(self, latitude: float, longitude: float) -> bool:
        return (
            abs(latitude - self.expected_latitude) <= self.tolerance_degrees
            and abs(longitude - self.expected_longitude) <= self.tolerance_degrees
        )


KNOWN_CORRECTIONS = (
    # Delhi, New York / Delhi, Louisiana
    LocationCorrection(
        name="delhi",
        country="india",
        query="Delhi, India",
        expected_latitude=28.6,
        expected_longitude=77.2,
        tolerance_degrees=5.0,
        latitude=28.6139,
        longitude=77.2090,
        canonical_country="India",
        canonical_city="Delhi",
    ),
    # Lombok village in Kalimantan
    LocationCorrection(
        name="lombok",
        country="indonesia",
        query="Lombok Island, Indonesia",
        expected_latitude=-8.65,
        expected_longitude=116.3,
        tolerance_degrees=2.0,
        latitude=-8.65,
        longitude=116.3249,
        canonical_country="Indonesia",
        canonical_city="Lombok",
    ),
)


def build_query(location_hint: str | None, country_hint: str | None = None) -> str:
    """Build the geocoder query for a location hint.

    Args:
        location_hint: Free-text location (city, landmark, "city, country")
        country_hint: Country the report mentions

    Returns:
        Query string, empty when there is nothing to look up
    """
    location = (location_hint or "").strip()
    country = (country_hint or "").strip()
    if country.lower() in ("unknown", "none", "n/a"):
        country = ""

    if not location:
        return country

    lowered = location.lower()
    for correction in KNOWN_CORRECTIONS:
        if correction.name in lowered and correction.country in country.lower():
            return correction.query

    if country and country.lower() not in lowered:
        return f"{location}, {country}"
    return location


def build_location_query(country: str | None, city: str | None = None) -> str:
    """Build a query from stored country and city fields."""
    return build_query(city, country) if city else build_query(country)


def cache_key(query: str) -> str:
    return query.strip().lower()


def _canonical_names(feature: dict) -> tuple[str | None, str | None]:
    """Pull canonical country and city from a v6 feature."""
    props = feature.get("properties", {}) or {}
    context = props.get("context", {}) or {}
    feature_type = props.get("feature_type")

    country = (context.get("country") or {}).get("name") or props.get("country")
    if not country and feature_type == "country":
        country = props.get("name")

    city = (context.get("place") or {}).get("name") or (context.get("locality") or {}).get("name")
    if not city and feature_type in ("place", "locality"):
        city = props.get("name")

    return country, city


class GeocodeNormalizer:
    """Resolves location hints to coordinates and canonical names."""

    def __init__(
        self,
        access_token: str | None = None,
        cache: GeocodeCache | None = None,
        client: httpx.Client | None = None,
        config_path: str = "configs/pipeline.yaml",
    ):
        """Initialize the normalizer.

        Args:
            access_token: Mapbox token. Defaults to MAPBOX_ACCESS_TOKEN env var.
            cache: Result cache (in-memory if None)
            client: Preconfigured HTTP client (tests inject a mock transport)
            config_path: Path to pipeline configuration

        Raises:
            ConfigurationError: If no access token is available
        """
        self.access_token = access_token or os.getenv("MAPBOX_ACCESS_TOKEN")
        if not self.access_token:
            raise ConfigurationError("MAPBOX_ACCESS_TOKEN not found in environment")

        config = self._load_config(config_path).get("geocoding", {})
        self.timeout_seconds = config.get("timeout_seconds", 10)
        self.place_types = config.get("types", "place,locality,region,country")
        self.base_url = config.get("base_url", MAPBOX_GEOCODE_URL)
        self.cache = cache if cache is not None else InMemoryGeocodeCache()
        self._client = client

    def _load_config(self, config_path: str) -> dict:
        """Load geocoding configuration."""
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                return yaml.safe_load(f) or {}
        return {
            "geocoding": {
                "timeout_seconds": 10,
                "types": "place,locality,region,country",
            },
        }

    @property
    def client(self) -> httpx.Client:
        """Lazy-load HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout_seconds)
        return self._client

    def _apply_corrections(self, result: GeocodeResult) -> GeocodeResult:
        for correction in KNOWN_CORRECTIONS:
            if not correction.applies_to(result.query):
                continue
            if correction.is_plausible(result.latitude, result.longitude):
                continue
            logger.warning(
                f"Geocoder put '{result.query}' at ({result.latitude}, {result.longitude}), "
                f"using known coordinates for {correction.canonical_city}"
            )
            result.latitude = correction.latitude
            result.longitude = correction.longitude
            result.canonical_country = correction.canonical_country
            result.canonical_city = correction.canonical_city
            result.corrected = True
        return result

    def _request(self, query: str, country_filter: str | None) -> GeocodeResult:
        params = {
            "q": query,
            "types": self.place_types,
            "language": "en",
            "autocomplete": "false",
            "limit": 1,
            "access_token": self.access_token,
        }
        if country_filter:
            params["country"] = country_filter.lower()

        try:
            response = self.client.get(self.base_url, params=params, timeout=self.timeout_seconds)
        except httpx.RequestError as e:
            logger.warning(f"Geocoding request failed for '{query}': {e}")
            return GeocodeResult(GeocodeOutcome.UNAVAILABLE, query=query, error=str(e))

        if response.status_code in (401, 403):
            raise ConfigurationError(f"Mapbox rejected the access token (HTTP {response.status_code})")
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Geocoder unavailable for '{query}': HTTP {response.status_code}")
            return GeocodeResult(
                GeocodeOutcome.UNAVAILABLE, query=query, error=f"HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            logger.error(f"Geocoder rejected '{query}': HTTP {response.status_code}")
            return GeocodeResult(
                GeocodeOutcome.NOT_FOUND, query=query, error=f"HTTP {response.status_code}"
            )

        try:
            features = response.json().get("features") or []
        except ValueError as e:
            return GeocodeResult(GeocodeOutcome.UNAVAILABLE, query=query, error=f"Invalid JSON: {e}")

        if not features:
            logger.info(f"No geocoding result for '{query}'")
            return GeocodeResult(GeocodeOutcome.NOT_FOUND, query=query)

        feature = features[0]
        coordinates = (feature.get("geometry") or {}).get("coordinates") or []
        if len(coordinates) < 2:
            return GeocodeResult(GeocodeOutcome.NOT_FOUND, query=query, error="Feature has no coordinates")

        longitude, latitude = float(coordinates[0]), float(coordinates[1])
        canonical_country, canonical_city = _canonical_names(feature)

        return GeocodeResult(
            GeocodeOutcome.RESOLVED,
            query=query,
            latitude=latitude,
            longitude=longitude,
            canonical_country=canonical_country,
            canonical_city=canonical_city,
        )

    def resolve(self, location_hint: str | None, country_hint: str | None = None) -> GeocodeResult:
        """Resolve a location hint to coordinates.

        Args:
            location_hint: Free-text location, e.g. "Khao San Road, Bangkok"
            country_hint: Country the report mentions

        Returns:
            GeocodeResult. ``unavailable`` results are not cached.
        """
        query = build_query(location_hint, country_hint)
        if not query:
            return GeocodeResult(GeocodeOutcome.NOT_FOUND, query="", error="Empty location")

        key = cache_key(query)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Geocode cache hit for '{query}'")
            return cached

        result = self._request(query, country_code(country_hint))
        if result.is_resolved:
            result = self._apply_corrections(result)

        if result.outcome != GeocodeOutcome.UNAVAILABLE:
            self.cache.put(key, result)
        return result

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()


# Singleton instance
_geocoder: GeocodeNormalizer | None = None


def get_geocoder() -> GeocodeNormalizer:
    """Get the singleton geocoder, backed by Redis when it is reachable."""
    global _geocoder
    if _geocoder is None:
        from cache.redis_cache import RedisGeocodeCache, get_cache

        redis_cache = get_cache()
        cache = RedisGeocodeCache(redis_cache) if redis_cache.is_connected else InMemoryGeocodeCache()
        _geocoder = GeocodeNormalizer(cache=cache)
    return _geocoder
