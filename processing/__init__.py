"""Processing modules for the ScamAtlas aggregator."""

from processing.aggregator import Aggregator, AveragingPolicy, location_key
from processing.classifier import ScamClassifier, get_classifier
from processing.comment_analysis import CommentAnalyzer, run_comment_analysis
from processing.country_codes import COUNTRY_CODES, country_code
from processing.enrichment import EnrichmentEngine, ProcessingResult, run_enrichment
from processing.errors import ConfigurationError, TransientEnrichmentError
from processing.geocoding import GeocodeNormalizer, InMemoryGeocodeCache, build_query, get_geocoder
from processing.location_backfill import LocationBackfill

__all__ = [
    "Aggregator",
    "AveragingPolicy",
    "location_key",
    "ScamClassifier",
    "get_classifier",
    "CommentAnalyzer",
    "run_comment_analysis",
    "COUNTRY_CODES",
    "country_code",
    "EnrichmentEngine",
    "ProcessingResult",
    "run_enrichment",
    "ConfigurationError",
    "TransientEnrichmentError",
    "GeocodeNormalizer",
    "InMemoryGeocodeCache",
    "build_query",
    "get_geocoder",
    "LocationBackfill",
]
