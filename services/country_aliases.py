"""Maps colloquial country names to the names stored in rollups."""

COUNTRY_ALIASES = {
    "turkey": "Türkiye",
    "turkiye": "Türkiye",
    "china": "People's Republic of China",
    "korea": "South Korea",
    "usa": "United States",
    "us": "United States",
    "america": "United States",
    "uk": "United Kingdom",
    "britain": "United Kingdom",
    "england": "United Kingdom",
    "uae": "United Arab Emirates",
    "emirates": "United Arab Emirates",
    "macedonia": "North Macedonia",
    "czechia": "Czech Republic",
    "burma": "Myanmar",
    "ceylon": "Sri Lanka",
    "holland": "Netherlands",
    "siam": "Thailand",
}


def resolve_country_alias(country: str) -> str:
    """Return the canonical name for a country alias, or the input stripped.

    Args:
        country: Country name as typed by a user

    Returns:
        Canonical country name
    """
    cleaned = country.strip()
    return COUNTRY_ALIASES.get(cleaned.lower(), cleaned)
