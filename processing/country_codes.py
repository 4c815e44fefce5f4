"""Country name to ISO 3166-1 alpha-2 code table used to narrow geocoding."""

COUNTRY_CODES: dict[str, str] = {
    # Americas
    "united states": "US",
    "usa": "US",
    "us": "US",
    "mexico": "MX",
    "canada": "CA",
    "brazil": "BR",
    "argentina": "AR",
    "peru": "PE",
    # Europe
    "united kingdom": "GB",
    "uk": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "ireland": "IE",
    "france": "FR",
    "germany": "DE",
    "italy": "IT",
    "spain": "ES",
    "portugal": "PT",
    "greece": "GR",
    "netherlands": "NL",
    "czechia": "CZ",
    "czech republic": "CZ",
    # Africa and Middle East
    "egypt": "EG",
    "morocco": "MA",
    "kenya": "KE",
    "south africa": "ZA",
    "rwanda": "RW",
    "nigeria": "NG",
    "united arab emirates": "AE",
    "uae": "AE",
    "turkey": "TR",
    "türkiye": "TR",
    "turkiye": "TR",
    "qatar": "QA",
    "saudi arabia": "SA",
    # Asia and Oceania
    "india": "IN",
    "indonesia": "ID",
    "thailand": "TH",
    "vietnam": "VN",
    "viet nam": "VN",
    "singapore": "SG",
    "malaysia": "MY",
    "philippines": "PH",
    "china": "CN",
    "japan": "JP",
    "south korea": "KR",
    "korea": "KR",
    "australia": "AU",
    "new zealand": "NZ",
}


def country_code(country: str | None) -> str | None:
    """Look up the two-letter code for a free-text country name."""
    if not country:
        return None
    return COUNTRY_CODES.get(country.strip().lower())
