import os

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        return default


# Greater Santiago (minlon, minlat, maxlon, maxlat)
REGION_BBOX = (-71.20, -33.95, -70.35, -33.15)
DEFAULT_CENTER = (-33.45, -70.6667)


class Settings:
    def __init__(self) -> None:
        self.GOOGLE_PLACES_API_KEY: str | None = os.getenv("GOOGLE_PLACES_API_KEY") or None
        self.NOMINATIM_BASE_URL: str = os.getenv(
            "NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org"
        )
        self.GEOCODE_COUNTRY: str = os.getenv("GEOCODE_COUNTRY", "cl")
        self.GEOCODE_LANGUAGE: str = os.getenv("GEOCODE_LANGUAGE", "es")
        self.PROVIDER_TIMEOUT_SECONDS: float = _as_float(os.getenv("PROVIDER_TIMEOUT_SECONDS"), 5.0)
        self.SEARCH_DEBOUNCE_SECONDS: float = _as_float(os.getenv("SEARCH_DEBOUNCE_SECONDS"), 0.3)
        self.REVERSE_DEBOUNCE_SECONDS: float = _as_float(os.getenv("REVERSE_DEBOUNCE_SECONDS"), 0.2)
        self.MAX_CANDIDATES: int = _as_int(os.getenv("MAX_CANDIDATES"), 12)
        self.SCORE_PRIMARY_CANDIDATES: bool = _as_bool(os.getenv("SCORE_PRIMARY_CANDIDATES"), False)
        self.DEFAULT_LOCALITY: str = os.getenv("DEFAULT_LOCALITY", "Santiago")
        self.REVERSE_SENTINEL_LABEL: str = os.getenv("REVERSE_SENTINEL_LABEL", "Mi ubicación")


settings = Settings()
