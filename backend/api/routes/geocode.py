"""
Geocoding API routes.

Forward search, details lookup, reverse resolve and explicit geocode for the
location-edit screen.
"""
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from domain.errors import GeocodeNotFound, StaleResponse
from domain.models import ReferencePoint
from services.address_search import get_default_engine
from services.reverse_resolver import get_default_reverse_resolver

router = APIRouter()


class CandidateResponse(BaseModel):
    label: str
    source: str
    lat: Optional[float] = None
    lon: Optional[float] = None
    score: Optional[float] = None
    external_id: Optional[str] = None


class CoordinatesResponse(BaseModel):
    lat: float
    lon: float


class ReverseResponse(BaseModel):
    label: str


class GeocodeRequest(BaseModel):
    text: str
    lat: Optional[float] = None
    lon: Optional[float] = None


class GeocodeResponse(BaseModel):
    lat: float
    lon: float
    formatted: str
    external_id: Optional[str] = None


def _reference_point(lat: Optional[float], lon: Optional[float]) -> Optional[ReferencePoint]:
    if lat is None or lon is None:
        return None
    return ReferencePoint(lat=lat, lon=lon)


@router.get("/search", response_model=List[CandidateResponse])
async def search_addresses(
    q: str = Query(..., min_length=1),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
):
    """Ranked address candidates for free text. Provider trouble yields an empty list."""
    engine = get_default_engine()
    candidates = await engine.search(q, _reference_point(lat, lon))
    return [
        CandidateResponse(
            label=c.label,
            source=c.source.value,
            lat=c.lat,
            lon=c.lon,
            score=c.score,
            external_id=c.external_id,
        )
        for c in candidates
    ]


@router.get("/details/{external_id}", response_model=Optional[CoordinatesResponse])
async def candidate_details(external_id: str):
    result = await get_default_engine().details(external_id)
    if result is None:
        return None
    return CoordinatesResponse(lat=result.lat, lon=result.lon)


@router.get("/reverse", response_model=ReverseResponse)
async def reverse_geocode(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
):
    label = await get_default_reverse_resolver().resolve(lat, lon)
    return ReverseResponse(label=label)


@router.post("/geocode", response_model=GeocodeResponse)
async def geocode_address(request: GeocodeRequest):
    """Explicit submit: 404 when no provider knows the address."""
    engine = get_default_engine()
    try:
        result = await engine.geocode(request.text, _reference_point(request.lat, request.lon))
    except (GeocodeNotFound, StaleResponse):
        raise HTTPException(status_code=404, detail="Address not found")
    return GeocodeResponse(
        lat=result.lat,
        lon=result.lon,
        formatted=result.formatted,
        external_id=result.external_id,
    )
