import asyncio
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
from loguru import logger
from pydantic import BaseModel

from onboarding.errors import BackendUnavailableError
from onboarding.state import RegistrationRecord

PLACES_AUTOCOMPLETE_URL = "https://maps.googleapis.com/maps/api/place/autocomplete/json"
PLACE_DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"


class PlaceSuggestion(BaseModel):
    place_id: str
    description: str


class PlaceAddress(BaseModel):
    street_number: str = ""
    route: str = ""
    premise: str = ""
    subpremise: str = ""
    locality: str = ""
    administrative_area_level_1: str = ""
    administrative_area_level_2: str = ""
    country: str = ""
    country_code: str = ""
    postal_code: str = ""

    @property
    def line1(self) -> str:
        street = " ".join(p for p in (self.street_number, self.route) if p)
        return street or self.premise

    @property
    def line2(self) -> str:
        if self.subpremise:
            return self.subpremise
        # premise is only a second line when a street address exists
        if self.premise and (self.street_number or self.route):
            return self.premise
        return ""


def parse_address_components(components: Optional[Iterable[Any]]) -> PlaceAddress:
    """Map Google Places ``address_components`` onto a ``PlaceAddress``."""
    parsed: Dict[str, str] = {}
    if not isinstance(components, (list, tuple)):
        logger.warning("Invalid address components provided")
        return PlaceAddress()

    for component in components:
        if not isinstance(component, dict) or not isinstance(component.get("types"), list):
            logger.warning(f"Skipping malformed address component: {component!r}")
            continue
        types = component["types"]
        long_name = component.get("long_name") or ""
        short_name = component.get("short_name") or ""

        for kind in (
            "street_number",
            "route",
            "premise",
            "subpremise",
            "locality",
            "administrative_area_level_1",
            "administrative_area_level_2",
            "postal_code",
        ):
            if kind in types:
                parsed[kind] = long_name
        if "country" in types:
            parsed["country"] = long_name
            parsed["country_code"] = short_name

    return PlaceAddress(**parsed)


def apply_place_address(record: RegistrationRecord, place: PlaceAddress) -> RegistrationRecord:
    """Write a looked-up address into the record's address fields."""
    return record.model_copy(
        update={
            "address_line1": place.line1 or None,
            "address_line2": place.line2 or None,
            "city": place.locality or place.administrative_area_level_2 or None,
            "state_or_province": place.administrative_area_level_1 or None,
            "postal_code": place.postal_code or None,
            "country_code": place.country_code.upper() or None,
        }
    )


def format_address(record: RegistrationRecord) -> str:
    parts = (
        record.address_line1,
        record.address_line2,
        record.city,
        record.state_or_province,
        record.postal_code,
        record.country_code,
    )
    return ", ".join(p.strip() for p in parts if p and p.strip())


class PlacesClient:
    def __init__(
        self,
        api_key: Optional[str],
        *,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        autocomplete_url: str = PLACES_AUTOCOMPLETE_URL,
        details_url: str = PLACE_DETAILS_URL,
    ) -> None:
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.autocomplete_url = autocomplete_url
        self.details_url = details_url
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get_json(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        if not self.api_key:
            raise BackendUnavailableError("Google Maps API key not configured")

        session = await self._get_session()
        try:
            async with session.get(url, params={**params, "key": self.api_key}) as resp:
                if resp.status != 200:
                    raise BackendUnavailableError(f"Google Places API error: {resp.status}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise BackendUnavailableError(f"Google Places API unreachable: {exc}") from exc

        if data.get("status") == "REQUEST_DENIED":
            raise BackendUnavailableError("Google Maps API key is invalid or access is denied")
        return data

    async def autocomplete(self, query: str, *, country: Optional[str] = None) -> List[PlaceSuggestion]:
        if len(query.strip()) < 3:
            return []
        params = {"input": query.strip(), "types": "address", "language": "en"}
        if country:
            params["components"] = f"country:{country.lower()}"
        data = await self._get_json(self.autocomplete_url, params)
        return [
            PlaceSuggestion(place_id=p["place_id"], description=p.get("description", ""))
            for p in data.get("predictions", [])
            if p.get("place_id")
        ]

    async def place_details(self, place_id: str) -> PlaceAddress:
        data = await self._get_json(
            self.details_url,
            {"place_id": place_id, "fields": "address_components,formatted_address"},
        )
        result = data.get("result") or {}
        return parse_address_components(result.get("address_components"))
