"""Google Places (v1) client: text search and nearby search."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from whatsbot.core.errors import MissingCredentials
from whatsbot.services.base import HttpService

DETAIL_FIELDS = (
    "places.displayName,places.id,places.rating,places.formattedAddress,"
    "places.nationalPhoneNumber,places.websiteUri,places.location"
)

CATEGORY_TYPES = {
    "food": ["restaurant", "meal_takeaway", "bakery", "cafe"],
    "fashion": ["clothing_store", "shoe_store", "shopping_mall"],
    "groceries": ["grocery_store", "supermarket", "convenience_store"],
    "events": ["amusement_park", "aquarium", "art_gallery", "bowling_alley", "movie_theater",
               "museum", "night_club", "park", "tourist_attraction", "zoo"],
}


@dataclass(frozen=True, slots=True)
class Place:
    name: str
    formatted_address: str = ""
    place_id: str = ""
    rating: Optional[float] = None
    phone: str = ""
    website: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Place:
        location = data.get("location") or {}
        display = data.get("displayName") or {}
        return cls(
            name=display.get("text", "") if isinstance(display, dict) else str(display),
            formatted_address=data.get("formattedAddress", ""),
            place_id=data.get("id", ""),
            rating=data.get("rating"),
            phone=data.get("nationalPhoneNumber", ""),
            website=data.get("websiteUri", ""),
            latitude=location.get("latitude"),
            longitude=location.get("longitude"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "formatted_address": self.formatted_address,
            "place_id": self.place_id,
            "rating": self.rating,
            "phone": self.phone,
            "website": self.website,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


class PlacesClient(HttpService):
    def __init__(self, base_url: str = "https://places.googleapis.com/v1", timeout: float = 10.0,
                 client: httpx.AsyncClient | None = None):
        super().__init__(timeout=timeout, client=client)
        self._base_url = base_url.rstrip("/")

    @property
    def service_name(self) -> str:
        return "places"

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        if not api_key:
            raise MissingCredentials("Google Maps API key is not configured")
        return {"X-Goog-Api-Key": api_key, "X-Goog-FieldMask": DETAIL_FIELDS}

    async def search_by_name(self, query: str, api_key: str, region: str = "sg",
                             max_results: int = 5) -> list[Place]:
        response = await self._request(
            "POST",
            f"{self._base_url}/places:searchText",
            headers=self._headers(api_key),
            json={"textQuery": query, "regionCode": region.upper(), "maxResultCount": max_results},
        )
        return [Place.from_api(p) for p in response.json().get("places", [])]

    async def search_nearby(self, latitude: float, longitude: float, category: str, api_key: str,
                            radius: float = 1000.0, max_results: int = 10) -> list[Place]:
        included = CATEGORY_TYPES.get(category, ["restaurant", "clothing_store", "supermarket"])
        response = await self._request(
            "POST",
            f"{self._base_url}/places:searchNearby",
            headers=self._headers(api_key),
            json={
                "includedTypes": included,
                "maxResultCount": max_results,
                "locationRestriction": {
                    "circle": {
                        "center": {"latitude": float(latitude), "longitude": float(longitude)},
                        "radius": radius,
                    }
                },
            },
        )
        return [Place.from_api(p) for p in response.json().get("places", [])]
