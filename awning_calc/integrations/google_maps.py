"""
Google Maps Distance Matrix client used to fill drive time and mileage.
"""
import logging
from typing import Optional

import requests

DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
METERS_PER_MILE = 1609.34

logger = logging.getLogger(__name__)


class DistanceLookupError(Exception):
    """Raised when a distance cannot be computed between two addresses"""

    def __init__(self, message, status_code=500):
        super().__init__(message)
        self.status_code = status_code


class GoogleMapsClient:
    """Thin wrapper around the Distance Matrix endpoint, imperial units."""

    def __init__(self, api_key: Optional[str], session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.session = session or requests.Session()

    def distance(self, origin: str, destination: str) -> dict:
        """One-way and round-trip miles/hours between two addresses."""
        if not self.api_key:
            raise DistanceLookupError("Google Maps API key not configured", 500)

        params = {
            'origins': origin,
            'destinations': destination,
            'units': 'imperial',
            'key': self.api_key,
        }
        logger.info("Distance Matrix lookup %s -> %s", origin, destination)
        try:
            response = self.session.get(DISTANCE_MATRIX_URL, params=params)
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Distance Matrix request failed: %s", e)
            raise DistanceLookupError("Failed to calculate distance", 500) from e

        if data.get('status') != 'OK':
            logger.error("Google Maps API error: %s", data)
            raise DistanceLookupError(f"Google Maps API error: {data.get('status')}", 500)

        rows = data.get('rows') or [{}]
        elements = rows[0].get('elements') or [{}]
        element = elements[0]
        if element.get('status') != 'OK':
            raise DistanceLookupError("Could not calculate distance between addresses", 400)

        miles = element['distance']['value'] / METERS_PER_MILE
        hours = element['duration']['value'] / 3600

        return {
            'origin': (data.get('origin_addresses') or [origin])[0],
            'destination': (data.get('destination_addresses') or [destination])[0],
            'distance': {
                'text': element['distance'].get('text'),
                'miles': round(miles, 1),
                'round_trip_miles': round(miles * 2, 1),
            },
            'duration': {
                'text': element['duration'].get('text'),
                'hours': round(hours, 2),
                'round_trip_hours': round(hours * 2, 2),
            },
        }
