# geocoding_service.py
import logging
import time

import requests

import config

logger = logging.getLogger(__name__)


class GeocodingService:
    def __init__(self, nominatim_url=None, user_agent=None, google_api_key=None,
                 timeout=None, delay=None, session=None):
        self.nominatim_url = nominatim_url or config.NOMINATIM_URL
        self.user_agent = user_agent or config.GEOCODER_USER_AGENT
        self.google_api_key = config.GOOGLE_GEOCODING_API_KEY if google_api_key is None else google_api_key
        self.timeout = config.GEOCODING_TIMEOUT if timeout is None else timeout
        self.delay = config.GEOCODING_DELAY if delay is None else delay
        self.session = session or requests.Session()
        self.cache = {}  # Simple cache to avoid duplicate lookups

    def geocode(self, location_text):
        """Convert location text to {lat, lng, display_name, address} or None"""

        if not location_text or location_text.lower().strip() in ['unknown', 'none', '']:
            return None

        cache_key = location_text.lower().strip()
        if cache_key in self.cache:
            return self.cache[cache_key]

        # Try OpenStreetMap Nominatim first (free)
        result = self._geocode_nominatim(location_text)

        # If that fails, try Google Geocoding as fallback
        if result is None and self.google_api_key:
            result = self._geocode_google(location_text)

        self.cache[cache_key] = result
        return result

    def _geocode_nominatim(self, location_text):
        """Use OpenStreetMap Nominatim (free)"""
        params = {
            'q': location_text,
            'format': 'json',
            'limit': 1,
            'addressdetails': 1
        }
        headers = {
            'User-Agent': self.user_agent,
            'Accept-Language': 'en'
        }

        # Be respectful with rate limiting
        if self.delay:
            time.sleep(self.delay)

        try:
            response = self.session.get(self.nominatim_url, params=params, headers=headers, timeout=self.timeout)
            if response.status_code == 200:
                data = response.json()
                if data:
                    place = data[0]
                    lat = float(place['lat'])
                    lng = float(place['lon'])
                    logger.info("📍 Geocoded '%s' to %s, %s via OSM", location_text, lat, lng)
                    return {
                        'lat': lat,
                        'lng': lng,
                        'display_name': place.get('display_name', location_text),
                        'address': place.get('address') or {},
                    }
        except (requests.RequestException, ValueError, KeyError, IndexError) as e:
            logger.warning("❌ OSM geocoding error: %s", e)
            return None

        logger.info("❌ OSM geocoding failed for: %s", location_text)
        return None

    def _geocode_google(self, location_text):
        """Use Google Geocoding API as fallback"""
        params = {
            'address': location_text,
            'key': self.google_api_key
        }

        try:
            response = self.session.get(config.GOOGLE_GEOCODING_URL, params=params, timeout=self.timeout)
            if response.status_code == 200:
                data = response.json()
                if data.get('status') == 'OK' and data.get('results'):
                    first = data['results'][0]
                    location = first['geometry']['location']
                    logger.info("📍 Geocoded '%s' to %s, %s via Google", location_text, location['lat'], location['lng'])
                    return {
                        'lat': float(location['lat']),
                        'lng': float(location['lng']),
                        'display_name': first.get('formatted_address', location_text),
                        'address': {},
                    }
        except (requests.RequestException, ValueError, KeyError, IndexError) as e:
            logger.warning("❌ Google geocoding error: %s", e)

        return None


# Global instance
geocoder = GeocodingService()
