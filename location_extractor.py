# location_extractor.py
import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError

import config
from geocoding_service import geocoder

logger = logging.getLogger(__name__)

# Tried in order; the first pattern that matches anywhere in the text wins.
LOCATION_PATTERNS = (
    re.compile(r'\b(?:near|at|on|in|around|close to|by)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)'),
    re.compile(r'([A-Z][a-z]+\s+(?:Street|Road|Avenue|Lane|Drive|Park|Square|Plaza|Circle|Boulevard|Highway))', re.IGNORECASE),
    re.compile(r'([A-Z]{2,}\s+\d{4,6})'),
    re.compile(r'(\d+\s+[A-Z][a-z]+\s+(?:Street|Road|Avenue|Lane|Drive))', re.IGNORECASE),
)
PREPOSITION_PREFIX = re.compile(r'^(?:near|at|on|in|around|close to|by)\s+', re.IGNORECASE)


def extract_location_from_text(text):
    """Pull the first place-like phrase out of a message, or None"""
    if not text or not isinstance(text, str):
        return None

    for pattern in LOCATION_PATTERNS:
        match = pattern.search(text)
        if match:
            location = PREPOSITION_PREFIX.sub('', match.group(0)).strip()
            if location:
                return location

    return None


def get_device_location(device_location, timeout=None):
    """Resolve coordinates reported by the user's device.

    `device_location` is either a mapping with lat/lng (and optionally
    accuracy) or a zero-argument callable returning one. Callables are
    given at most `timeout` seconds; anything that fails or times out
    counts as "no location".
    """
    if device_location is None:
        return None

    timeout = config.GEOLOCATION_TIMEOUT if timeout is None else timeout

    if callable(device_location):
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(device_location)
        try:
            device_location = future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning("⚠️ Device location timed out after %ss", timeout)
            return None
        except Exception as e:
            logger.warning("⚠️ Device location unavailable: %s", e)
            return None
        finally:
            executor.shutdown(wait=False)

    if not device_location:
        return None

    try:
        lat = float(device_location['lat'])
        lng = float(device_location['lng'])
    except (KeyError, TypeError, ValueError):
        logger.warning("⚠️ Ignoring malformed device location: %r", device_location)
        return None

    return {
        'lat': lat,
        'lng': lng,
        'source': 'browser',
        'accuracy': device_location.get('accuracy'),
    }


def extract_location_info(text, device_location=None, geocoding_service=None, timeout=None):
    """Work out where an issue is: geocode a phrase from the text, else use the device position"""
    geocoding_service = geocoding_service or geocoder
    location_text = extract_location_from_text(text)

    if location_text:
        geocoded = geocoding_service.geocode(location_text)
        if geocoded:
            return {
                'lat': geocoded['lat'],
                'lng': geocoded['lng'],
                'source': 'text',
                'location_text': location_text,
                'display_name': geocoded.get('display_name'),
                'address': geocoded.get('address') or {},
            }
        logger.info("📍 Could not geocode '%s', trying device location", location_text)

    return get_device_location(device_location, timeout=timeout)
