# config.py
import os


def _get_env_float(key, default):
    """Get float value from environment variable with fallback."""
    try:
        return float(os.environ.get(key, default))
    except (ValueError, TypeError):
        return default


def _get_env_int(key, default):
    """Get integer value from environment variable with fallback."""
    try:
        return int(os.environ.get(key, default))
    except (ValueError, TypeError):
        return default


def _get_env_list(key, default, separator=','):
    """Get list value from environment variable with fallback."""
    value = os.environ.get(key)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(separator) if item.strip()]


# Storage
DATABASE_PATH = os.environ.get('DATABASE_PATH', 'civicbot.db')
MAX_SAVED_CONVERSATIONS = _get_env_int('MAX_SAVED_CONVERSATIONS', 10)

# Geocoding
NOMINATIM_URL = os.environ.get('NOMINATIM_URL', 'https://nominatim.openstreetmap.org/search')
GOOGLE_GEOCODING_URL = 'https://maps.googleapis.com/maps/api/geocode/json'
GOOGLE_GEOCODING_API_KEY = os.environ.get('GOOGLE_GEOCODING_API_KEY', '')
GEOCODER_USER_AGENT = os.environ.get('GEOCODER_USER_AGENT', 'WeFix/1.0 (Community Issue Reporting Platform)')
GEOCODING_TIMEOUT = _get_env_float('GEOCODING_TIMEOUT', 10.0)
GEOCODING_DELAY = _get_env_float('GEOCODING_DELAY', 1.0)  # Nominatim asks for <= 1 request/second
GEOLOCATION_TIMEOUT = _get_env_float('GEOLOCATION_TIMEOUT', 10.0)

# Image classification
MODEL_PATHS = _get_env_list('MODEL_PATHS', [
    'model/model.h5',
    './model/model.keras',
    'public/model/model.h5',
])
IMAGE_SIZE = _get_env_int('IMAGE_SIZE', 224)
IMAGE_DOWNLOAD_TIMEOUT = _get_env_float('IMAGE_DOWNLOAD_TIMEOUT', 10.0)

# Search
SIMILARITY_CANDIDATE_POOL = _get_env_int('SIMILARITY_CANDIDATE_POOL', 50)
NEARBY_CANDIDATE_POOL = _get_env_int('NEARBY_CANDIDATE_POOL', 100)

# Server
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
PORT = _get_env_int('PORT', 5000)


def as_dict():
    """Snapshot of the settings, used as the Flask app's base config"""
    return {
        'DATABASE_PATH': DATABASE_PATH,
        'MAX_SAVED_CONVERSATIONS': MAX_SAVED_CONVERSATIONS,
        'NOMINATIM_URL': NOMINATIM_URL,
        'GOOGLE_GEOCODING_API_KEY': GOOGLE_GEOCODING_API_KEY,
        'GEOCODER_USER_AGENT': GEOCODER_USER_AGENT,
        'GEOCODING_TIMEOUT': GEOCODING_TIMEOUT,
        'GEOCODING_DELAY': GEOCODING_DELAY,
        'GEOLOCATION_TIMEOUT': GEOLOCATION_TIMEOUT,
        'MODEL_PATHS': list(MODEL_PATHS),
        'IMAGE_SIZE': IMAGE_SIZE,
        'IMAGE_DOWNLOAD_TIMEOUT': IMAGE_DOWNLOAD_TIMEOUT,
        'SIMILARITY_CANDIDATE_POOL': SIMILARITY_CANDIDATE_POOL,
        'NEARBY_CANDIDATE_POOL': NEARBY_CANDIDATE_POOL,
        'LOG_LEVEL': LOG_LEVEL,
        'PORT': PORT,
    }
