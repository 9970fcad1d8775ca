"""
Pytest configuration and shared fixtures for the WeFix assistant tests
"""

import os
import sys
from unittest.mock import Mock

import pytest

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT_DIR not in sys.path:
    sys.path.append(ROOT_DIR)

from database_manager import DatabaseManager  # noqa: E402
from image_classifier import ImageClassifier  # noqa: E402
from issue_pipeline import IssuePipeline  # noqa: E402
from points_system import PointsSystem  # noqa: E402
from similar_issues import SimilarIssueFinder  # noqa: E402

SAMPLE_ISSUES = [
    {
        'title': 'Large pothole on Oak Road',
        'description': 'Large pothole on Oak Road causing damage to cars',
        'ai_category': 'Road Damage',
        'ai_priority': 'High',
        'latitude': 40.7128,
        'longitude': -74.0060,
    },
    {
        'title': 'Overflowing garbage bins',
        'description': 'Garbage bins overflowing with trash near the market',
        'ai_category': 'Garbage',
        'ai_priority': 'Medium',
        'latitude': 40.7306,
        'longitude': -73.9352,
    },
    {
        'title': 'Streetlight out',
        'description': 'The streetlight lamp on Pine Lane has been dark for a week',
        'ai_category': 'Streetlight',
        'ai_priority': 'Low',
    },
]


@pytest.fixture
def db_manager(tmp_path):
    """Fresh SQLite database per test"""
    return DatabaseManager(str(tmp_path / 'test.db'))


@pytest.fixture
def seeded_db(db_manager):
    """Database with a few issues already reported"""
    for issue in SAMPLE_ISSUES:
        db_manager.create_issue(issue)
    return db_manager


@pytest.fixture
def points_system(db_manager):
    return PointsSystem(db_manager)


@pytest.fixture
def mock_geocoder():
    """Geocoder that never touches the network"""
    geocoder = Mock()
    geocoder.geocode = Mock(return_value=None)
    return geocoder


@pytest.fixture
def offline_image_classifier(tmp_path):
    """Image classifier pointed at a model file that doesn't exist"""
    return ImageClassifier(model_paths=[str(tmp_path / 'missing' / 'model.h5')])


@pytest.fixture
def pipeline(db_manager, mock_geocoder, offline_image_classifier):
    return IssuePipeline(
        similar_finder=SimilarIssueFinder(db_manager),
        geocoding_service=mock_geocoder,
        image_classifier=offline_image_classifier,
    )


@pytest.fixture
def png_bytes():
    """A small solid-colour PNG"""
    import io
    from PIL import Image

    buffer = io.BytesIO()
    Image.new('RGB', (32, 32), color=(120, 90, 60)).save(buffer, format='PNG')
    return buffer.getvalue()
