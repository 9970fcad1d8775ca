"""
Unit tests for geocoding_service.py with a mocked HTTP session
"""

from unittest.mock import Mock

import pytest
import requests

from geocoding_service import GeocodingService


def _response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json = Mock(return_value=payload)
    return response


@pytest.fixture
def session():
    return Mock()


def make_service(session, google_api_key=''):
    return GeocodingService(
        nominatim_url='https://nominatim.test/search',
        user_agent='WeFix-tests',
        google_api_key=google_api_key,
        timeout=5,
        delay=0,
        session=session,
    )


class TestNominatim:
    """Test the OpenStreetMap lookup"""

    def test_success(self, session):
        session.get = Mock(return_value=_response(payload=[
            {'lat': '40.7128', 'lon': '-74.0060', 'display_name': 'Elm Street, New York',
             'address': {'road': 'Elm Street'}}
        ]))
        service = make_service(session)

        result = service.geocode('Elm Street')

        assert result == {
            'lat': 40.7128,
            'lng': -74.006,
            'display_name': 'Elm Street, New York',
            'address': {'road': 'Elm Street'},
        }
        _, kwargs = session.get.call_args
        assert kwargs['params']['q'] == 'Elm Street'
        assert kwargs['headers']['User-Agent'] == 'WeFix-tests'
        assert kwargs['timeout'] == 5

    def test_no_results(self, session):
        session.get = Mock(return_value=_response(payload=[]))

        assert make_service(session).geocode('Nowhere Lane') is None

    def test_network_error(self, session):
        session.get = Mock(side_effect=requests.ConnectionError('offline'))

        assert make_service(session).geocode('Elm Street') is None

    def test_results_are_cached(self, session):
        session.get = Mock(return_value=_response(payload=[{'lat': '1', 'lon': '2'}]))
        service = make_service(session)

        first = service.geocode('Elm Street')
        second = service.geocode('  elm street ')

        assert first == second
        assert session.get.call_count == 1

    def test_misses_are_cached(self, session):
        session.get = Mock(return_value=_response(status_code=503))
        service = make_service(session)

        service.geocode('Elm Street')
        service.geocode('Elm Street')

        assert session.get.call_count == 1

    @pytest.mark.parametrize('text', ['', 'unknown', 'None', None])
    def test_placeholder_text(self, session, text):
        session.get = Mock()

        assert make_service(session).geocode(text) is None
        session.get.assert_not_called()


class TestGoogleFallback:
    """Test the keyed fallback provider"""

    def test_used_when_osm_fails(self, session):
        session.get = Mock(side_effect=[
            _response(payload=[]),
            _response(payload={
                'status': 'OK',
                'results': [{'geometry': {'location': {'lat': 51.5, 'lng': -0.12}},
                             'formatted_address': 'Baker Street, London'}],
            }),
        ])
        service = make_service(session, google_api_key='test-key')

        result = service.geocode('Baker Street')

        assert result['lat'] == 51.5
        assert result['display_name'] == 'Baker Street, London'
        assert session.get.call_count == 2

    def test_skipped_without_key(self, session):
        session.get = Mock(return_value=_response(payload=[]))

        make_service(session).geocode('Baker Street')

        assert session.get.call_count == 1
