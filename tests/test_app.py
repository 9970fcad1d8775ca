"""
Tests for the Flask API and the Twilio SMS webhook
"""

import io
from unittest.mock import Mock, patch

import pytest

from app import create_app


@pytest.fixture
def app(tmp_path, mock_geocoder, offline_image_classifier):
    return create_app({
        'TESTING': True,
        'DATABASE_PATH': str(tmp_path / 'app.db'),
        'GEOCODER': mock_geocoder,
        'IMAGE_CLASSIFIER': offline_image_classifier,
    })


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return app.extensions['wefix']['db_manager']


POTHOLE = "Emergency! Large pothole causing accidents on Oak Road"


class TestAnalyze:
    """Test the one-shot analysis endpoint"""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'ok'

    def test_text_analysis(self, client):
        response = client.post('/api/analyze', json={'text': POTHOLE})

        data = response.get_json()
        assert response.status_code == 200
        assert data['text_analysis']['category'] == 'Road Damage'
        assert data['priority']['priority'] == 'High'
        assert data['spam']['is_spam'] is False
        assert data['image_analysis'] is None
        assert 'timestamp' in data

    def test_device_location(self, client):
        response = client.post('/api/analyze', json={'text': 'the light is broken', 'lat': 1.5, 'lng': 2.5})

        assert response.get_json()['location_info']['source'] == 'browser'

    def test_device_location_not_an_object(self, client):
        response = client.post('/api/analyze', json={'text': 'the light is broken', 'device_location': 'somewhere'})

        assert response.status_code == 200
        assert response.get_json()['location_info'] is None

    def test_image_upload(self, client, png_bytes):
        response = client.post('/api/analyze', data={
            'text': 'flooded street',
            'image': (io.BytesIO(png_bytes), 'flood.png'),
        }, content_type='multipart/form-data')

        assert response.status_code == 200
        assert response.get_json()['image_analysis']['used_fallback'] is True

    def test_nothing_to_analyze(self, client):
        assert client.post('/api/analyze', json={'text': '  '}).status_code == 400

    def test_bad_base64(self, client):
        assert client.post('/api/analyze', json={'image_base64': '***'}).status_code == 400


class TestChat:
    """Test chat sessions over HTTP"""

    def test_new_session(self, client):
        response = client.post('/api/chat', json={'message': 'hello'})

        data = response.get_json()
        assert data['session_id'].startswith('session_')
        assert data['reply']['intent'] == 'greeting'

    def test_empty_message(self, client):
        assert client.post('/api/chat', json={'message': ''}).status_code == 400

    def test_analyze_and_save(self, client, db):
        session_id = client.post('/api/chat', json={'message': POTHOLE}).get_json()['session_id']

        response = client.post(f'/api/chat/{session_id}/save', json={'user_id': 'alice'})

        assert response.status_code == 201
        issue = db.get_issue(response.get_json()['issue_id'])
        assert issue['ai_category'] == 'Road Damage'
        assert db.get_profile('alice')['points'] == 5

    def test_save_before_analysis(self, client):
        session_id = client.post('/api/chat', json={'message': 'hello'}).get_json()['session_id']

        response = client.post(f'/api/chat/{session_id}/save', json={'user_id': 'alice'})

        assert response.status_code == 400
        assert 'analyze an issue first' in response.get_json()['error']

    def test_unknown_session(self, client):
        assert client.post('/api/chat/nope/save', json={'user_id': 'alice'}).status_code == 404
        assert client.get('/api/chat/nope/export').status_code == 404

    def test_export_and_clear(self, client):
        session_id = client.post('/api/chat', json={'message': 'hello'}).get_json()['session_id']

        exported = client.get(f'/api/chat/{session_id}/export')
        assert exported.status_code == 200
        assert exported.get_json()['session_id'] == session_id

        assert client.delete(f'/api/chat/{session_id}').status_code == 200
        assert client.get(f'/api/chat/{session_id}/export').status_code == 404


class TestIssues:
    """Test issue endpoints and the points they award"""

    def _report(self, client, user_id='alice', **extra):
        payload = dict({'description': POTHOLE, 'user_id': user_id}, **extra)
        return client.post('/api/issues', json=payload)

    def test_create(self, client, db):
        response = self._report(client, lat=40.7, lng=-74.0)

        assert response.status_code == 201
        issue = response.get_json()['issue']
        assert issue['ai_category'] == 'Road Damage'
        assert issue['ai_priority'] == 'High'
        assert (issue['latitude'], issue['longitude']) == (40.7, -74.0)
        assert db.get_profile('alice')['points'] == 5

    def test_create_requires_description(self, client):
        assert client.post('/api/issues', json={'user_id': 'alice'}).status_code == 400

    def test_list_and_get(self, client):
        issue_id = self._report(client).get_json()['id']

        listing = client.get('/api/issues', query_string={'category': 'Road Damage'}).get_json()
        assert [issue['id'] for issue in listing['issues']] == [issue_id]
        assert client.get(f'/api/issues/{issue_id}').status_code == 200
        assert client.get('/api/issues/999').status_code == 404

    def test_client_analysis_without_image_category(self, client):
        analysis = {
            'text_analysis': {'category': 'Garbage', 'confidence': 0.8},
            'image_analysis': {'used_fallback': False},
        }

        response = self._report(client, analysis=analysis)

        assert response.status_code == 201
        assert response.get_json()['issue']['ai_category'] == 'Garbage'

    def test_votes(self, client):
        issue_id = self._report(client).get_json()['id']

        voted = client.post(f'/api/issues/{issue_id}/vote', json={'user_id': 'bob'}).get_json()
        again = client.post(f'/api/issues/{issue_id}/vote', json={'user_id': 'bob'}).get_json()
        assert (voted['changed'], voted['has_voted'], voted['vote_count']) == (True, True, 1)
        assert (again['changed'], again['vote_count']) == (False, 1)
        assert client.get(f'/api/issues/{issue_id}').get_json()['vote_count'] == 1

        removed = client.delete(f'/api/issues/{issue_id}/vote', json={'user_id': 'bob'}).get_json()
        assert (removed['changed'], removed['has_voted'], removed['vote_count']) == (True, False, 0)

        assert client.post(f'/api/issues/{issue_id}/vote', json={}).status_code == 400
        assert client.post('/api/issues/999/vote', json={'user_id': 'bob'}).status_code == 404

    def test_comments(self, client):
        issue_id = self._report(client).get_json()['id']
        client.post('/api/profiles', json={'id': 'bob', 'full_name': 'Bob'})

        created = client.post(f'/api/issues/{issue_id}/comments', json={'user_id': 'bob', 'comment_text': 'Seen it too'})

        assert created.status_code == 201
        comments = client.get(f'/api/issues/{issue_id}/comments').get_json()['comments']
        assert [(c['full_name'], c['comment_text']) for c in comments] == [('Bob', 'Seen it too')]
        assert client.post(f'/api/issues/{issue_id}/comments',
                           json={'user_id': 'bob', 'comment_text': '   '}).status_code == 400
        assert client.get('/api/issues/999/comments').status_code == 404

    def test_resolve_awards_points_once(self, client, db):
        issue_id = self._report(client).get_json()['id']

        first = client.post(f'/api/issues/{issue_id}/status', json={'status': 'Resolved', 'user_id': 'alice'})
        second = client.post(f'/api/issues/{issue_id}/status', json={'status': 'Resolved', 'user_id': 'alice'})

        assert first.get_json()['points_awarded'] == 50
        assert second.get_json()['points_awarded'] == 0
        assert db.get_profile('alice')['points'] == 55

    def test_status_validation(self, client):
        issue_id = self._report(client).get_json()['id']

        assert client.post(f'/api/issues/{issue_id}/status', json={'status': 'Done'}).status_code == 400
        assert client.post(f'/api/issues/{issue_id}/status',
                           json={'status': 'Resolved', 'user_id': 'bob'}).status_code == 403
        assert client.post('/api/issues/999/status', json={'status': 'Resolved'}).status_code == 404

    def test_similar_nearby_and_geojson(self, client):
        self._report(client, lat=40.7128, lng=-74.0060)

        similar = client.get('/api/issues/similar', query_string={'text': POTHOLE}).get_json()
        assert len(similar['issues']) == 1

        nearby = client.get('/api/issues/nearby', query_string={'lat': 40.713, 'lng': -74.006}).get_json()
        assert len(nearby['issues']) == 1
        assert client.get('/api/issues/nearby').status_code == 400

        geojson = client.get('/api/issues/geojson').get_json()
        assert len(geojson['features']) == 1

    def test_stats_and_leaderboard(self, client):
        self._report(client)

        assert client.get('/api/stats').get_json()['total_issues'] == 1
        leaders = client.get('/api/leaderboard').get_json()['leaders']
        assert leaders[0]['id'] == 'alice'


class TestCommunity:
    """Test profiles and volunteer groups"""

    def test_profiles(self, client):
        created = client.post('/api/profiles', json={'id': 'alice', 'full_name': 'Alice Liddell'})
        assert created.status_code == 201
        assert client.post('/api/profiles', json={'id': 'alice'}).status_code == 200

        status = client.get('/api/profiles/alice').get_json()
        assert status['complete'] is True
        assert client.get('/api/profiles/ghost').status_code == 404

    def test_groups(self, client, db):
        created = client.post('/api/groups', json={'name': 'Pothole patrol', 'user_id': 'alice'})
        group_id = created.get_json()['group']['id']

        joined = client.post(f'/api/groups/{group_id}/join', json={'user_id': 'bob'}).get_json()
        again = client.post(f'/api/groups/{group_id}/join', json={'user_id': 'bob'}).get_json()

        assert created.status_code == 201
        assert joined['points_awarded'] == 10
        assert again['joined'] is False
        assert again['points_awarded'] == 0
        assert joined['group']['member_count'] == 2
        assert db.get_profile('alice')['points'] == 25
        assert client.post('/api/groups/999/join', json={'user_id': 'bob'}).status_code == 404

    def test_fundraiser_and_donation(self, client):
        group_id = client.post('/api/groups', json={'name': 'Pothole patrol', 'user_id': 'alice'}).get_json()['group']['id']

        created = client.post('/api/fundraisers', json={
            'title': 'Fill the pothole', 'user_id': 'bob', 'target_amount': '250', 'group_id': group_id,
        })
        fundraiser_id = created.get_json()['fundraiser']['id']

        donated = client.post(f'/api/fundraisers/{fundraiser_id}/donations',
                              json={'amount': 20, 'donor_name': 'Carol', 'transaction_id': 'txn_42'})

        assert created.status_code == 201
        assert donated.status_code == 201
        body = donated.get_json()
        assert body['donation']['recipient_user_id'] == 'alice'
        assert body['donation']['invoice_number'].startswith('INV-')
        assert body['fundraiser']['current_amount'] == 20
        assert [f['id'] for f in client.get('/api/fundraisers', query_string={'group_id': group_id})
                .get_json()['fundraisers']] == [fundraiser_id]

        stats = client.get('/api/stats').get_json()
        assert stats['active_fundraisers'] == 1
        assert stats['total_donations'] == 20

    def test_fundraiser_validation(self, client):
        assert client.post('/api/fundraisers', json={'user_id': 'bob', 'target_amount': 10}).status_code == 400
        assert client.post('/api/fundraisers', json={'title': 'x', 'user_id': 'bob', 'target_amount': 0}).status_code == 400
        assert client.post('/api/fundraisers', json={'title': 'x', 'user_id': 'bob', 'target_amount': 10,
                                                     'group_id': 999}).status_code == 404
        assert client.get('/api/fundraisers/999').status_code == 404

        fundraiser_id = client.post('/api/fundraisers', json={'title': 'Benches', 'user_id': 'bob',
                                                              'target_amount': 10}).get_json()['fundraiser']['id']
        assert client.post(f'/api/fundraisers/{fundraiser_id}/donations', json={'amount': -5}).status_code == 400
        assert client.post('/api/fundraisers/999/donations', json={'amount': 5}).status_code == 404


class TestSmsWebhook:
    """Test the Twilio webhook"""

    PHONE = '+15550001111'

    def _sms(self, client, body, **extra):
        return client.post('/webhook', data=dict({'Body': body, 'From': self.PHONE}, **extra))

    def test_greeting(self, client):
        response = self._sms(client, 'hello')

        assert response.status_code == 200
        assert '<Response><Message>' in response.get_data(as_text=True)

    def test_report_then_save(self, client, db):
        analysis = self._sms(client, POTHOLE).get_data(as_text=True)
        assert '*Analysis Complete*' in analysis
        assert 'Reply SAVE' in analysis

        saved = self._sms(client, 'SAVE').get_data(as_text=True)
        assert 'saved successfully' in saved
        assert db.get_profile(self.PHONE)['points'] == 5

    def test_status_lookup(self, client):
        issue_id = client.post('/api/issues', json={'description': POTHOLE}).get_json()['id']

        found = self._sms(client, str(issue_id)).get_data(as_text=True)
        missing = self._sms(client, '999').get_data(as_text=True)

        assert 'Road Damage' in found
        assert 'Open' in found
        assert 'ID #999' in missing

    def test_mms_photo(self, client, png_bytes):
        media = Mock(status_code=200, content=png_bytes)
        with patch('app.requests.get', return_value=media) as get:
            response = self._sms(client, 'flooded street', NumMedia='1', MediaUrl0='https://media.test/1.png')

        get.assert_called_once()
        assert '*Analysis Complete*' in response.get_data(as_text=True)
