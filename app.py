# app.py
import base64
import binascii
import logging
import re
from datetime import datetime

import requests
from flask import Flask, Response, jsonify, request
from twilio.twiml.messaging_response import MessagingResponse

import config
from ai_response_generator import AIResponseGenerator
from chat_session import ChatSession, SessionRegistry
from conversation_engine import ConversationEngine
from conversation_memory import ConversationStore
from database_manager import ISSUE_STATUSES, DatabaseManager
from geocoding_service import GeocodingService
from image_classifier import ImageClassifier
from issue_pipeline import IssuePipeline, build_issue_record
from points_system import POINTS, PointsSystem
from similar_issues import SimilarIssueFinder

logger = logging.getLogger(__name__)

SAVE_COMMANDS = ('save', 'save issue', 'save this issue')


def _json_error(message, status):
    return jsonify({'error': message}), status


def _parse_float(value):
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _device_location(payload):
    """lat/lng reported by the client, if any"""
    location = payload.get('device_location') or payload
    if not isinstance(location, dict):
        return None
    lat = _parse_float(location.get('lat'))
    lng = _parse_float(location.get('lng'))
    if lat is None or lng is None:
        return None
    return {'lat': lat, 'lng': lng, 'accuracy': _parse_float(location.get('accuracy'))}


def _request_payload():
    """JSON body, or form fields for multipart uploads"""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _request_image(payload):
    """Uploaded file, base64 field, or None. Returns (bytes, name)."""
    upload = request.files.get('image')
    if upload is not None and upload.filename:
        return upload.read(), upload.filename

    encoded = payload.get('image_base64')
    if encoded:
        try:
            return base64.b64decode(encoded, validate=True), payload.get('image_name') or 'image'
        except (binascii.Error, ValueError):
            raise ValueError('image_base64 is not valid base64')

    return None, None


def _sms_text(markdown):
    """Chat replies use **bold**; SMS/WhatsApp uses *bold*"""
    text = markdown.replace('**', '*')
    return re.sub(r'^## (.*)$', r'*\1*', text, flags=re.MULTILINE)


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.update(config.as_dict())
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    db_manager = DatabaseManager(app.config['DATABASE_PATH'])
    points_system = PointsSystem(db_manager)
    store = ConversationStore(db_manager, max_conversations=app.config['MAX_SAVED_CONVERSATIONS'])
    geocoding_service = app.config.get('GEOCODER') or GeocodingService(
        nominatim_url=app.config['NOMINATIM_URL'],
        user_agent=app.config['GEOCODER_USER_AGENT'],
        google_api_key=app.config['GOOGLE_GEOCODING_API_KEY'],
        timeout=app.config['GEOCODING_TIMEOUT'],
        delay=app.config['GEOCODING_DELAY'],
    )
    image_classifier = app.config.get('IMAGE_CLASSIFIER') or ImageClassifier(
        model_paths=app.config['MODEL_PATHS'],
        image_size=app.config['IMAGE_SIZE'],
        download_timeout=app.config['IMAGE_DOWNLOAD_TIMEOUT'],
    )
    similar_finder = SimilarIssueFinder(
        db_manager,
        candidate_pool=app.config['SIMILARITY_CANDIDATE_POOL'],
        nearby_pool=app.config['NEARBY_CANDIDATE_POOL'],
    )
    pipeline = IssuePipeline(
        similar_finder=similar_finder,
        geocoding_service=geocoding_service,
        image_classifier=image_classifier,
    )
    engine = ConversationEngine()
    responder = AIResponseGenerator()

    def new_session(session_id=None):
        return ChatSession(pipeline, db_manager=db_manager, points_system=points_system, store=store,
                           engine=engine, responder=responder, session_id=session_id)

    sessions = SessionRegistry(new_session)

    app.extensions['wefix'] = {
        'db_manager': db_manager,
        'points_system': points_system,
        'store': store,
        'pipeline': pipeline,
        'similar_finder': similar_finder,
        'sessions': sessions,
    }

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("❌ Unhandled error: %s", getattr(error, 'original_exception', error))
        return _json_error('Analysis failed, please retry', 500)

    @app.route('/health')
    def health():
        return jsonify({
            'status': 'ok',
            'service': 'wefix-civic-assistant',
            'as_of': datetime.now().isoformat()
        })

    # Analysis
    @app.route('/api/analyze', methods=['POST'])
    def analyze():
        payload = _request_payload()
        text = (payload.get('text') or '').strip()
        try:
            image, _ = _request_image(payload)
        except ValueError as e:
            return _json_error(str(e), 400)
        image_url = payload.get('image_url')

        if not text and image is None and not image_url:
            return _json_error('Provide a description, an image or an image_url', 400)

        analysis = pipeline.analyze(
            text,
            image=image,
            image_url=image_url,
            device_location=_device_location(payload),
            include_similar=str(payload.get('include_similar', 'true')).lower() != 'false',
        )
        return jsonify(analysis)

    # Chat
    @app.route('/api/chat', methods=['POST'])
    def chat():
        payload = _request_payload()
        try:
            image, image_name = _request_image(payload)
        except ValueError as e:
            return _json_error(str(e), 400)

        session = sessions.get_or_create(payload.get('session_id'))
        reply = session.send_message(
            payload.get('message', ''),
            image=image,
            image_name=image_name,
            device_location=_device_location(payload),
        )
        if reply is None:
            return _json_error('Message is empty', 400)

        session.persist()
        return jsonify({'session_id': session.session_id, 'reply': reply})

    @app.route('/api/chat/<session_id>/save', methods=['POST'])
    def chat_save_issue(session_id):
        session = sessions.get(session_id)
        if session is None:
            return _json_error('Session not found', 404)

        payload = _request_payload()
        user_id = payload.get('user_id')
        if user_id:
            db_manager.create_profile(user_id)
        issue_id = session.save_issue(user_id, image_url=payload.get('image_url'))
        session.persist()
        if issue_id is None:
            return _json_error(session.history[-1]['content'], 400)
        return jsonify({'issue_id': issue_id, 'reply': session.history[-1]}), 201

    @app.route('/api/chat/<session_id>/export')
    def chat_export(session_id):
        session = sessions.get(session_id)
        exported = session.export() if session is not None else store.export(session_id)
        if exported is None:
            return _json_error('Session not found', 404)
        return Response(exported, mimetype='application/json',
                        headers={'Content-Disposition': f'attachment; filename={session_id}.json'})

    @app.route('/api/chat/<session_id>', methods=['DELETE'])
    def chat_clear(session_id):
        session = sessions.remove(session_id)
        if session is not None:
            session.clear()
        else:
            store.clear(session_id)
        return jsonify({'cleared': session_id})

    # Issues
    @app.route('/api/issues', methods=['POST'])
    def create_issue():
        payload = _request_payload()
        description = (payload.get('description') or '').strip()
        if not description:
            return _json_error('Description is required', 400)

        analysis = payload.get('analysis')
        if not isinstance(analysis, dict):
            analysis = pipeline.analyze(
                description,
                image_url=payload.get('image_url'),
                device_location=_device_location(payload),
                include_similar=False,
            )

        user_id = payload.get('user_id')
        record = build_issue_record(analysis, description, user_id=user_id, image_url=payload.get('image_url'))
        lat, lng = _parse_float(payload.get('lat')), _parse_float(payload.get('lng'))
        if lat is not None and lng is not None:
            record['latitude'], record['longitude'] = lat, lng

        issue_id = db_manager.create_issue(record)
        if user_id:
            db_manager.create_profile(user_id)
            points_system.award_points(user_id, POINTS['REPORT_ISSUE'], 'Reported an issue')

        return jsonify({'id': issue_id, 'issue': db_manager.get_issue(issue_id)}), 201

    @app.route('/api/issues')
    def list_issues():
        filters = {
            'status': request.args.get('status'),
            'ai_category': request.args.get('category'),
            'ai_priority': request.args.get('priority'),
            'search': request.args.get('search'),
        }
        page = max(request.args.get('page', 1, type=int), 1)
        per_page = min(max(request.args.get('per_page', 20, type=int), 1), 100)
        return jsonify(db_manager.get_issues(filters=filters, page=page, per_page=per_page))

    @app.route('/api/issues/<int:issue_id>')
    def get_issue(issue_id):
        issue = db_manager.get_issue(issue_id)
        if issue is None:
            return _json_error('Issue not found', 404)
        issue['vote_count'] = db_manager.get_vote_count(issue_id)
        return jsonify(issue)

    @app.route('/api/issues/<int:issue_id>/vote', methods=['POST', 'DELETE'])
    def vote(issue_id):
        payload = _request_payload()
        user_id = payload.get('user_id') or request.args.get('user_id')
        if not user_id:
            return _json_error('user_id is required', 400)
        if db_manager.get_issue(issue_id) is None:
            return _json_error('Issue not found', 404)

        if request.method == 'POST':
            changed = db_manager.add_vote(issue_id, user_id)
        else:
            changed = db_manager.remove_vote(issue_id, user_id)
        return jsonify({'changed': changed, 'has_voted': db_manager.has_voted(issue_id, user_id),
                        'vote_count': db_manager.get_vote_count(issue_id)})

    @app.route('/api/issues/<int:issue_id>/comments')
    def list_comments(issue_id):
        if db_manager.get_issue(issue_id) is None:
            return _json_error('Issue not found', 404)
        return jsonify({'comments': db_manager.get_comments(issue_id)})

    @app.route('/api/issues/<int:issue_id>/comments', methods=['POST'])
    def add_comment(issue_id):
        payload = _request_payload()
        user_id = payload.get('user_id')
        text = (payload.get('comment_text') or '').strip()
        if not user_id or not text:
            return _json_error('user_id and comment_text are required', 400)
        if db_manager.get_issue(issue_id) is None:
            return _json_error('Issue not found', 404)

        db_manager.create_profile(user_id)
        comment_id = db_manager.add_comment(issue_id, user_id, text)
        return jsonify({'id': comment_id, 'comments': db_manager.get_comments(issue_id)}), 201

    @app.route('/api/issues/<int:issue_id>/status', methods=['POST'])
    def update_issue_status(issue_id):
        payload = _request_payload()
        new_status = payload.get('status')
        user_id = payload.get('user_id')

        if new_status not in ISSUE_STATUSES:
            return _json_error(f"Status must be one of {', '.join(ISSUE_STATUSES)}", 400)

        issue = db_manager.get_issue(issue_id)
        if issue is None:
            return _json_error('Issue not found', 404)
        if issue.get('user_id') and issue['user_id'] != user_id:
            return _json_error('Only the issue creator can update the status.', 403)

        previous = db_manager.update_issue_status(issue_id, new_status, resolved_by=user_id)
        points_awarded = 0
        if new_status == 'Resolved' and previous != 'Resolved' and user_id:
            if points_system.award_points(user_id, POINTS['RESOLVE_ISSUE'], 'Resolved an issue'):
                points_awarded = POINTS['RESOLVE_ISSUE']

        return jsonify({'id': issue_id, 'previous_status': previous, 'status': new_status,
                        'points_awarded': points_awarded})

    @app.route('/api/issues/similar')
    def similar_issues():
        text = request.args.get('text', '')
        limit = min(max(request.args.get('limit', 5, type=int), 1), 50)
        return jsonify({'issues': similar_finder.find_similar_issues(text, limit=limit)})

    @app.route('/api/issues/nearby')
    def nearby_issues():
        lat = request.args.get('lat', type=float)
        lng = request.args.get('lng', type=float)
        if lat is None or lng is None:
            return _json_error('lat and lng are required', 400)
        radius_km = request.args.get('radius_km', 2, type=float)
        limit = min(max(request.args.get('limit', 10, type=int), 1), 100)
        return jsonify({'issues': similar_finder.find_nearby_issues(lat, lng, radius_km=radius_km, limit=limit)})

    @app.route('/api/issues/geojson')
    def issues_geojson():
        return jsonify(db_manager.get_issues_geojson())

    @app.route('/api/stats')
    def stats():
        return jsonify(db_manager.get_platform_stats())

    # Community
    @app.route('/api/leaderboard')
    def leaderboard():
        limit = min(max(request.args.get('limit', 10, type=int), 1), 100)
        return jsonify({'leaders': points_system.get_leaderboard(limit=limit)})

    @app.route('/api/profiles', methods=['POST'])
    def create_profile():
        payload = _request_payload()
        user_id = payload.get('id')
        if not user_id:
            return _json_error('id is required', 400)
        created = db_manager.create_profile(user_id, email=payload.get('email'),
                                            full_name=payload.get('full_name', ''),
                                            username=payload.get('username'))
        return jsonify({'created': created, 'profile': db_manager.get_profile(user_id)}), 201 if created else 200

    @app.route('/api/profiles/<user_id>')
    def get_profile(user_id):
        status = points_system.get_profile_status(user_id)
        if 'data' not in status:
            return _json_error('Profile not found', 404)
        return jsonify(status)

    @app.route('/api/groups', methods=['POST'])
    def create_group():
        payload = _request_payload()
        name = (payload.get('name') or '').strip()
        user_id = payload.get('user_id')
        if not name or not user_id:
            return _json_error('name and user_id are required', 400)

        db_manager.create_profile(user_id)
        group_id = db_manager.create_group(name, user_id, description=payload.get('description'),
                                           issue_id=payload.get('issue_id'))
        points_system.award_points(user_id, POINTS['CREATE_GROUP'], 'Created a group')
        return jsonify({'group': db_manager.get_group(group_id), 'points_awarded': POINTS['CREATE_GROUP']}), 201

    @app.route('/api/groups/<int:group_id>/join', methods=['POST'])
    def join_group(group_id):
        payload = _request_payload()
        user_id = payload.get('user_id')
        if not user_id:
            return _json_error('user_id is required', 400)
        if db_manager.get_group(group_id) is None:
            return _json_error('Group not found', 404)

        db_manager.create_profile(user_id)
        joined = db_manager.join_group(group_id, user_id)
        points_awarded = 0
        if joined and points_system.award_points(user_id, POINTS['JOIN_GROUP'], 'Joined a group'):
            points_awarded = POINTS['JOIN_GROUP']
        return jsonify({'joined': joined, 'points_awarded': points_awarded, 'group': db_manager.get_group(group_id)})

    # Fundraisers. Payment itself happens outside the platform.
    @app.route('/api/fundraisers', methods=['POST'])
    def create_fundraiser():
        payload = _request_payload()
        title = (payload.get('title') or '').strip()
        user_id = payload.get('user_id')
        target_amount = _parse_float(payload.get('target_amount'))
        if not title or not user_id:
            return _json_error('title and user_id are required', 400)
        if target_amount is None or target_amount <= 0:
            return _json_error('target_amount must be a positive number', 400)

        group_id = payload.get('group_id')
        if group_id is not None and db_manager.get_group(group_id) is None:
            return _json_error('Group not found', 404)

        db_manager.create_profile(user_id)
        fundraiser_id = db_manager.create_fundraiser(title, user_id, target_amount, group_id=group_id,
                                                     description=payload.get('description'),
                                                     issue_id=payload.get('issue_id'))
        return jsonify({'fundraiser': db_manager.get_fundraiser(fundraiser_id)}), 201

    @app.route('/api/fundraisers')
    def list_fundraisers():
        group_id = request.args.get('group_id', type=int)
        status = request.args.get('status')
        return jsonify({'fundraisers': db_manager.get_fundraisers(group_id=group_id, status=status)})

    @app.route('/api/fundraisers/<int:fundraiser_id>')
    def get_fundraiser(fundraiser_id):
        fundraiser = db_manager.get_fundraiser(fundraiser_id)
        if fundraiser is None:
            return _json_error('Fundraiser not found', 404)
        return jsonify(fundraiser)

    @app.route('/api/fundraisers/<int:fundraiser_id>/donations', methods=['POST'])
    def donate(fundraiser_id):
        payload = _request_payload()
        amount = _parse_float(payload.get('amount'))
        if amount is None or amount <= 0:
            return _json_error('amount must be a positive number', 400)
        if db_manager.get_fundraiser(fundraiser_id) is None:
            return _json_error('Fundraiser not found', 404)

        donation = db_manager.record_donation(
            fundraiser_id,
            amount,
            donor_user_id=payload.get('user_id'),
            donor_name=payload.get('donor_name'),
            donor_email=payload.get('donor_email'),
            payment_method=payload.get('payment_method') or 'card',
            transaction_id=payload.get('transaction_id'),
        )
        if donation is None:
            return _json_error('Fundraiser is not accepting donations', 409)
        return jsonify({'donation': donation, 'fundraiser': db_manager.get_fundraiser(fundraiser_id)}), 201

    # SMS channel
    @app.route('/webhook', methods=['POST'])
    def webhook():
        incoming_msg = request.values.get('Body', '').strip()
        sender_phone = request.values.get('From', '')
        num_media = request.values.get('NumMedia', 0, type=int)

        logger.info("💬 Message from %s: %s", sender_phone, incoming_msg)

        resp = MessagingResponse()
        session = sessions.get_or_create(f"sms:{sender_phone}")

        if incoming_msg.lower() in SAVE_COMMANDS:
            db_manager.create_profile(sender_phone)
            session.save_issue(sender_phone)
            resp.message(_sms_text(session.history[-1]['content']))
            return str(resp)

        # A bare number is a status lookup
        if incoming_msg.isdigit():
            issue = db_manager.get_issue(int(incoming_msg))
            if issue:
                resp.message(f"📋 *Issue #{issue['id']}*\n\n*Category:* {issue['ai_category']}\n"
                             f"*Status:* {issue['status']}\n*Submitted:* {str(issue['created_at'])[:10]}")
            else:
                resp.message(f"❌ I couldn't find an issue with ID #{incoming_msg}. Please check the number and try again.")
            return str(resp)

        image = None
        if num_media > 0:
            image_url = request.values.get('MediaUrl0')
            try:
                media = requests.get(image_url, timeout=app.config['IMAGE_DOWNLOAD_TIMEOUT'])
                if media.status_code == 200:
                    image = media.content
            except requests.RequestException as e:
                logger.warning("❌ Could not download MMS image: %s", e)

        reply = session.send_message(incoming_msg, image=image, image_name='photo' if image else None)
        if reply is None:
            resp.message("👋 Hi! Describe an issue you've spotted, or say 'help' to see what I can do.")
        else:
            text = _sms_text(reply['content'])
            if reply.get('analysis'):
                text += "\n\nReply SAVE to submit this issue."
            resp.message(text)

        session.persist()
        return str(resp)

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=config.PORT)
