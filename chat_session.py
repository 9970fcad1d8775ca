# chat_session.py
import itertools
import json
import logging
import threading
from datetime import datetime, timezone

from ai_response_generator import response_generator as default_responder
from conversation_engine import ConversationEngine
from conversation_memory import create_session_id
from issue_classifier import FALLBACK_CATEGORY
from issue_pipeline import build_issue_record
from location_extractor import get_device_location
from points_system import POINTS

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = ("Hello! I'm WeFix Smart AI. I can help you report issues, analyze images, classify problems, "
                   "and answer questions about civic issues. How can I assist you today?")

NEARBY_RADIUS_KM = 2


def _now():
    return datetime.now(timezone.utc).isoformat()


class ChatSession:
    """One conversation with the assistant.

    The session owns its history and pending photo. Each message bumps a
    request version; a reply produced for an older version (because a newer
    message arrived or the session was reset meanwhile) is handed back
    marked stale and never written into the history.
    """

    def __init__(self, pipeline, db_manager=None, points_system=None, store=None,
                 engine=None, responder=None, session_id=None):
        self.session_id = session_id or create_session_id()
        self.pipeline = pipeline
        self.db_manager = db_manager
        self.points_system = points_system
        self.store = store
        self.engine = engine or ConversationEngine()
        self.responder = responder or default_responder
        self._ids = itertools.count(1)
        self._version = 0
        self.reset()

    # History
    def _make_turn(self, role, content, **extra):
        turn = {
            'id': next(self._ids),
            'role': role,
            'content': content,
            'suggestions': [],
            'timestamp': _now(),
        }
        turn.update({key: value for key, value in extra.items() if value is not None})
        return turn

    def reset(self):
        """Start over. Replies still in flight for the old conversation are dropped."""
        self._version += 1
        self.history = [self._make_turn('assistant', WELCOME_MESSAGE, intent='greeting')]
        self.pending_image = None
        self.pending_image_name = None
        self.last_analysis = None
        self.last_description = None

    def attach_image(self, image, image_name=None):
        self.pending_image = image
        self.pending_image_name = image_name or 'image'

    # Messaging
    def send_message(self, text, image=None, image_name=None, device_location=None):
        """Handle one user message and return the assistant turn (or None for an empty message)"""
        text = (text or '').strip()
        if image is not None:
            self.attach_image(image, image_name)

        if not text and self.pending_image is None:
            return None

        self._version += 1
        version = self._version

        content = text
        if self.pending_image is not None:
            content = f"{text}\n[Image: {self.pending_image_name}]" if text else f"[Image uploaded: {self.pending_image_name}]"
        self.history.append(self._make_turn('user', content, image_name=self.pending_image_name))

        try:
            if self.pending_image is not None:
                reply = self._analyze(text or 'Issue detected from image', device_location)
            else:
                intent = self.engine.route(text, self.history[:-1])
                reply = self._handle_intent(intent, text, device_location)
        except Exception as e:
            logger.exception("❌ Chat analysis failed: %s", e)
            reply = {
                'intent': 'error',
                'content': self.responder.generate_error_response(),
                'suggestions': [],
                'error': True,
                'retry_text': text,
            }

        return self._finish(version, reply)

    def _finish(self, version, reply):
        description = reply.pop('description', None)
        if version != self._version:
            logger.info("⏭️ Dropping stale reply for session %s", self.session_id)
            return dict(reply, role='assistant', stale=True)

        if reply.get('analysis') is not None:
            self.last_analysis = reply['analysis']
            self.last_description = description
            self.pending_image = None
            self.pending_image_name = None

        turn = self._make_turn('assistant', reply['content'], **{k: v for k, v in reply.items() if k != 'content'})
        self.history.append(turn)
        return turn

    def _handle_intent(self, intent, text, device_location):
        response = self.engine.generate_response(intent)
        action = response.get('action')

        if action == 'analyze_text':
            return self._analyze(text, device_location)

        if action == 'open_report':
            # "I want to report a pothole on Main St" already has the details
            category = self.pipeline.classifier.classify_text_category(text)['category']
            if category != FALLBACK_CATEGORY:
                return self._analyze(text, device_location)

        if action == 'find_similar':
            return self._find_similar(text, device_location, response)

        if action == 'fetch_stats' and self.db_manager is not None:
            stats = self.db_manager.get_platform_stats()
            response['content'] = self.responder.generate_stats_response(stats)
            response['stats'] = stats

        if not response['suggestions']:
            response['suggestions'] = self.engine.generate_smart_suggestions(self.history, text)
        return response

    def _analyze(self, text, device_location=None):
        analysis = self.pipeline.analyze(text, image=self.pending_image, device_location=device_location)

        return {
            'intent': 'issue_description',
            'content': self.responder.generate_analysis_response(analysis),
            'analysis': analysis,
            'description': text,
            'suggestions': ['Save this issue', 'Analyze another issue'],
        }

    def _find_similar(self, text, device_location, response):
        finder = self.pipeline.similar_finder
        if finder is None:
            return response

        lines = []
        query = self.last_description or text
        similar = finder.find_similar_issues(query)
        lines.append(self.responder.generate_similar_issues_response(similar))
        response['similar_issues'] = similar

        location = get_device_location(device_location) if 'near' in text.lower() else None
        if location is not None:
            nearby = finder.find_nearby_issues(location['lat'], location['lng'], radius_km=NEARBY_RADIUS_KM)
            lines.append(self.responder.generate_nearby_issues_response(nearby, NEARBY_RADIUS_KM))
            response['nearby_issues'] = nearby

        response['content'] = '\n\n'.join(lines)
        return response

    # Persistence
    def save_issue(self, user_id, image_url=None):
        """Write the last analysis as a new issue. Returns the issue id, or None."""
        if not user_id:
            self.history.append(self._make_turn('assistant', "Please login to save issues."))
            return None
        if self.last_analysis is None:
            self.history.append(self._make_turn(
                'assistant', "I need to analyze an issue first. Please describe an issue or upload an image."))
            return None

        record = build_issue_record(self.last_analysis, self.last_description, user_id=user_id, image_url=image_url)
        issue_id = self.db_manager.create_issue(record)
        if self.points_system is not None:
            self.points_system.award_points(user_id, POINTS['REPORT_ISSUE'], 'Reported an issue')

        self.history.append(self._make_turn(
            'assistant', f"✅ Issue #{issue_id} saved successfully! You earned {POINTS['REPORT_ISSUE']} points."))
        return issue_id

    def persist(self):
        if self.store is None:
            return False
        return self.store.save(self.session_id, self.history)

    def export(self):
        """JSON dump of the conversation so far"""
        return json.dumps({
            'session_id': self.session_id,
            'exported_at': _now(),
            'messages': [
                {
                    'role': turn['role'],
                    'content': turn['content'],
                    'timestamp': turn['timestamp'],
                    'analysis': turn.get('analysis'),
                }
                for turn in self.history
            ],
        }, indent=2, default=str)

    def clear(self):
        self.reset()
        if self.store is not None:
            self.store.clear(self.session_id)


class SessionRegistry:
    """In-memory sessions keyed by id (or phone number for SMS)"""

    def __init__(self, factory):
        self.factory = factory
        self._sessions = {}
        self._lock = threading.Lock()

    def get(self, session_id):
        with self._lock:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id=None):
        with self._lock:
            if session_id and session_id in self._sessions:
                return self._sessions[session_id]
            session = self.factory(session_id)
            self._sessions[session.session_id] = session
            return session

    def remove(self, session_id):
        with self._lock:
            return self._sessions.pop(session_id, None)
