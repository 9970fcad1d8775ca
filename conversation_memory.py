# conversation_memory.py
import json
import logging
import random
import sqlite3
import string
import time
from datetime import datetime, timezone

import config

logger = logging.getLogger(__name__)


def create_session_id():
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def _now():
    return datetime.now(timezone.utc).isoformat()


class ConversationStore:
    """Saved chat histories, one row per session, only the most recent few kept"""

    def __init__(self, db_manager, max_conversations=None):
        self.db_manager = db_manager
        self.max_conversations = max_conversations or config.MAX_SAVED_CONVERSATIONS

    def save(self, session_id, turns):
        messages = [
            {
                'id': turn.get('id'),
                'role': turn.get('role'),
                'content': turn.get('content') if isinstance(turn.get('content'), str) else json.dumps(turn.get('content')),
                'timestamp': turn.get('timestamp') or _now(),
                'analysis': turn.get('analysis'),
                'suggestions': turn.get('suggestions') or [],
            }
            for turn in turns
        ]

        conn = self.db_manager.get_connection()
        try:
            c = conn.cursor()
            c.execute('''
                INSERT INTO conversations (session_id, messages, last_updated) VALUES (?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET messages = excluded.messages, last_updated = excluded.last_updated
            ''', (session_id, json.dumps(messages, default=str), _now()))

            # Keep only the most recently updated conversations
            c.execute('''
                DELETE FROM conversations WHERE session_id NOT IN (
                    SELECT session_id FROM conversations ORDER BY last_updated DESC LIMIT ?
                )
            ''', (self.max_conversations,))
            conn.commit()
            return True
        except sqlite3.Error as e:
            logger.error("❌ Error saving conversation %s: %s", session_id, e)
            conn.rollback()
            return False
        finally:
            conn.close()

    def get(self, session_id):
        conn = self.db_manager.get_connection()
        try:
            row = conn.execute('SELECT messages, last_updated FROM conversations WHERE session_id = ?',
                               (session_id,)).fetchone()
        finally:
            conn.close()

        if row is None:
            return None

        try:
            messages = json.loads(row['messages'])
        except ValueError as e:
            logger.error("❌ Corrupt conversation %s: %s", session_id, e)
            return None

        return {'messages': messages, 'last_updated': row['last_updated']}

    def list_sessions(self):
        conn = self.db_manager.get_connection()
        try:
            rows = conn.execute('SELECT session_id, last_updated FROM conversations ORDER BY last_updated DESC').fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def export(self, session_id):
        """Pretty-printed JSON copy of a saved conversation, or None"""
        conversation = self.get(session_id)
        if conversation is None:
            return None

        export_data = {
            'session_id': session_id,
            'exported_at': _now(),
            'messages': [
                {
                    'role': msg.get('role'),
                    'content': msg.get('content'),
                    'timestamp': msg.get('timestamp'),
                    'analysis': msg.get('analysis'),
                }
                for msg in conversation['messages']
            ],
        }
        return json.dumps(export_data, indent=2, default=str)

    def clear(self, session_id):
        conn = self.db_manager.get_connection()
        try:
            c = conn.cursor()
            c.execute('DELETE FROM conversations WHERE session_id = ?', (session_id,))
            conn.commit()
            return c.rowcount > 0
        finally:
            conn.close()
