# points_system.py
import logging
import sqlite3

logger = logging.getLogger(__name__)

# Points configuration
POINTS = {
    'CREATE_GROUP': 25,
    'JOIN_GROUP': 10,
    'RESOLVE_ISSUE': 50,
    'REPORT_ISSUE': 5,  # Bonus for reporting
}


class PointsSystem:
    def __init__(self, db_manager):
        self.db_manager = db_manager

    def award_points(self, user_id, points, reason=''):
        """Add (or with a negative value, remove) points. Totals never drop below zero."""
        if not user_id or not points:
            return False

        conn = self.db_manager.get_connection()
        try:
            c = conn.cursor()
            row = c.execute('SELECT points FROM profiles WHERE id = ?', (user_id,)).fetchone()
            if row is None:
                logger.warning("⚠️ Cannot award points, no profile for user %s", user_id)
                return False

            new_points = max(0, (row['points'] or 0) + points)
            c.execute('UPDATE profiles SET points = ? WHERE id = ?', (new_points, user_id))
            conn.commit()
            logger.info("🏆 Awarded %s points to user %s. Reason: %s", points, user_id, reason)
            return True
        except sqlite3.Error as e:
            logger.error("❌ Error awarding points: %s", e)
            conn.rollback()
            return False
        finally:
            conn.close()

    def get_leaderboard(self, limit=10):
        """Users ranked by points, highest first"""
        conn = self.db_manager.get_connection()
        try:
            rows = conn.execute('''
                SELECT id, full_name, username, avatar_url, points
                FROM profiles
                ORDER BY points DESC, created_at ASC
                LIMIT ?
            ''', (limit,)).fetchall()
        finally:
            conn.close()

        return [dict(row, rank=rank) for rank, row in enumerate(rows, start=1)]

    def is_profile_complete(self, user_id):
        return self.get_profile_status(user_id)['complete']

    def get_profile_status(self, user_id):
        """A profile counts as complete once it has a full name"""
        if not user_id:
            return {'complete': False, 'missing': ['profile']}

        profile = self.db_manager.get_profile(user_id)
        if not profile:
            return {'complete': False, 'missing': ['profile']}

        missing = []
        if not (profile.get('full_name') or '').strip():
            missing.append('full_name')

        return {
            'complete': not missing,
            'missing': missing,
            'data': profile,
        }
