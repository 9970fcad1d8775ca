# database_manager.py
import logging
import sqlite3
from datetime import datetime

import config

logger = logging.getLogger(__name__)

ISSUE_STATUSES = ('Open', 'In Progress', 'Resolved')

SUMMARY_COLUMNS = 'id, title, description, ai_category, status, latitude, longitude, created_at, image_url'

ISSUE_FILTER_COLUMNS = ('status', 'ai_category', 'ai_priority', 'user_id')

ISSUE_COLUMNS = (
    'title', 'description', 'image_url', 'status', 'user_id', 'ai_category', 'ai_priority',
    'ai_confidence', 'ai_sentiment', 'ai_spam_detected', 'latitude', 'longitude', 'created_at', 'updated_at',
)

EMPTY_STATS = {
    'total_issues': 0,
    'resolved_issues': 0,
    'total_groups': 0,
    'total_users': 0,
    'active_fundraisers': 0,
    'total_donations': 0,
}


class DatabaseManager:
    def __init__(self, db_path=None):
        self.db_path = db_path or config.DATABASE_PATH
        self.init_database()
        self._run_migrations()

    def get_connection(self):
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self):
        """Create the tables the platform needs"""
        conn = self.get_connection()
        c = conn.cursor()

        c.execute('''
            CREATE TABLE IF NOT EXISTS issues (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT,
                image_url TEXT,
                status TEXT DEFAULT 'Open',
                user_id TEXT,
                ai_category TEXT DEFAULT 'Other',
                ai_priority TEXT DEFAULT 'Medium',
                ai_confidence REAL,
                ai_sentiment TEXT DEFAULT 'neutral',
                ai_spam_detected INTEGER DEFAULT 0,
                latitude REAL,
                longitude REAL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                email TEXT,
                full_name TEXT DEFAULT '',
                username TEXT,
                bio TEXT,
                location TEXT,
                avatar_url TEXT DEFAULT '',
                points INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS volunteer_groups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                issue_id INTEGER,
                created_by TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS group_members (
                group_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (group_id, user_id)
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS issue_votes (
                issue_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (issue_id, user_id)
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS issue_comments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                issue_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                comment_text TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS fundraisers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id INTEGER,
                issue_id INTEGER,
                created_by TEXT,
                title TEXT NOT NULL,
                description TEXT,
                target_amount REAL NOT NULL,
                current_amount REAL DEFAULT 0,
                status TEXT DEFAULT 'active',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS donations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                fundraiser_id INTEGER NOT NULL,
                donor_user_id TEXT,
                donor_name TEXT,
                donor_email TEXT,
                recipient_user_id TEXT,
                amount REAL NOT NULL,
                payment_status TEXT DEFAULT 'completed',
                payment_method TEXT,
                transaction_id TEXT,
                invoice_number TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS conversations (
                session_id TEXT PRIMARY KEY,
                messages TEXT NOT NULL,
                last_updated TEXT NOT NULL
            )
        ''')

        conn.commit()
        conn.close()
        logger.info("✅ Database initialization complete!")

    def _run_migrations(self):
        """Add columns introduced after the first schema, and indexes"""
        conn = self.get_connection()
        c = conn.cursor()

        try:
            c.execute("PRAGMA table_info(issues)")
            existing_columns = [column[1] for column in c.fetchall()]

            columns_to_add = [
                ('ai_confidence', 'REAL'),
                ('ai_sentiment', "TEXT DEFAULT 'neutral'"),
                ('ai_spam_detected', 'INTEGER DEFAULT 0'),
                ('updated_at', 'TIMESTAMP'),
                ('resolved_at', 'TIMESTAMP'),
                ('resolved_by', 'TEXT'),
            ]

            for column_name, column_type in columns_to_add:
                if column_name not in existing_columns:
                    logger.info("📋 Adding '%s' column...", column_name)
                    c.execute(f"ALTER TABLE issues ADD COLUMN {column_name} {column_type}")

            indexes = [
                'CREATE INDEX IF NOT EXISTS idx_issues_status ON issues(status)',
                'CREATE INDEX IF NOT EXISTS idx_issues_category ON issues(ai_category)',
                'CREATE INDEX IF NOT EXISTS idx_issues_created_at ON issues(created_at)',
                'CREATE INDEX IF NOT EXISTS idx_profiles_points ON profiles(points)',
                'CREATE INDEX IF NOT EXISTS idx_comments_issue ON issue_comments(issue_id)',
                'CREATE INDEX IF NOT EXISTS idx_donations_fundraiser ON donations(fundraiser_id)',
            ]
            for index_sql in indexes:
                c.execute(index_sql)

            conn.commit()
        except sqlite3.Error as e:
            logger.error("❌ Migration error: %s", e)
            conn.rollback()
            raise
        finally:
            conn.close()

    # Issues
    def create_issue(self, issue_data):
        """Insert an issue record and return its id"""
        issue_data = dict(issue_data)
        now = datetime.now().isoformat()
        issue_data.setdefault('status', 'Open')
        issue_data.setdefault('created_at', now)
        issue_data.setdefault('updated_at', now)
        if 'ai_spam_detected' in issue_data:
            issue_data['ai_spam_detected'] = int(bool(issue_data['ai_spam_detected']))

        columns = [key for key, value in issue_data.items() if value is not None and key in ISSUE_COLUMNS]
        values = [issue_data[key] for key in columns]
        placeholders = ', '.join('?' for _ in columns)

        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute(f"INSERT INTO issues ({', '.join(columns)}) VALUES ({placeholders})", values)
            conn.commit()
            issue_id = c.lastrowid
            logger.info("✅ Issue #%s created: %s", issue_id, issue_data.get('ai_category'))
            return issue_id
        finally:
            conn.close()

    def get_issue(self, issue_id):
        conn = self.get_connection()
        try:
            row = conn.execute('SELECT * FROM issues WHERE id = ?', (issue_id,)).fetchone()
            return self._issue_from_row(row) if row else None
        finally:
            conn.close()

    def get_issues(self, filters=None, page=1, per_page=20):
        """Get issues with filtering and pagination, newest first"""
        where_conditions = []
        params = []

        for key, value in (filters or {}).items():
            if value is None:
                continue
            if key == 'search':
                where_conditions.append('(title LIKE ? OR description LIKE ?)')
                params.extend([f'%{value}%', f'%{value}%'])
            elif key in ISSUE_FILTER_COLUMNS:
                where_conditions.append(f'{key} = ?')
                params.append(value)

        where_clause = ' AND '.join(where_conditions) if where_conditions else '1=1'
        offset = (page - 1) * per_page

        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute(f'''
                SELECT * FROM issues
                WHERE {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
            ''', params + [per_page, offset])
            issues = [self._issue_from_row(row) for row in c.fetchall()]

            c.execute(f'SELECT COUNT(*) FROM issues WHERE {where_clause}', params)
            total_count = c.fetchone()[0]
        finally:
            conn.close()

        return {
            'issues': issues,
            'pagination': {
                'page': page,
                'per_page': per_page,
                'total_count': total_count,
                'total_pages': (total_count + per_page - 1) // per_page
            }
        }

    def update_issue_status(self, issue_id, new_status, resolved_by=None):
        """Change an issue's status. Returns the previous status, or None if the issue doesn't exist."""
        conn = self.get_connection()
        try:
            c = conn.cursor()
            row = c.execute('SELECT status FROM issues WHERE id = ?', (issue_id,)).fetchone()
            if row is None:
                logger.warning("⚠️ Issue #%s not found for update", issue_id)
                return None

            now = datetime.now().isoformat()
            if new_status == 'Resolved' and row['status'] != 'Resolved':
                c.execute('UPDATE issues SET status = ?, updated_at = ?, resolved_at = ?, resolved_by = ? WHERE id = ?',
                          (new_status, now, now, resolved_by, issue_id))
            else:
                c.execute('UPDATE issues SET status = ?, updated_at = ? WHERE id = ?', (new_status, now, issue_id))
            conn.commit()
            logger.info("✅ Issue #%s status %s -> %s", issue_id, row['status'], new_status)
            return row['status']
        finally:
            conn.close()

    def get_candidate_issues(self, category=None, limit=50):
        """Newest issue summaries, optionally restricted to one category"""
        query = f'SELECT {SUMMARY_COLUMNS} FROM issues'
        params = []
        if category:
            query += ' WHERE ai_category = ?'
            params.append(category)
        query += ' ORDER BY created_at DESC, id DESC LIMIT ?'
        params.append(limit)

        conn = self.get_connection()
        try:
            return [dict(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def get_issues_with_coordinates(self, limit=100):
        conn = self.get_connection()
        try:
            rows = conn.execute(f'''
                SELECT {SUMMARY_COLUMNS} FROM issues
                WHERE latitude IS NOT NULL AND longitude IS NOT NULL
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            ''', (limit,)).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def get_issues_geojson(self, limit=1000):
        """Get issues in GeoJSON format for mapping"""
        features = []
        for issue in self.get_issues_with_coordinates(limit=limit):
            features.append({
                "type": "Feature",
                "geometry": {
                    "type": "Point",
                    "coordinates": [issue['longitude'], issue['latitude']]
                },
                "properties": {
                    "id": issue['id'],
                    "title": issue['title'],
                    "description": issue['description'],
                    "category": issue['ai_category'],
                    "status": issue['status'],
                    "image_url": issue.get('image_url'),
                    "created_at": issue['created_at'],
                    "has_image": bool(issue.get('image_url'))
                }
            })

        return {
            "type": "FeatureCollection",
            "features": features
        }

    def _issue_from_row(self, row):
        issue = dict(row)
        if 'ai_spam_detected' in issue:
            issue['ai_spam_detected'] = bool(issue['ai_spam_detected'])
        return issue

    # Analytics
    def get_platform_stats(self):
        """Headline numbers for the home page and the assistant"""
        conn = self.get_connection()
        c = conn.cursor()

        try:
            stats = {}
            stats['total_issues'] = c.execute('SELECT COUNT(*) FROM issues').fetchone()[0]
            stats['resolved_issues'] = c.execute("SELECT COUNT(*) FROM issues WHERE status = 'Resolved'").fetchone()[0]
            stats['total_groups'] = c.execute('SELECT COUNT(*) FROM volunteer_groups').fetchone()[0]
            stats['total_users'] = c.execute('SELECT COUNT(*) FROM profiles').fetchone()[0]
            stats['active_fundraisers'] = c.execute("SELECT COUNT(*) FROM fundraisers WHERE status = 'active'").fetchone()[0]
            stats['total_donations'] = c.execute(
                "SELECT COALESCE(SUM(amount), 0) FROM donations WHERE payment_status = 'completed'"
            ).fetchone()[0]
            return stats
        except sqlite3.Error as e:
            logger.warning("⚠️ Error getting stats: %s", e)
            # Return empty stats instead of crashing
            return dict(EMPTY_STATS)
        finally:
            conn.close()

    # Profiles
    def create_profile(self, user_id, email=None, full_name='', username=None, avatar_url=''):
        """Create a profile unless one already exists. Returns True if a row was inserted."""
        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute('''
                INSERT OR IGNORE INTO profiles (id, email, full_name, username, avatar_url, points)
                VALUES (?, ?, ?, ?, ?, 0)
            ''', (user_id, email, full_name or '', username, avatar_url or ''))
            conn.commit()
            return c.rowcount > 0
        finally:
            conn.close()

    def get_profile(self, user_id):
        conn = self.get_connection()
        try:
            row = conn.execute('SELECT * FROM profiles WHERE id = ?', (user_id,)).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    # Groups
    def create_group(self, name, created_by, description=None, issue_id=None):
        """Create a volunteer group; the creator becomes its first member"""
        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute('INSERT INTO volunteer_groups (name, description, issue_id, created_by) VALUES (?, ?, ?, ?)',
                      (name, description, issue_id, created_by))
            group_id = c.lastrowid
            c.execute('INSERT OR IGNORE INTO group_members (group_id, user_id) VALUES (?, ?)', (group_id, created_by))
            conn.commit()
            logger.info("✅ Group #%s '%s' created by %s", group_id, name, created_by)
            return group_id
        finally:
            conn.close()

    def get_group(self, group_id):
        conn = self.get_connection()
        try:
            row = conn.execute('SELECT * FROM volunteer_groups WHERE id = ?', (group_id,)).fetchone()
            if row is None:
                return None
            group = dict(row)
            group['member_count'] = conn.execute(
                'SELECT COUNT(*) FROM group_members WHERE group_id = ?', (group_id,)
            ).fetchone()[0]
            return group
        finally:
            conn.close()

    def join_group(self, group_id, user_id):
        """Add a member. Returns False when the user was already in the group."""
        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute('INSERT OR IGNORE INTO group_members (group_id, user_id) VALUES (?, ?)', (group_id, user_id))
            conn.commit()
            return c.rowcount > 0
        finally:
            conn.close()

    # Votes
    def add_vote(self, issue_id, user_id):
        """Upvote an issue. Returns False if the user had already voted."""
        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute('INSERT OR IGNORE INTO issue_votes (issue_id, user_id) VALUES (?, ?)', (issue_id, user_id))
            conn.commit()
            return c.rowcount > 0
        finally:
            conn.close()

    def remove_vote(self, issue_id, user_id):
        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute('DELETE FROM issue_votes WHERE issue_id = ? AND user_id = ?', (issue_id, user_id))
            conn.commit()
            return c.rowcount > 0
        finally:
            conn.close()

    def get_vote_count(self, issue_id):
        conn = self.get_connection()
        try:
            return conn.execute('SELECT COUNT(*) FROM issue_votes WHERE issue_id = ?', (issue_id,)).fetchone()[0]
        finally:
            conn.close()

    def has_voted(self, issue_id, user_id):
        conn = self.get_connection()
        try:
            row = conn.execute('SELECT 1 FROM issue_votes WHERE issue_id = ? AND user_id = ?',
                               (issue_id, user_id)).fetchone()
            return row is not None
        finally:
            conn.close()

    # Comments
    def add_comment(self, issue_id, user_id, comment_text):
        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute('INSERT INTO issue_comments (issue_id, user_id, comment_text, created_at) VALUES (?, ?, ?, ?)',
                      (issue_id, user_id, comment_text.strip(), datetime.now().isoformat()))
            conn.commit()
            return c.lastrowid
        finally:
            conn.close()

    def get_comments(self, issue_id):
        """Comments on an issue with the author's name, newest first"""
        conn = self.get_connection()
        try:
            rows = conn.execute('''
                SELECT c.id, c.issue_id, c.user_id, c.comment_text, c.created_at, p.full_name
                FROM issue_comments c
                LEFT JOIN profiles p ON p.id = c.user_id
                WHERE c.issue_id = ?
                ORDER BY c.created_at DESC, c.id DESC
            ''', (issue_id,)).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    # Fundraisers
    def create_fundraiser(self, title, created_by, target_amount, group_id=None, description=None, issue_id=None):
        conn = self.get_connection()
        try:
            c = conn.cursor()
            c.execute('''
                INSERT INTO fundraisers (group_id, issue_id, created_by, title, description, target_amount, current_amount, status)
                VALUES (?, ?, ?, ?, ?, ?, 0, 'active')
            ''', (group_id, issue_id, created_by, title, description, target_amount))
            conn.commit()
            logger.info("✅ Fundraiser #%s '%s' created by %s", c.lastrowid, title, created_by)
            return c.lastrowid
        finally:
            conn.close()

    def get_fundraiser(self, fundraiser_id):
        conn = self.get_connection()
        try:
            row = conn.execute('SELECT * FROM fundraisers WHERE id = ?', (fundraiser_id,)).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def get_fundraisers(self, group_id=None, status=None):
        query = 'SELECT * FROM fundraisers'
        where_conditions = []
        params = []
        if group_id is not None:
            where_conditions.append('group_id = ?')
            params.append(group_id)
        if status:
            where_conditions.append('status = ?')
            params.append(status)
        if where_conditions:
            query += ' WHERE ' + ' AND '.join(where_conditions)
        query += ' ORDER BY created_at DESC, id DESC'

        conn = self.get_connection()
        try:
            return [dict(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def record_donation(self, fundraiser_id, amount, donor_user_id=None, donor_name=None, donor_email=None,
                        payment_method='card', transaction_id=None):
        """Record a completed payment against an active fundraiser.

        Funds go to the group leader when the fundraiser belongs to a group,
        otherwise to its creator. Returns the donation row, or None when the
        fundraiser is missing or closed.
        """
        conn = self.get_connection()
        try:
            c = conn.cursor()
            fundraiser = c.execute('''
                SELECT f.id, f.status, f.created_by, g.created_by AS group_leader
                FROM fundraisers f
                LEFT JOIN volunteer_groups g ON g.id = f.group_id
                WHERE f.id = ?
            ''', (fundraiser_id,)).fetchone()
            if fundraiser is None or fundraiser['status'] != 'active':
                logger.warning("⚠️ Fundraiser #%s is not accepting donations", fundraiser_id)
                return None

            c.execute('''
                INSERT INTO donations (fundraiser_id, donor_user_id, donor_name, donor_email, recipient_user_id,
                                       amount, payment_status, payment_method, transaction_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 'completed', ?, ?, ?)
            ''', (fundraiser_id, donor_user_id, donor_name, donor_email,
                  fundraiser['group_leader'] or fundraiser['created_by'], amount,
                  payment_method, transaction_id, datetime.now().isoformat()))
            donation_id = c.lastrowid

            invoice_number = f"INV-{int(datetime.now().timestamp() * 1000)}-{donation_id:08d}"
            c.execute('UPDATE donations SET invoice_number = ? WHERE id = ?', (invoice_number, donation_id))
            c.execute('UPDATE fundraisers SET current_amount = COALESCE(current_amount, 0) + ? WHERE id = ?',
                      (amount, fundraiser_id))
            conn.commit()
            logger.info("💰 Donation #%s of %.2f to fundraiser #%s", donation_id, amount, fundraiser_id)

            return dict(c.execute('SELECT * FROM donations WHERE id = ?', (donation_id,)).fetchone())
        except sqlite3.Error as e:
            logger.error("❌ Error recording donation: %s", e)
            conn.rollback()
            raise
        finally:
            conn.close()
