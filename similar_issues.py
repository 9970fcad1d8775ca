# similar_issues.py
import logging
import math
import re
import sqlite3

import config
from issue_classifier import FALLBACK_CATEGORY, classifier as default_classifier

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset([
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of', 'with',
    'is', 'are', 'was', 'were', 'be', 'been', 'being', 'have', 'has', 'had', 'do', 'does', 'did',
    'will', 'would', 'should', 'could', 'may', 'might', 'must', 'can',
    'this', 'that', 'these', 'those', 'i', 'you', 'he', 'she', 'it', 'we', 'they',
    'me', 'him', 'her', 'us', 'them',
])

MIN_QUERY_LENGTH = 10
MAX_KEYWORDS = 10
SIMILARITY_THRESHOLD = 0.2
EARTH_RADIUS_KM = 6371


def extract_keywords(text):
    """Words longer than 3 characters that aren't stop words, first 10 only"""
    words = re.split(r'\s+', text.lower())
    return [word for word in words if len(word) > 3 and word not in STOP_WORDS][:MAX_KEYWORDS]


def calculate_similarity(text1, text2, keywords=None):
    """0.6 x keyword coverage + 0.4 x Jaccard word overlap; containment counts as a perfect match"""
    if not text1 or not text2:
        return 0

    lower1 = text1.lower()
    lower2 = text2.lower()

    if lower2 in lower1 or lower1 in lower2:
        return 1.0

    if keywords is None:
        keywords = extract_keywords(text1)

    matches = sum(1 for keyword in keywords if keyword in lower2)
    keyword_score = matches / len(keywords) if keywords else 0

    words1 = set(lower1.split())
    words2 = set(lower2.split())
    union = words1 | words2
    jaccard_score = len(words1 & words2) / len(union) if union else 0

    return keyword_score * 0.6 + jaccard_score * 0.4


def haversine_distance(lat1, lng1, lat2, lng2):
    """Great-circle distance in kilometres"""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class SimilarIssueFinder:
    def __init__(self, db_manager, issue_classifier=None, candidate_pool=None, nearby_pool=None):
        self.db_manager = db_manager
        self.classifier = issue_classifier or default_classifier
        self.candidate_pool = candidate_pool or config.SIMILARITY_CANDIDATE_POOL
        self.nearby_pool = nearby_pool or config.NEARBY_CANDIDATE_POOL

    def find_similar_issues(self, text, limit=5):
        """Stored issues that read like `text`, most similar first.

        The candidate pool is narrowed to the query's own category when it
        has one, so a misclassified query only sees that category.
        """
        if not text or not isinstance(text, str) or len(text) < MIN_QUERY_LENGTH:
            return []

        category = self.classifier.classify_text_category(text)['category']
        keywords = extract_keywords(text)

        try:
            candidates = self.db_manager.get_candidate_issues(
                category=category if category != FALLBACK_CATEGORY else None,
                limit=self.candidate_pool,
            )
        except sqlite3.Error as e:
            logger.error("❌ Error finding similar issues: %s", e)
            return []

        scored = []
        for issue in candidates:
            score = calculate_similarity(text, issue.get('description') or issue.get('title'), keywords)
            if score > SIMILARITY_THRESHOLD:
                scored.append(dict(issue, similarity_score=round(score, 4)))

        scored.sort(key=lambda item: item['similarity_score'], reverse=True)
        return scored[:limit]

    def find_nearby_issues(self, lat, lng, radius_km=2, limit=10):
        """Issues within `radius_km` of a point, nearest first"""
        try:
            candidates = self.db_manager.get_issues_with_coordinates(limit=self.nearby_pool)
        except sqlite3.Error as e:
            logger.error("❌ Error finding nearby issues: %s", e)
            return []

        nearby = []
        for issue in candidates:
            if issue.get('latitude') is None or issue.get('longitude') is None:
                continue
            distance = haversine_distance(lat, lng, issue['latitude'], issue['longitude'])
            if distance <= radius_km:
                nearby.append(dict(issue, distance=round(distance, 3)))

        nearby.sort(key=lambda item: item['distance'])
        return nearby[:limit]
