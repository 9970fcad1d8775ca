# issue_classifier.py
import logging
import re
from types import MappingProxyType

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = 'Other'

# Declaration order matters: on equal keyword counts the earlier category wins.
ISSUE_CATEGORIES = MappingProxyType({
    'Water Clogging': ('water', 'flood', 'leak', 'drainage', 'sewage', 'overflow', 'puddle', 'waterlogged'),
    'Road Damage': ('pothole', 'road', 'asphalt', 'crack', 'surface', 'bump', 'broken road', 'damaged'),
    'Garbage': ('garbage', 'trash', 'waste', 'litter', 'dump', 'rubbish', 'refuse', 'debris'),
    'Streetlight': ('light', 'lamp', 'streetlight', 'bulb', 'dark', 'illumination', 'broken light'),
    'Public Safety': ('danger', 'unsafe', 'hazard', 'emergency', 'accident', 'risk', 'safety'),
    'Traffic Issue': ('traffic', 'congestion', 'parking', 'vehicle', 'roadblock', 'jam'),
    'Environmental': ('tree', 'pollution', 'air', 'noise', 'environment', 'green'),
    FALLBACK_CATEGORY: (),
})

PRIORITY_KEYWORDS = MappingProxyType({
    'high': ('emergency', 'urgent', 'danger', 'hazard', 'accident', 'critical', 'immediate', 'broken', 'severe', 'blocked'),
    'medium': ('issue', 'problem', 'needs', 'should', 'concern', 'affecting'),
    'low': ('minor', 'small', 'slight', 'cosmetic', 'when possible'),
})

SENTIMENT_KEYWORDS = MappingProxyType({
    'positive': ('great', 'good', 'excellent', 'thank', 'appreciate', 'helpful', 'solved', 'fixed'),
    'negative': ('terrible', 'awful', 'bad', 'horrible', 'disappointed', 'frustrated', 'angry', 'broken', 'failed'),
    'neutral': (),
})

CRITICAL_CATEGORIES = frozenset({'Public Safety', 'Water Clogging', 'Road Damage'})
URGENT_IMAGE_MARKERS = ('urgent', 'danger', 'critical')

NEUTRAL_CONFIDENCE = 0.5
NO_EVIDENCE_CONFIDENCE = 0.1

SPAM_PATTERNS = (
    re.compile(r'https?://'),
    re.compile(r'[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}'),
    re.compile(r'(buy|sell|cheap|discount|offer|deal).*now', re.IGNORECASE),
    re.compile(r'(click|visit|call).*(now|today)', re.IGNORECASE),
)
REPEATED_CHARACTERS = re.compile(r'(.)\1{5,}')


def _count_hits(text_lower, keywords):
    return sum(1 for keyword in keywords if keyword in text_lower)


class IssueClassifier:
    """Rule-based classifier for civic issue descriptions.

    All tables are module constants; the class holds no state, so one
    shared instance is enough.
    """

    def classify_text_category(self, text):
        """Pick the category whose keywords appear most often in the text"""
        if not text or not isinstance(text, str):
            return {'category': FALLBACK_CATEGORY, 'confidence': 0, 'scores': {}}

        text_lower = text.lower()
        best_category = FALLBACK_CATEGORY
        best_score = 0
        scores = {}

        for category, keywords in ISSUE_CATEGORIES.items():
            if category == FALLBACK_CATEGORY:
                continue
            score = _count_hits(text_lower, keywords)
            scores[category] = score
            if score > best_score:
                best_score = score
                best_category = category

        confidence = min(best_score / 3, 1) if best_score > 0 else NO_EVIDENCE_CONFIDENCE

        return {
            'category': best_category,
            'confidence': round(confidence, 2),
            'scores': scores,
        }

    def analyze_sentiment(self, text):
        """Label the tone of a description as positive, negative or neutral"""
        if not text or not isinstance(text, str):
            return {'sentiment': 'neutral', 'confidence': 0}

        text_lower = text.lower()
        positive = _count_hits(text_lower, SENTIMENT_KEYWORDS['positive'])
        negative = _count_hits(text_lower, SENTIMENT_KEYWORDS['negative'])

        if positive > negative and positive > 0:
            sentiment, confidence = 'positive', min(positive / 5, 1)
        elif negative > positive and negative > 0:
            sentiment, confidence = 'negative', min(negative / 5, 1)
        else:
            sentiment, confidence = 'neutral', NEUTRAL_CONFIDENCE

        return {'sentiment': sentiment, 'confidence': round(confidence, 2)}

    def detect_spam(self, text):
        """Flag descriptions that look like junk. Rules are checked in order; first hit wins."""
        if not text or not isinstance(text, str):
            return {'is_spam': False, 'confidence': 0}

        if len(text.strip()) < 10:
            return {'is_spam': True, 'confidence': 0.7, 'reason': 'Description too short'}

        if REPEATED_CHARACTERS.search(text):
            return {'is_spam': True, 'confidence': 0.8, 'reason': 'Repeated characters detected'}

        text_lower = text.lower()
        for pattern in SPAM_PATTERNS:
            if pattern.search(text_lower):
                return {'is_spam': True, 'confidence': 0.9, 'reason': 'Spam pattern detected'}

        return {'is_spam': False, 'confidence': 0.1}

    def calculate_priority(self, text, category, sentiment, image_category=None):
        """Score urgency from keywords, category, sentiment and the image label.

        Every rule that changes the score also adds its reason, so the
        reasoning string always explains the final number.
        """
        text_lower = text.lower() if isinstance(text, str) else ''
        score = 0
        reasons = []

        high_hits = _count_hits(text_lower, PRIORITY_KEYWORDS['high'])
        if high_hits:
            score += 3 * high_hits
            reasons.append('Contains urgent keywords')

        medium_hits = _count_hits(text_lower, PRIORITY_KEYWORDS['medium'])
        if medium_hits:
            score += medium_hits
            reasons.append('Contains concern keywords')

        if category in CRITICAL_CATEGORIES:
            score += 2
            reasons.append(f'Critical category: {category}')

        if sentiment == 'negative':
            score += 2
            reasons.append('Negative sentiment indicates urgency')
        elif sentiment == 'positive':
            score -= 1
            reasons.append('Positive sentiment lowers urgency')

        if image_category and any(marker in image_category.lower() for marker in URGENT_IMAGE_MARKERS):
            score += 3
            reasons.append('Image indicates urgency')

        if score >= 5:
            priority = 'High'
        elif score >= 2:
            priority = 'Medium'
        else:
            priority = 'Low'

        return {
            'priority': priority,
            'score': score,
            'reasoning': ', '.join(reasons) or 'Based on standard assessment',
        }

    def analyze_text(self, text):
        """Run category, sentiment and spam checks in one go"""
        return {
            'text_analysis': self.classify_text_category(text),
            'sentiment': self.analyze_sentiment(text),
            'spam': self.detect_spam(text),
        }


# Global instance
classifier = IssueClassifier()
