# issue_pipeline.py
import logging
from datetime import datetime, timezone

from geocoding_service import geocoder as default_geocoder
from image_classifier import image_classifier as default_image_classifier
from issue_classifier import FALLBACK_CATEGORY, classifier as default_classifier
from location_extractor import extract_location_info

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100


def resolve_category(analysis):
    """Image label when the model actually ran, otherwise the text label"""
    text_category = (analysis.get('text_analysis') or {}).get('category') or FALLBACK_CATEGORY
    image_analysis = analysis.get('image_analysis')
    if image_analysis and not image_analysis.get('used_fallback'):
        return image_analysis.get('category') or text_category
    return text_category


class IssuePipeline:
    """Text (and optional photo) in, structured assessment out.

    Steps run one after another because later ones use earlier results:
    classify, then locate, then search for similar issues. Collaborator
    failures (model, geocoder, store) degrade to defaults inside each step;
    anything else propagates to the caller.
    """

    def __init__(self, similar_finder=None, geocoding_service=None, image_classifier=None, issue_classifier=None):
        self.similar_finder = similar_finder
        self.geocoder = geocoding_service or default_geocoder
        self.image_classifier = image_classifier or default_image_classifier
        self.classifier = issue_classifier or default_classifier

    def analyze(self, text, image=None, image_url=None, device_location=None,
                include_location=True, include_similar=True, similar_limit=5):
        text = text if isinstance(text, str) else ''

        analysis = self.classifier.analyze_text(text)
        analysis['image_analysis'] = None

        if image is not None:
            analysis['image_analysis'] = self.image_classifier.classify_image(image)
        elif image_url:
            analysis['image_analysis'] = self.image_classifier.classify_image_url(image_url)

        image_category = analysis['image_analysis']['category'] if analysis['image_analysis'] else None
        analysis['priority'] = self.classifier.calculate_priority(
            text,
            resolve_category(analysis),
            analysis['sentiment']['sentiment'],
            image_category,
        )

        analysis['location_info'] = None
        if include_location:
            analysis['location_info'] = extract_location_info(
                text, device_location=device_location, geocoding_service=self.geocoder
            )

        analysis['similar_issues'] = []
        if include_similar and self.similar_finder is not None:
            analysis['similar_issues'] = self.similar_finder.find_similar_issues(text, limit=similar_limit)

        analysis['timestamp'] = datetime.now(timezone.utc).isoformat()

        logger.info("🧠 Analyzed issue: %s / %s priority", resolve_category(analysis), analysis['priority']['priority'])
        return analysis


def build_issue_record(analysis, description, user_id=None, image_url=None):
    """Flatten an analysis into the fields of a new issue row"""
    description = (description or '').strip()
    location = analysis.get('location_info') or {}
    text_analysis = analysis.get('text_analysis') or {}
    priority = analysis.get('priority') or {}
    sentiment = analysis.get('sentiment') or {}
    spam = analysis.get('spam') or {}

    return {
        'title': description[:MAX_TITLE_LENGTH] or 'AI Detected Issue',
        'description': description or 'AI-detected issue',
        'image_url': image_url,
        'latitude': location.get('lat'),
        'longitude': location.get('lng'),
        'status': 'Open',
        'ai_category': resolve_category(analysis),
        'ai_priority': priority.get('priority', 'Medium'),
        'ai_confidence': text_analysis.get('confidence', 0.5),
        'ai_sentiment': sentiment.get('sentiment', 'neutral'),
        'ai_spam_detected': bool(spam.get('is_spam', False)),
        'user_id': user_id,
    }
