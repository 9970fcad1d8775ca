"""
Unit tests for issue_pipeline.py (category choice, issue records, full analysis)
"""

from issue_pipeline import build_issue_record, resolve_category


class TestResolveCategory:
    """Test which label an issue is filed under"""

    def test_model_image_label_wins(self):
        analysis = {
            'text_analysis': {'category': 'Garbage'},
            'image_analysis': {'category': 'Road Damage', 'used_fallback': False},
        }

        assert resolve_category(analysis) == 'Road Damage'

    def test_fallback_image_label_ignored(self):
        analysis = {
            'text_analysis': {'category': 'Garbage'},
            'image_analysis': {'category': 'Other', 'used_fallback': True},
        }

        assert resolve_category(analysis) == 'Garbage'

    def test_image_without_category_uses_text(self):
        analysis = {
            'text_analysis': {'category': 'Garbage'},
            'image_analysis': {'used_fallback': False},
        }

        assert resolve_category(analysis) == 'Garbage'

    def test_nothing_known(self):
        assert resolve_category({}) == 'Other'


class TestBuildIssueRecord:
    """Test flattening an analysis into an issue row"""

    def test_title_truncated(self):
        record = build_issue_record({}, 'x' * 150, user_id='user-1')

        assert len(record['title']) == 100
        assert record['description'] == 'x' * 150
        assert record['user_id'] == 'user-1'
        assert record['ai_priority'] == 'Medium'
        assert record['ai_spam_detected'] is False

    def test_empty_description(self):
        record = build_issue_record({}, '   ')

        assert record['title'] == 'AI Detected Issue'
        assert record['description'] == 'AI-detected issue'

    def test_location_copied(self):
        record = build_issue_record({'location_info': {'lat': 1.5, 'lng': 2.5}}, 'Broken light')

        assert (record['latitude'], record['longitude']) == (1.5, 2.5)


class TestAnalyze:
    """Test the full text-and-photo analysis"""

    def test_text_only(self, pipeline, seeded_db):
        analysis = pipeline.analyze("Large pothole on Oak Road causing damage to cars")

        assert analysis['text_analysis']['category'] == 'Road Damage'
        assert analysis['image_analysis'] is None
        assert analysis['location_info'] is None
        assert analysis['similar_issues'][0]['title'] == 'Large pothole on Oak Road'

    def test_skip_location_and_similar(self, pipeline, seeded_db):
        analysis = pipeline.analyze("Large pothole on Oak Road", include_location=False, include_similar=False)

        assert analysis['location_info'] is None
        assert analysis['similar_issues'] == []
