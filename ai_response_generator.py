# ai_response_generator.py


class AIResponseGenerator:
    def __init__(self):
        self.priority_emojis = self._build_priority_emojis()
        self.status_emojis = self._build_status_emojis()

    def _build_priority_emojis(self):
        return {
            'High': '🔴',
            'Medium': '🟠',
            'Low': '🟡'
        }

    def _build_status_emojis(self):
        return {
            'Open': '📥',
            'In Progress': '🔄',
            'Resolved': '✅'
        }

    def generate_analysis_response(self, analysis):
        """Turn an analysis result into the chat summary shown to the user"""
        parts = ["## Analysis Complete\n"]

        text_analysis = analysis.get('text_analysis')
        if text_analysis:
            parts.append(f"**Category**: {text_analysis['category']} ({self._percent(text_analysis['confidence'])} confidence)\n")

        image_analysis = analysis.get('image_analysis')
        if image_analysis:
            line = f"**Image Classification**: {image_analysis['category']} ({self._percent(image_analysis['confidence'])} confidence)"
            if image_analysis.get('used_fallback'):
                line += " - the image model wasn't available, so this is a default guess"
            parts.append(line + "\n")

        priority = analysis.get('priority')
        if priority:
            emoji = self.priority_emojis.get(priority['priority'], '🟡')
            parts.append(f"**Priority**: {emoji} {priority['priority']}\n**Reasoning**: {priority['reasoning']}\n")

        sentiment = analysis.get('sentiment')
        if sentiment:
            parts.append(f"**Sentiment**: {sentiment['sentiment']}\n")

        spam = analysis.get('spam')
        if spam and spam.get('is_spam'):
            parts.append(f"⚠️ **Warning**: Potential spam detected - {spam['reason']}\n")

        location = analysis.get('location_info')
        if location:
            place = location.get('display_name') or location.get('location_text') or f"{location['lat']:.5f}, {location['lng']:.5f}"
            source = 'from your description' if location.get('source') == 'text' else 'from your device'
            parts.append(f"📍 **Location**: {place} ({source})\n")

        similar = analysis.get('similar_issues')
        if similar:
            parts.append(self.generate_similar_issues_response(similar, heading="**Similar issues already reported:**") + "\n")

        parts.append("Would you like me to save this issue to the database?")
        return '\n'.join(parts)

    def generate_similar_issues_response(self, issues, heading="🔎 **Similar issues:**"):
        if not issues:
            return "I couldn't find any similar issues. Yours might be the first report of this problem!"

        lines = [heading]
        for issue in issues:
            emoji = self.status_emojis.get(issue.get('status'), '📋')
            line = f"• {emoji} #{issue['id']} {issue.get('title') or 'Untitled'} ({issue.get('ai_category') or 'Other'}, {issue.get('status') or 'Open'})"
            if 'similarity_score' in issue:
                line += f" - {self._percent(issue['similarity_score'])} match"
            lines.append(line)
        return '\n'.join(lines)

    def generate_nearby_issues_response(self, issues, radius_km):
        if not issues:
            return f"No issues have been reported within {radius_km} km of you."

        lines = [f"📍 **Issues within {radius_km} km:**"]
        for issue in issues:
            lines.append(f"• #{issue['id']} {issue.get('title') or 'Untitled'} - {issue['distance']:.2f} km away")
        return '\n'.join(lines)

    def generate_stats_response(self, stats):
        return (
            "📊 **Platform Statistics**\n\n"
            f"• Total issues reported: {stats.get('total_issues', 0)}\n"
            f"• Issues resolved: {stats.get('resolved_issues', 0)}\n"
            f"• Volunteer groups: {stats.get('total_groups', 0)}\n"
            f"• Community members: {stats.get('total_users', 0)}\n"
            f"• Active fundraisers: {stats.get('active_fundraisers', 0)}\n"
            f"• Total donations: {stats.get('total_donations', 0):,.2f}"
        )

    def generate_error_response(self):
        return "I encountered an error while analyzing. Please try again or describe the issue differently."

    def _percent(self, value):
        return f"{round((value or 0) * 100)}%"


# Global instance
response_generator = AIResponseGenerator()
