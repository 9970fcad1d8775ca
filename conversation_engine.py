# conversation_engine.py
import re

ISSUE_KEYWORDS = ('water', 'leak', 'pothole', 'road', 'garbage', 'trash', 'light', 'broken', 'damage', 'problem', 'issue')

NARRATIVE_PATTERN = re.compile(r"\b(there is|there's|there are|i see|i saw|i noticed|i found|we have|someone)\b")

MIN_DESCRIPTION_LENGTH = 10

# Intents whose reply depends on running the analysis components
ACTIONS = {
    'report_request': 'open_report',
    'image_request': 'upload_image',
    'similarity_request': 'find_similar',
    'stats_request': 'fetch_stats',
    'issue_description': 'analyze_text',
}


class ConversationEngine:
    def __init__(self):
        self.intent_rules = self._build_intent_rules()
        self.response_templates = self._build_response_templates()

    def _build_intent_rules(self):
        """Ordered (intent, pattern) pairs. The first match wins, so specific intents come first."""
        return [
            ('greeting', re.compile(r'\b(hello|hi|hey|howdy|greetings|good morning|good afternoon|good evening)\b')),
            ('farewell', re.compile(r'\b(bye|goodbye|see you|farewell|good night)\b')),
            ('thanks', re.compile(r'\b(thanks?|thank you|thx|appreciate)\b')),
            ('stats_request', re.compile(r'\b(statistics|stats|how many|numbers|total (issues|reports|users|donations))\b')),
            ('similarity_request', re.compile(r'\b(similar|related|duplicates?|already reported|nearby issues|near me)\b')),
            ('report_request', re.compile(r'\b(report|new issue|submit|complaint)\b')),
            ('image_request', re.compile(r'\b(analy[sz]e|classify|image|photo|picture|upload)\b')),
            ('category_info', re.compile(r'\b(category|categories|what types|what kinds|which types|which kinds)\b')),
            ('priority_info', re.compile(r'\b(priority|priorities|urgency|how urgent|how important)\b')),
            ('help', re.compile(r'\b(help|commands|what can you|features|capabilities|how does this work)\b')),
        ]

    def _build_response_templates(self):
        """Static reply and suggestion list per intent"""
        return {
            'greeting': {
                'content': "Hello! I'm WeFix Smart AI. I can help you report issues, classify problems, analyze images, and answer questions about civic issues. How can I assist you today?",
                'suggestions': ["Report a new issue", "Analyze an image", "What categories can I report?", "How does priority work?"]
            },
            'farewell': {
                'content': "Goodbye! Thanks for helping keep our community in good shape. Come back any time you spot something that needs fixing. 👋",
                'suggestions': []
            },
            'thanks': {
                'content': "You're very welcome! I'm happy to help make our community better. 😊 Feel free to report any other issues you notice.",
                'suggestions': ["Report a new issue", "Show me platform statistics"]
            },
            'report_request': {
                'content': "I can help you report an issue! To get started, please:\n\n1. Describe the issue (e.g., 'There's a water leak on Main Street')\n2. Optionally upload an image\n\nOnce you provide the details, I'll analyze it and predict the category, priority, and other insights automatically.",
                'suggestions': ["Describe your issue"]
            },
            'image_request': {
                'content': "I can analyze images to classify issues! Please upload an image of the problem, and I'll:\n\n• Identify the issue category\n• Estimate priority level\n• Detect urgency indicators\n• Check for spam",
                'suggestions': ["Upload an image"]
            },
            'category_info': {
                'content': "I can classify issues into these categories:\n\n🏷️ **Water Clogging** - Leaks, floods, drainage issues\n🏷️ **Road Damage** - Potholes, cracks, surface problems\n🏷️ **Garbage** - Trash, waste, litter problems\n🏷️ **Streetlight** - Broken lights, dark areas\n🏷️ **Public Safety** - Hazards, dangerous conditions\n🏷️ **Traffic Issue** - Congestion, parking problems\n🏷️ **Environmental** - Pollution, tree issues\n\nJust describe your issue and I'll automatically classify it!",
                'suggestions': []
            },
            'priority_info': {
                'content': "I analyze priority based on multiple factors:\n\n🔴 **High Priority**: Emergency keywords, public safety issues, severe problems\n🟠 **Medium Priority**: Standard issues needing attention\n🟡 **Low Priority**: Minor cosmetic issues\n\nFactors I consider:\n• Urgent keywords (emergency, danger, etc.)\n• Issue category (Public Safety = higher priority)\n• Sentiment analysis (negative tone = higher priority)\n• Image classification results\n\nWould you like me to analyze a specific issue?",
                'suggestions': ["Describe an issue to analyze"]
            },
            'help': {
                'content': "I'm WeFix Smart AI, your civic issue assistant! Here's what I can do:\n\n✨ **Text Classification** - Detect issue category from descriptions\n📷 **Image Analysis** - Classify issues from photos\n⚡ **Priority Scoring** - Estimate urgency (High/Medium/Low)\n💬 **Sentiment Analysis** - Detect tone and urgency\n🚫 **Spam Detection** - Filter irrelevant reports\n🔎 **Similar Issues** - Find problems that were already reported\n📊 **Statistics** - Show platform numbers\n\n**How to use me:**\n• Describe an issue → I'll classify it\n• Upload an image → I'll analyze it\n• Ask questions → I'll explain features\n• Say 'report issue' → I'll guide you through reporting",
                'suggestions': ["How to report an issue?", "Analyze an image", "What categories exist?"]
            },
            'similarity_request': {
                'content': "Let me look for similar issues that have already been reported...",
                'suggestions': ["Report a new issue", "Describe your issue"]
            },
            'stats_request': {
                'content': "Here are the latest platform statistics:",
                'suggestions': ["Report a new issue", "Find similar issues"]
            },
            'issue_description': {
                'content': "I see you've described an issue. Let me analyze it...",
                'suggestions': ["Save this issue", "Analyze another issue"]
            },
            'fallback': {
                'content': "I understand you want help with civic issues. I can:\n\n• Analyze issue descriptions and images\n• Classify issues into categories\n• Estimate priority levels\n• Detect sentiment and spam\n• Help you report issues\n\nYou can describe an issue, upload an image, or ask me questions. What would you like to do?",
                'suggestions': ["Report a new issue", "Analyze an image", "Explain categories", "How does priority work?"]
            },
        }

    def route(self, message, history=None):
        """Decide what the user wants from one chat message. Only the message itself is matched."""
        if not message or not isinstance(message, str):
            return 'fallback'

        message_lower = message.lower().strip()

        for intent, pattern in self.intent_rules:
            if pattern.search(message_lower):
                return intent

        if self.looks_like_issue_description(message_lower):
            return 'issue_description'

        return 'fallback'

    def looks_like_issue_description(self, message_lower):
        """A keyword or narrative phrase, and enough text to be more than casual chat"""
        if len(message_lower) <= MIN_DESCRIPTION_LENGTH:
            return False

        if any(keyword in message_lower for keyword in ISSUE_KEYWORDS):
            return True
        return bool(NARRATIVE_PATTERN.search(message_lower))

    def generate_response(self, intent):
        """Reply template for an intent, with the action the caller should run (if any)"""
        if intent not in self.response_templates:
            intent = 'fallback'

        template = self.response_templates[intent]
        response = {
            'intent': intent,
            'content': template['content'],
            'suggestions': list(template['suggestions']),
        }
        if intent in ACTIONS:
            response['action'] = ACTIONS[intent]
        return response

    def generate_smart_suggestions(self, history, user_input):
        """Up to four follow-ups based on what was just said"""
        suggestions = []
        lower_input = (user_input or '').lower()
        recent_context = ' '.join((turn.get('content') or '').lower() for turn in (history or [])[-3:])

        if 'report' in lower_input or 'issue' in lower_input or 'problem' in lower_input:
            suggestions.extend(["Show me how to report an issue", "What categories of issues can I report?", "Find similar issues in my area"])

        if 'category' in lower_input or 'type' in lower_input:
            suggestions.extend(["Report a water clogging issue", "Report road damage", "Report garbage problems"])

        if 'location' in lower_input or 'where' in lower_input or 'near' in lower_input:
            suggestions.extend(["Use my current location", "Search for issues near me"])

        if 'image' in recent_context or 'photo' in recent_context or 'picture' in recent_context:
            suggestions.extend(["Analyze this image", "How does image analysis work?"])

        if not suggestions:
            suggestions = ["Report a new issue", "Show me platform statistics", "Find similar issues", "Explain how priority works"]

        return suggestions[:4]
