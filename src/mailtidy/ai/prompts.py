"""Prompt templates for batch cleanup classification."""

_FAST_SCHEMA = (
    '[{{"id": 1, "category": "promotional|newsletter|personal|automated|transactional|spam|social", '
    '"cleanupRecommendation": "delete|keep", "reasoning": "<reason>", '
    '"confidence": "high|medium|low"}}, ...]'
)

_FULL_SCHEMA = (
    '[{{"id": 1, "category": "promotional|newsletter|personal|automated|transactional|spam|social|business", '
    '"priority": "high|medium|low", "cleanupRecommendation": "delete|keep", '
    '"reasoning": "<reason>", "spaceImpact": "high|medium|low", '
    '"confidence": "high|medium|low"}}, ...]'
)

FAST_INITIAL_PROMPT = """You are an email management assistant. Decide which of these emails can be cleaned up, using the subject and sender as context clues.

Return a JSON array in exactly the same order:
""" + _FAST_SCHEMA.replace("<reason>", "Specific reason for this decision") + """

Emails to analyze:
{emails}

DELETE when the email is:
- Newsletter or marketing content (unsubscribe language, promotional wording)
- A social media notification (mentions, likes, follows)
- An automated alert that is no longer relevant
- Spam or suspicious
- Time-sensitive content that has expired (old deals, past events)
- Bulk promotion from a retailer

KEEP when the email is:
- Personal correspondence from an individual
- An important business or work communication
- A legal, financial or official document
- A receipt or confirmation for a recent purchase or booking
- An account security notification
- Reference material that is still relevant

Be decisive, but keep anything unclear.

CONFIDENCE:
- high: clear indicators make the decision obvious
- medium: good indicators with some uncertainty
- low: the headers are not enough; the email content is needed"""

FULL_INITIAL_PROMPT = """You are an email management consultant. Analyze these emails in detail for inbox cleanup, weighing business value, personal importance and how current they are.

Return a JSON array in exactly the same order:
""" + _FULL_SCHEMA.replace("<reason>", "Detailed rationale") + """

Emails to analyze:
{emails}

DELETE:
- Marketing emails and newsletters, even from known brands
- Social media notifications
- Expired promotions and time-limited offers
- Shipping notifications older than 30 days
- Outdated automated alerts, welcome and onboarding sequences
- Notifications for past events and used password resets

KEEP:
- Personal emails from family, friends and colleagues
- Business correspondence with ongoing relevance
- Contracts, statements, receipts and tax documents
- Security alerts and important account notifications
- Travel confirmations for recent or future trips
- Medical, government and official correspondence

Explain WHY each email should be kept or deleted.

CONFIDENCE:
- high: several clear indicators support the decision
- medium: some indicators, more context would help
- low: the headers alone are not enough"""

FAST_ENHANCED_PROMPT = """You are an email management assistant. These emails were uncertain after a first look at their headers. Use the preview text to reach a confident decision.

Return a JSON array in exactly the same order:
""" + _FAST_SCHEMA.replace("<reason>", "Reason based on the preview") + """

Emails with previews:
{emails}

From the preview, decide:
- Is it promotional or marketing content?
- Is it personal communication?
- Is it an automated notification or human correspondence?
- Is the information still relevant or expired?

With a preview available most decisions should be high confidence."""

FULL_ENHANCED_PROMPT = """You are an email management consultant. These emails needed more context than their headers provided. Use the preview text to make thorough, confident decisions.

Return a JSON array in exactly the same order:
""" + _FULL_SCHEMA.replace("<reason>", "Detailed analysis based on the preview") + """

Emails with previews:
{emails}

Weigh the preview for:
- Communication type and relationship to the sender
- Business or personal value
- Time sensitivity and current relevance
- Legal, financial or operational importance

Aim for high confidence unless the content is truly ambiguous."""

SYSTEM_PROMPT = "You classify emails for inbox cleanup. Respond with JSON only."
