"""
leadflow/ai_engine/prompt_templates.py — All LangChain prompt templates for the AI engine.

Four prompt chains:
  1. LEAD_RESEARCH         — lead context → sectioned research report
  2. EMAIL_DRAFT           — research + score → personalized cold outreach email
  3. REPLY_CLASSIFICATION  — inbound reply → structured intent JSON
  4. REPLY_RESPONSE        — reply + classification → follow-up email
"""

from langchain_core.prompts import ChatPromptTemplate


# ── 1. Lead Research ──────────────────────────────────────────────────────────

LEAD_RESEARCH_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        (
            "You are a B2B research analyst with live web access. You research small "
            "and mid-sized businesses so a consultant can write a relevant first email. "
            "Be specific and factual. If information isn't available, say so instead of guessing."
        ),
    ),
    (
        "human",
        """Research this business for outreach about our service.

OUR SERVICE:
{product_description}

BUSINESS:
Company: {company_name}
Website: {company_domain}
Contact: {contact_name}
What we saw: {signal_summary}

Provide a research report with exactly these headed sections, in this order:

COMPANY BACKGROUND:
What they do, size indicators, years in business, niche.

DECISION MAKER:
Name and title of the founder/owner or the person who would buy our service.

PAIN POINTS:
Specific evidence of problems our service addresses.

PERSONALIZATION HOOKS:
Recent achievements, launches, milestones or news worth referencing.

RECOMMENDED APPROACH:
1-2 sentences on the most compelling way to open the conversation.

CONTACT EMAIL:
A publicly listed email address for the decision maker or the company, or "none".
""",
    ),
])


# ── 2. Email Draft ────────────────────────────────────────────────────────────

EMAIL_DRAFT_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        (
            "You write first-touch emails for a consultant who helps businesses win clients. "
            "Emails are short, specific to the recipient, and sound like one person writing to another. "
            "No hollow openers, no buzzwords, no hard sell."
        ),
    ),
    (
        "human",
        """Write a personalized first outreach email for this lead.

OUR SERVICE:
{product_description}

LEAD:
Company: {company_name}
Contact: {contact_name}
Background: {company_background}
Pain points: {pain_points}
Personalization hooks: {personalization_hooks}
Recommended approach: {recommended_approach}
Score notes: {score_reasoning}
Suggested approach: {suggested_approach}

REQUIREMENTS:
- Subject line: max 8 words, specific to them, no clickbait
- Body: 4-6 sentences, conversational
- Reference ONE concrete detail from the research
- End with a low-pressure question (e.g. "Worth a quick call?")
- Use the contact's first name only if it is given above
- Do NOT use placeholder text like [Name] or [Company]

Return ONLY a valid JSON object with exactly these two fields:
{{
  "subject": "<email subject line>",
  "body": "<email body as plain text, use \\n for line breaks>"
}}
""",
    ),
])


# ── 3. Reply Classification ───────────────────────────────────────────────────

REPLY_CLASSIFICATION_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        (
            "You classify replies to cold outreach emails. You are precise and conservative: "
            "when a reply is ambiguous, classify it as UNCLEAR."
        ),
    ),
    (
        "human",
        """Classify this reply to our outreach email.

ORIGINAL EMAIL SUBJECT: {original_subject}

REPLY:
{reply_text}

Intents:
- INTERESTED: wants to learn more or asks questions about the service
- READY_TO_BOOK: wants to schedule a call or meeting now
- NOT_INTERESTED: declines
- OBJECTION: raises a concern (price, timing, fit) without declining outright
- OUT_OF_OFFICE: automatic away / vacation reply
- UNSUBSCRIBE: asks not to be contacted again
- UNCLEAR: none of the above, or ambiguous

Return ONLY a valid JSON object with exactly these fields:
{{
  "intent": "<one of the intents above>",
  "sentiment": "<positive | neutral | negative>",
  "questions": ["<question the sender asked>"],
  "objections": ["<concern the sender raised>"],
  "urgency": "<high | medium | low>",
  "reasoning": "<one sentence>"
}}
""",
    ),
])


# ── 4. Reply Response ─────────────────────────────────────────────────────────

REPLY_RESPONSE_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        (
            "You write short follow-up replies in an ongoing email conversation with a prospect. "
            "Answer what they asked, address concerns honestly, and keep it under 120 words."
        ),
    ),
    (
        "human",
        """Write our reply to this prospect.

OUR SERVICE:
{product_description}

COMPANY: {company_name}
THEIR MESSAGE:
{reply_text}

CLASSIFIED INTENT: {intent}
QUESTIONS THEY ASKED: {questions}
OBJECTIONS THEY RAISED: {objections}
BOOKING LINK (include it only if not empty): {booking_link}

Guidance by intent:
- INTERESTED: answer questions, offer a short call
- READY_TO_BOOK: thank them and share the booking link
- OBJECTION: acknowledge the concern, give one relevant point, offer to keep in touch
- NOT_INTERESTED: thank them politely and close the thread

Return ONLY a valid JSON object with exactly these two fields:
{{
  "subject": "<reply subject line>",
  "body": "<reply body as plain text, use \\n for line breaks>"
}}
""",
    ),
])
