"""
Labeling Prompts

System and user prompts for classifying subreddit posts and replies into
intent / target / sentiment / category plus a short summary and key issues.
The model must answer with a JSON object holding exactly those six keys.
"""

from typing import Optional

from threadlens.db.models import CATEGORIES, INTENTS, SENTIMENTS, TARGETS

ELLIPSIS = "..."

_CATEGORY_LIST = ", ".join(f"'{c}'" for c in CATEGORIES)

_CATEGORY_DEFINITIONS = """   - account_recovery: Forgot email/password or tries to recover account (NEVER for banned accounts)
   - verification: ID verification issues
   - 2fa: Two-factor authentication setup/issues
   - matchmaking_issues: Queue times, balance complaints
   - game_registration_issues: Steam, CS2/Dota2 account linking and registration
   - afk_leaver_bans: Penalties for leaving matches or being AFK
   - griefing: Trolling or team grief like team damage, not playing with the team
   - verbal_abuse: Verbal abuse, harassment, toxic behavior reports
   - smurfs: New accounts, low matches played but performing well, second or "main" accounts
   - cheaters: Reports or discussions about cheating/suspicious players
   - anti_cheat: Technical issues with the anti-cheat client
   - subscriptions: Subscription-related issues and billing
   - faceit_shop: Items bought from the platform shop (codes, skins, physical items)
   - technical_client: Client technical issues not related to anti-cheat
   - platform_website: Website issues
   - steam_issues_game_update: Steam or game update related issues
   - tournaments_leagues: Tournament and league issues
   - esea: ESEA league issues
   - mission: Platform events and missions
   - moderation_community: Comments about moderators and admins
   - feature_request: Feedback and suggestions
   - track_stats: Player stats and the track page
   - ow2: Overwatch 2 related content
   - dota2: Dota 2 related content
   - legal_issues_gdpr: Legal issues, GDPR requests
   - other: Anything else, including bans of unspecified type"""

_VALUE_RULES = f"""1. TARGET (ONLY 2 OPTIONS):
   - target MUST be EXACTLY 'platform' if the content is about the FACEIT platform or service
   - target MUST be EXACTLY 'other' for ANY other topic (ESEA, Steam, other games, etc.)
   - Allowed: {", ".join(repr(t) for t in TARGETS)}

2. INTENT:
   - 'help' if the author needs assistance or support
   - 'comment' if the author is discussing or sharing an opinion
   - Allowed: {", ".join(repr(i) for i in INTENTS)}

3. SENTIMENT:
   - 'pos' for satisfaction, gratitude, praise
   - 'neg' for complaints, frustration, anger, disappointment
   - 'neu' for factual statements, questions, neutral observations
   - Allowed: {", ".join(repr(s) for s in SENTIMENTS)}

4. CATEGORY (single primary category from this EXACT set):
   [{_CATEGORY_LIST}]

   CATEGORY DEFINITIONS:
{_CATEGORY_DEFINITIONS}"""

_FINAL_RULES = """FINAL RULES:
- TARGET: ONLY 'platform' or 'other'
- INTENT: ONLY 'help' or 'comment'
- SENTIMENT: ONLY 'pos', 'neg' or 'neu'
- CATEGORY: ONLY from the exact list above, never a custom value
- If uncertain, use: intent='comment', target='other', sentiment='neu', category='other'
- Always return a valid JSON object with exactly these 6 keys"""


POST_SYSTEM_PROMPT = f"""You are a precise labeller for Reddit posts about FACEIT (a competitive gaming platform).

Output STRICT JSON only with these exact keys: intent, target, sentiment, category, summary, key_issues.

{_VALUE_RULES}

CATEGORIZATION RULES:
- BANNED ACCOUNTS: if the author mentions a ban without saying what kind, use 'other'. account_recovery is never for banned accounts.
- MULTIPLE ACCOUNTS: mentions of multiple accounts, a "main account" or a "second account" use 'smurfs'.

CONTENT REQUIREMENTS:
- summary: at most 30 words, abstractive summary of the main issue or topic
- key_issues: 1-3 short strings naming the main problems or topics

EXAMPLES:

ESEA post:
{{"intent": "comment", "target": "other", "sentiment": "neu", "category": "esea", "summary": "User discussing ESEA league", "key_issues": ["esea", "league"]}}

Platform matchmaking post:
{{"intent": "help", "target": "platform", "sentiment": "neg", "category": "matchmaking_issues", "summary": "User reporting matchmaking problems", "key_issues": ["matchmaking", "queue"]}}

Steam post:
{{"intent": "help", "target": "other", "sentiment": "neu", "category": "steam_issues_game_update", "summary": "User having Steam technical issues", "key_issues": ["steam", "technical"]}}

{_FINAL_RULES}"""


REPLY_SYSTEM_PROMPT = f"""You are a precise labeller for Reddit comments about FACEIT (a competitive gaming platform).

Output STRICT JSON only with these exact keys: intent, target, sentiment, category, summary, key_issues.

{_VALUE_RULES}

CONTENT REQUIREMENTS:
- summary: at most 15 words, the comment's main point
- key_issues: 1-2 short strings naming the main topics or concerns

EXAMPLES:

ESEA comment:
{{"intent": "comment", "target": "other", "sentiment": "neu", "category": "esea", "summary": "User discussing ESEA league", "key_issues": ["esea"]}}

Thank-you comment:
{{"intent": "comment", "target": "platform", "sentiment": "pos", "category": "other", "summary": "User expressing gratitude for help received", "key_issues": ["satisfaction"]}}

A comment that only tags a user (for example "u/some_staff_member"):
{{"intent": "help", "target": "platform", "sentiment": "neu", "category": "other", "summary": "User tagging staff for assistance", "key_issues": ["help"]}}

{_FINAL_RULES}"""


POST_USER_TEMPLATE = """Analyze this Reddit post:

TITLE: {title}
BODY: {body}
FLAIR: {flair}
CONTEXT: Post from r/{subreddit}"""

REPLY_USER_TEMPLATE = """Analyze this Reddit comment:

COMMENT: {body}
CONTEXT: Reply to the post "{post_title}" in r/{subreddit}"""


def truncate(text: Optional[str], limit: int) -> str:
    """Cut text to `limit` characters, marking the cut with an ellipsis."""
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def build_post_prompt(
    title: Optional[str],
    body: Optional[str],
    flair: Optional[str],
    subreddit: str,
    limit: int,
) -> str:
    """User message for a post; title and body are each cut to `limit` characters."""
    return POST_USER_TEMPLATE.format(
        title=truncate(title, limit) or "(no title)",
        body=truncate(body, limit) or "(no body)",
        flair=flair or "none",
        subreddit=subreddit,
    )


def build_reply_prompt(
    body: Optional[str],
    post_title: Optional[str],
    subreddit: str,
    limit: int,
) -> str:
    return REPLY_USER_TEMPLATE.format(
        body=truncate(body, limit) or "(empty)",
        post_title=post_title or "unknown",
        subreddit=subreddit,
    )
