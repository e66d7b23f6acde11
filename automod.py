import re

BAD_WORDS = ("nigger", "nigga", "faggot", "retard", "kys")
LINK_PATTERN = re.compile(r"(https?://|discord\.gg|\.com|\.net|\.org)", re.IGNORECASE)
MAX_USER_MENTIONS = 5
MAX_ROLE_MENTIONS = 3

WARNINGS = {
    "bad_word": "watch your language!",
    "link": "links are not allowed!",
    "mass_mention": "mass mentions are not allowed!",
}


def check_message(content, is_admin=False, links_allowed=False, user_mentions=0, role_mentions=0):
    """Classify a guild message.

    Returns "bad_word", "link", "mass_mention" or None. Admins are exempt from
    the link and mention rules but not from the word filter.
    """
    text = (content or "").lower()
    if any(word in text for word in BAD_WORDS):
        return "bad_word"
    if not is_admin and not links_allowed and LINK_PATTERN.search(text):
        return "link"
    if not is_admin and (user_mentions > MAX_USER_MENTIONS or role_mentions > MAX_ROLE_MENTIONS):
        return "mass_mention"
    return None
