"""
Content Formatter Module

Renders a draft's text and hashtags the way each platform expects them:
inline after the text for Twitter, as a block after a blank line elsewhere,
capped by the platform's hashtag count, hashtag block length and total text
length.
"""

from typing import List

from config.platforms import Platform, HashtagPosition, capabilities_for
from data.models import DraftPost
from utils.helpers import remove_hashtags, truncate_text


def format_hashtags(hashtags: List[str], platform: Platform) -> str:
    """
    Build the hashtag suffix for a platform.

    Args:
        hashtags: Tags without '#' (a stray leading '#' is stripped).
        platform: The target platform.

    Returns:
        str: The suffix including its separator, or "" when there are no tags.
    """
    clean = [tag.lstrip('#') for tag in hashtags if tag and tag.lstrip('#')]
    if not clean:
        return ""

    capabilities = capabilities_for(platform)
    clean = clean[:capabilities.max_hashtags]

    if capabilities.max_hashtag_chars is not None:
        kept, length = [], 0
        for tag in clean:
            tag_length = len(tag) + 2  # '#' and the separating space
            if length + tag_length > capabilities.max_hashtag_chars:
                break
            kept.append(tag)
            length += tag_length
        clean = kept
        if not clean:
            return ""

    return capabilities.hashtag_prefix + " ".join(f"#{tag}" for tag in clean)


def format_post_content(draft: DraftPost, platform: Platform) -> str:
    """
    Get the text to publish on a platform.

    Inline hashtags are removed from the text and the draft's hashtag list is
    appended in the platform's style. If the result is longer than the
    platform allows, the text part is shortened first; the hashtags are only
    dropped when even an ellipsis would not fit next to them.

    Args:
        draft: The draft to render.
        platform: The target platform.

    Returns:
        str: Text ready to post.
    """
    capabilities = capabilities_for(platform)
    text = remove_hashtags(draft.content.text)
    if draft.content.link and draft.content.link not in text:
        text = f"{text} {draft.content.link}".strip()

    suffix = format_hashtags(draft.content.hashtags, platform)
    if capabilities.hashtag_position == HashtagPosition.INLINE and not text:
        suffix = suffix.lstrip()

    limit = capabilities.max_text_length
    if len(text) + len(suffix) <= limit:
        return (text + suffix).strip()

    budget = limit - len(suffix)
    if budget < 4:
        return truncate_text(text, limit).strip()
    return (truncate_text(text, budget) + suffix).strip()
