"""
AI Service Module

This module turns a voice transcript into a structured DraftPost using
Google's Gemini API. The model is asked for a JSON object; the reply is
validated here before anything downstream sees it.
"""

import json
import re
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Tuple

import google.generativeai as genai

from config import settings
from config.platforms import Platform, ALIASES
from data.models import (
    DraftPost, Content, Options, Internal, MediaItem, MediaQuery, MediaType, DateRange
)
from utils.exceptions import ParseFailed
from utils.helpers import normalize_hashtag, parse_iso_datetime
from utils.logger import get_logger

logger = get_logger(__name__)

CODE_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*|\s*```$', re.IGNORECASE)

MEDIA_TYPE_WORDS = {
    "image": MediaType.IMAGE,
    "images": MediaType.IMAGE,
    "photo": MediaType.IMAGE,
    "photos": MediaType.IMAGE,
    "picture": MediaType.IMAGE,
    "pictures": MediaType.IMAGE,
    "video": MediaType.VIDEO,
    "videos": MediaType.VIDEO,
    "clip": MediaType.VIDEO,
}

# Hour ranges for parts of the day, checked in this order
DAY_PERIODS: Dict[str, Tuple[int, int]] = {
    "breakfast": (6, 10),
    "brunch": (10, 13),
    "lunch": (11, 14),
    "dinner": (18, 21),
    "supper": (18, 21),
    "morning": (5, 12),
    "afternoon": (12, 17),
    "evening": (17, 21),
    "tonight": (17, 24),
    "night": (21, 24),
}

LAST_DAYS_PATTERN = re.compile(r'\b(?:last|past) (\d+) days\b')
DAYS_AGO_PATTERN = re.compile(r'\b(\d+) days? ago\b')
# "my lunch photo" names a subject; "at lunch" names a time
PERIOD_CUE = r"(?:at|during|this|from|around|over|last|yesterday|yesterday's|today's|tonight's) (?:the )?"


def _mentions(phrase: str, text: str) -> bool:
    return re.search(rf'\b{phrase}\b', text) is not None


def infer_date_range(text: str, now: Optional[datetime] = None) -> Optional[DateRange]:
    """
    Read a date range from everyday time phrases in a spoken request.

    Understands "today", "yesterday", "last night", "N days ago", "last N
    days", this or last week and month, and parts of the day such as
    "at lunch" or "this morning". A part of the day with no day named means
    today. Used when the parser reply carries no date range of its own.

    Args:
        text: The transcript.
        now: Reference time (defaults to the current local time).

    Returns:
        Optional[DateRange]: The range, or None if the text names no time.
    """
    lowered = (text or "").lower()
    now = now or datetime.now().astimezone()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    match = LAST_DAYS_PATTERN.search(lowered)
    if match:
        return DateRange(start=midnight - timedelta(days=int(match.group(1))), end=now)
    if _mentions("last week", lowered):
        monday = midnight - timedelta(days=midnight.weekday())
        return DateRange(start=monday - timedelta(days=7), end=monday)
    if _mentions("this week", lowered):
        return DateRange(start=midnight - timedelta(days=midnight.weekday()), end=now)
    if _mentions("last month", lowered):
        first = midnight.replace(day=1)
        return DateRange(start=(first - timedelta(days=1)).replace(day=1), end=first)
    if _mentions("this month", lowered):
        return DateRange(start=midnight.replace(day=1), end=now)

    day = None
    match = DAYS_AGO_PATTERN.search(lowered)
    if match:
        day = midnight - timedelta(days=int(match.group(1)))
    elif _mentions("yesterday", lowered) or _mentions("last night", lowered):
        day = midnight - timedelta(days=1)
    elif _mentions("today", lowered):
        day = midnight

    period = next((hours for word, hours in DAY_PERIODS.items()
                   if _mentions(PERIOD_CUE + word, lowered) or (word == "tonight" and _mentions(word, lowered))),
                  None)
    if period is None:
        return DateRange(start=day, end=day + timedelta(days=1)) if day else None

    day = day or midnight
    return DateRange(start=day + timedelta(hours=period[0]), end=day + timedelta(hours=period[1]))


class AIService:
    """Command parser backed by Google's Gemini API."""

    def __init__(self, api_key: Optional[str] = None, model: Any = None):
        """
        Initialize the AI service with the Gemini API.

        Configures the API key and selects an appropriate model based on availability.

        Args:
            api_key: Gemini API key (defaults to GOOGLE_AI_API_KEY).
            model: A ready GenerativeModel; skips model discovery when given.
        """
        if model is not None:
            self.model = model
            return

        api_key = api_key or settings.GOOGLE_AI_API_KEY
        if not api_key:
            raise ValueError("Missing required GOOGLE_AI_API_KEY")

        genai.configure(api_key=api_key)

        # Get available models
        try:
            models_list = genai.list_models()
            available_models = [m.name for m in models_list]

            # Select a model based on preference order
            model_name = None
            for preferred in settings.DEFAULT_AI_MODELS:
                for available in available_models:
                    if preferred in available:
                        model_name = available
                        break
                if model_name:
                    break

            if not model_name and len(available_models) > 0:
                # None of the preferred models are available, use the first one
                model_name = available_models[0]

            if not model_name:
                raise ValueError("No Gemini models available")

            logger.info(f"Selected AI model: {model_name}")
            self.model = genai.GenerativeModel(model_name=model_name)

        except Exception as e:
            logger.error(f"Error initializing Gemini AI: {e}")
            raise

    def parse_command(self, text: str, preselected_media: Optional[List[MediaItem]] = None) -> DraftPost:
        """
        Parse a spoken command into a draft post.

        Args:
            text: The transcript.
            preselected_media: Media the user already picked. When given, the
                draft carries it and no media query is produced.

        Returns:
            DraftPost: A draft with at least one platform and non-empty text.

        Raises:
            ParseFailed: If the model call fails or its reply is malformed.
        """
        if not text or not text.strip():
            raise ParseFailed("Cannot parse an empty transcript")

        prompt = self._build_prompt(text.strip(), bool(preselected_media))
        try:
            response = self.model.generate_content(prompt)
            response_text = response.text
        except Exception as e:
            logger.error(f"Error calling command parser model: {e}")
            raise ParseFailed(f"Command parser request failed: {e}") from e

        data = self._extract_json(response_text)
        draft = self._build_draft(data, text.strip(), preselected_media)
        logger.info(
            f"Parsed command into draft {draft.id} for "
            f"{', '.join(p.value for p in draft.platforms)}"
        )
        return draft

    # =========================================================================
    # Prompt and reply handling
    # =========================================================================

    @staticmethod
    def _build_prompt(transcript: str, has_media: bool) -> str:
        platform_names = ", ".join(
            f"{platform.value} ({'/'.join(aliases)})" for platform, aliases in ALIASES.items()
        )
        media_instruction = (
            "The user already selected media. Set \"media_query\" to null."
            if has_media else
            "If the user refers to photos or videos, describe them in \"media_query\"; otherwise set it to null."
        )

        return f"""Turn this spoken request into a social media post.

Spoken request: "{transcript}"

Supported platforms (id and spoken aliases): {platform_names}

Requirements:
1. Pick every platform the user named, using the ids above
2. Write the post text the user wants published, without hashtags
3. Put hashtags in their own list, without the # symbol
4. {media_instruction}
5. Use "now" for the schedule unless the user asked for a specific time (then ISO-8601)

Return ONLY a JSON object shaped like:
{{
  "platforms": ["twitter"],
  "content": {{"text": "...", "hashtags": ["..."], "mentions": [], "link": null}},
  "media_query": {{"search_terms": ["..."], "media_types": ["image"], "directory_scope": null,
                  "date_range": {{"start": null, "end": null}}}},
  "options": {{"schedule": "now", "location_tag": null}}
}}"""

    @staticmethod
    def _extract_json(response_text: str) -> Dict[str, Any]:
        cleaned = CODE_FENCE_PATTERN.sub('', (response_text or '').strip())
        start, end = cleaned.find('{'), cleaned.rfind('}')
        if start == -1 or end <= start:
            logger.warning("No JSON object found in command parser reply")
            raise ParseFailed("Command parser reply did not contain a JSON object")
        try:
            data = json.loads(cleaned[start:end + 1])
        except ValueError as e:
            raise ParseFailed(f"Command parser reply is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ParseFailed("Command parser reply is not a JSON object")
        return data

    def _build_draft(self, data: Dict[str, Any], transcript: str,
                     preselected_media: Optional[List[MediaItem]]) -> DraftPost:
        platforms = self._parse_platforms(data.get("platforms"))

        content_data = data.get("content")
        if not isinstance(content_data, dict):
            raise ParseFailed("Command parser reply is missing 'content'")
        post_text = content_data.get("text")
        if not isinstance(post_text, str) or not post_text.strip():
            raise ParseFailed("Command parser produced no post text")

        content = Content(
            text=post_text.strip(),
            hashtags=self._parse_hashtags(content_data.get("hashtags")),
            mentions=[str(m).strip() for m in content_data.get("mentions") or [] if str(m).strip()],
            link=content_data.get("link") or None,
            media=list(preselected_media or []),
        )

        media_query = None
        if not preselected_media:
            media_query = self._parse_media_query(data.get("media_query"), transcript)

        options_data = data.get("options") if isinstance(data.get("options"), dict) else {}
        options = Options(
            schedule=self._parse_schedule(options_data.get("schedule")),
            location_tag=options_data.get("location_tag") or None,
        )

        return DraftPost(
            platforms=platforms,
            content=content,
            media_query=media_query,
            options=options,
            internal=Internal(original_transcript=transcript, ai_generated=True),
        )

    @staticmethod
    def _parse_platforms(raw: Any) -> List[Platform]:
        if isinstance(raw, str):
            raw = [raw]
        if not isinstance(raw, list) or not raw:
            raise ParseFailed("Command parser selected no platforms")

        platforms = []
        for value in raw:
            try:
                platform = Platform.from_value(str(value))
            except ValueError as e:
                raise ParseFailed(str(e)) from e
            if platform not in platforms:
                platforms.append(platform)
        return platforms

    @staticmethod
    def _parse_hashtags(raw: Any) -> List[str]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise ParseFailed("Hashtags must be a list")

        hashtags = []
        for value in raw:
            tag = normalize_hashtag(value)
            if tag is None:
                raise ParseFailed(f"Invalid hashtag in parser reply: {value!r}")
            if tag not in hashtags:
                hashtags.append(tag)
        return hashtags

    @staticmethod
    def _parse_media_query(raw: Any, transcript: str = "") -> Optional[MediaQuery]:
        if not isinstance(raw, dict):
            return None

        terms = raw.get("search_terms") or []
        if isinstance(terms, str):
            terms = [terms]
        search_terms = [str(t).strip() for t in terms if str(t).strip()]

        media_types = []
        for value in raw.get("media_types") or []:
            media_type = MEDIA_TYPE_WORDS.get(str(value).strip().lower())
            if media_type and media_type not in media_types:
                media_types.append(media_type)

        date_range = None
        range_data = raw.get("date_range")
        if isinstance(range_data, dict) and (range_data.get("start") or range_data.get("end")):
            try:
                date_range = DateRange(
                    start=parse_iso_datetime(range_data["start"]) if range_data.get("start") else None,
                    end=parse_iso_datetime(range_data["end"]) if range_data.get("end") else None,
                )
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring unreadable media date range: {e}")

        if date_range is None:
            date_range = infer_date_range(transcript)
            if date_range is not None:
                logger.debug(f"Inferred media date range {date_range.start} - {date_range.end} from the request")

        scope = raw.get("directory_scope")
        return MediaQuery(
            search_terms=search_terms,
            media_types=media_types,
            date_range=date_range,
            directory_scope=str(scope).strip() if scope else None,
        )

    @staticmethod
    def _parse_schedule(raw: Any) -> str:
        if raw is None or str(raw).strip().lower() in ("", "now"):
            return "now"
        try:
            parse_iso_datetime(str(raw))
        except ValueError as e:
            raise ParseFailed(f"Invalid schedule in parser reply: {raw!r}") from e
        return str(raw).strip()
