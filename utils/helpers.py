"""
Helper Utility Module

This module provides various helper functions used throughout EchoPost.
"""

import os
import time
import re
from typing import Optional, List, Tuple
from datetime import datetime, timezone
from urllib.parse import urlparse, unquote

HASHTAG_PATTERN = re.compile(r'#([A-Za-z0-9_]+)')
HASHTAG_STRIP_PATTERN = re.compile(r'#[A-Za-z0-9_]+[ \t]*')


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp, accepting a trailing "Z".

    Args:
        value: The timestamp string.

    Returns:
        datetime: The parsed value (naive if the string carried no offset).

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp.
    """
    return datetime.fromisoformat(value.strip().replace('Z', '+00:00'))


def is_in_past(moment: datetime, now: Optional[datetime] = None) -> bool:
    """
    Check whether a datetime lies in the past.

    Naive datetimes are compared against local time, aware ones against UTC.
    """
    if moment.tzinfo is None:
        reference = now.replace(tzinfo=None) if now else datetime.now()
    else:
        reference = now or utc_now()
    return moment < reference


def retry(func, max_attempts: int = 3, delay: float = 2,
          exceptions: Tuple = (Exception,), backoff: int = 2):
    """
    Retry a function multiple times if it fails.

    Args:
        func: The function to retry
        max_attempts: Maximum number of attempts
        delay: Initial delay between attempts in seconds
        exceptions: Tuple of exceptions to catch
        backoff: Multiplier for the delay between attempts

    Returns:
        The result of the function call

    Raises:
        The last exception raised by the function
    """
    attempt = 0
    while attempt < max_attempts:
        try:
            return func()
        except exceptions as e:
            attempt += 1
            if attempt == max_attempts:
                raise e

            wait_time = delay * (backoff ** (attempt - 1))
            time.sleep(wait_time)


def truncate_text(text: str, max_length: int = 100, add_ellipsis: bool = True) -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: The text to truncate
        max_length: Maximum length (including the ellipsis, if added)
        add_ellipsis: Whether to add an ellipsis if text is truncated

    Returns:
        str: Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    if add_ellipsis and max_length > 3:
        return text[:max_length - 3].rstrip() + "..."
    return text[:max_length].rstrip()


def ensure_dir_exists(directory: str) -> None:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        directory: The directory path to check/create
    """
    if not os.path.exists(directory):
        os.makedirs(directory)


def path_from_uri(uri: str) -> str:
    """
    Convert a file reference into a local filesystem path.

    Accepts plain paths and file:// URIs.

    Args:
        uri: The file reference.

    Returns:
        str: The local path (empty string if the reference is not local).
    """
    if not uri:
        return ""
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    if parsed.scheme and len(parsed.scheme) > 1:
        # Some other scheme (content://, http://), not a local file
        return ""
    return uri


def extract_hashtags(text: str) -> List[str]:
    """
    Extract spoken or typed hashtags (#word) from text.

    Args:
        text: The text to scan.

    Returns:
        List[str]: Lower-cased tags without the leading '#', first occurrence order.
    """
    seen = []
    for match in HASHTAG_PATTERN.finditer(text or ""):
        tag = match.group(1).lower()
        if tag not in seen:
            seen.append(tag)
    return seen


def remove_hashtags(text: str) -> str:
    """
    Remove #word tokens from text and collapse the spaces they leave behind.
    Line breaks are kept.

    Args:
        text: The text to clean.

    Returns:
        str: Text without hashtags.
    """
    clean_text = HASHTAG_STRIP_PATTERN.sub('', text or '')
    clean_text = re.sub(r'[ \t]+', ' ', clean_text)
    return re.sub(r' *\n *', '\n', clean_text).strip()


def normalize_hashtag(tag: str) -> Optional[str]:
    """
    Normalise one hashtag: trim and strip leading '#' characters.

    Args:
        tag: The raw tag.

    Returns:
        Optional[str]: The normalised tag, or None if nothing usable remains
        (empty, or containing whitespace).
    """
    if tag is None:
        return None
    cleaned = str(tag).strip().lstrip('#').strip()
    if not cleaned or re.search(r'\s', cleaned):
        return None
    return cleaned
