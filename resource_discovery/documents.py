"""
Helpers that turn boto3 responses into stored documents.

Organizations responses use PascalCase keys ("MasterAccountId"), the Config
service uses camelCase ("s3BucketName"). Stored documents use camelCase
throughout, and every timestamp is stored as a UTC ISO-8601 string so that
equal instants always compare equal.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional


def camel_case(key: str) -> str:
    """Lower-case the first character of ``key`` ("MasterAccountArn" -> "masterAccountArn")."""
    if not key:
        return key
    return key[0].lower() + key[1:]


def normalize(value: Any, camel: bool = False) -> Any:
    """Recursively convert a boto3 response into JSON-ready data.

    Args:
        value: Response fragment (dict, list, datetime or scalar)
        camel: Convert dictionary keys to camelCase

    Returns:
        A copy of ``value`` with datetimes rendered as UTC ISO-8601 strings
    """
    if isinstance(value, dict):
        return {
            (camel_case(key) if camel else key): normalize(item, camel)
            for key, item in value.items()
            if key != "ResponseMetadata"
        }
    if isinstance(value, (list, tuple)):
        return [normalize(item, camel) for item in value]
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse a stored or provider timestamp into an aware UTC datetime.

    Accepts datetimes and ISO-8601 strings with a "Z" suffix, a numeric
    offset or no offset at all (read as UTC). Blank values return None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)

    text = str(value).strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))


def utc_now_iso() -> str:
    """Current time as a UTC ISO-8601 string."""
    return datetime.now(tz=timezone.utc).isoformat()


def dig(document: Optional[dict], *path: str) -> Any:
    """Follow ``path`` through nested dictionaries, returning None on any gap."""
    current: Any = document
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
