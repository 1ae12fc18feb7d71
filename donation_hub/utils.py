import html
import re
from typing import Optional
import bleach


def clean_text(value: Optional[str]) -> Optional[str]:
    """Strip HTML tags and NULL bytes from free text before it is stored.

    bleach escapes entities in what it keeps; they are decoded again so the
    stored value is plain text and compares equal to what clients send.
    """
    if value is None:
        return None
    val = value.replace("\x00", "")
    val = html.unescape(bleach.clean(val, tags=[], strip=True))
    return val.strip()


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied search term.

    - Strips HTML tags using bleach.clean(..., strip=True)
    - Removes obvious SQL metacharacters like '--' and ';'
    - Escapes LIKE wildcards so the term matches literally
    """
    if not value:
        return ""
    val = clean_text(value)
    val = re.sub(r"(--|;)", "", val)
    val = val.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return val.strip()


def normalize_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return re.sub(r"[^0-9]", "", value)
