import html
import re
from typing import Optional

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
HTML_TAG = re.compile(r"<[^>]+>")


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Normalize free text before it is stored: surrounding whitespace and
    control characters are removed. Returns None if input is None or blank.

    Text is stored as entered; it is escaped where it is rendered.
    """
    if value is None:
        return None
    value = CONTROL_CHARS.sub("", str(value)).strip()
    return value or None


def strip_html(value: Optional[str]) -> str:
    """Plain text from rich-editor HTML (terms and privacy bodies)"""
    if not value:
        return ""
    text = re.sub(r"<br\s*/?>", "\n", value, flags=re.IGNORECASE)
    text = re.sub(r"</(p|h[1-6])>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</li>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<li[^>]*>", "  • ", text, flags=re.IGNORECASE)
    text = html.unescape(HTML_TAG.sub("", text)).replace("\xa0", " ")
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def mask_token(raw_token: str) -> str:
    """Loggable form of a link token"""
    if not raw_token:
        return "<empty>"
    return f"…{raw_token[-4:]}"
