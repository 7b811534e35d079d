# nlp_pipeline.py
"""
Profile extraction from inbound chat text.

- "my name is Asha" → {"name": "Asha"}
- Case-insensitive, the rest of the message after the cue is the name
"""

import re
from typing import Dict

NAME_RE = re.compile(r"my name is (.+)", re.IGNORECASE)


def extract_name(text: str) -> str:
    """Return the self-declared name in `text`, or "" if there is none."""
    if not text:
        return ""
    m = NAME_RE.search(text)
    if not m:
        return ""
    return m.group(1).strip()


def extract_profile(text: str) -> Dict[str, str]:
    """Profile fields the user volunteered in `text`."""
    profile: Dict[str, str] = {}

    name = extract_name(text)
    if name:
        profile["name"] = name

    return profile
