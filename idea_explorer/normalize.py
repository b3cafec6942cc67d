from __future__ import annotations

import datetime as _dt
import re
from typing import List, Optional

from .schemas import DirectoryEntry


MAX_SLUG_LENGTH = 50
MAX_PROMPT_IDEA_LENGTH = 500

_ws_re = re.compile(r"\s+")
_non_slug_re = re.compile(r"[^\w\s-]", re.ASCII)
_sep_re = re.compile(r"[\s_]+")
_dashes_re = re.compile(r"-+")
_control_re = re.compile(r"[\r\n\t\f\v]")
_prompt_special_re = re.compile(r"[<>`]")


def normalize_ws(s: str) -> str:
    return _ws_re.sub(" ", (s or "").strip())


def generate_slug(text: str) -> str:
    """Filesystem-safe identifier grouping research on the same idea."""
    if not text or not isinstance(text, str):
        return "untitled"
    slug = _non_slug_re.sub("", text.lower().strip())
    slug = _sep_re.sub("-", slug)
    slug = _dashes_re.sub("-", slug).strip("-")
    if not slug:
        return "untitled"
    if len(slug) <= MAX_SLUG_LENGTH:
        return slug

    truncated = slug[:MAX_SLUG_LENGTH]
    last_dash = truncated.rfind("-")
    # Cut on a word boundary unless that would lose too much
    if last_dash > MAX_SLUG_LENGTH * 0.6:
        return truncated[:last_dash]
    return truncated.rstrip("-")


def sanitize_idea_for_prompt(idea: str) -> str:
    s = _control_re.sub(" ", idea or "")
    s = _prompt_special_re.sub("", s)
    s = normalize_ws(s)
    return s[:MAX_PROMPT_IDEA_LENGTH] if s else "untitled"


def date_prefix(today: Optional[_dt.date] = None) -> str:
    return (today or _dt.date.today()).strftime("%Y-%m-%d")


def parse_dir_date(name: str) -> Optional[_dt.date]:
    parts = name.split("-")[:3]
    if len(parts) != 3:
        return None
    year, month, day = parts
    if len(year) != 4 or len(month) != 2 or len(day) != 2:
        return None
    try:
        return _dt.date(int(year), int(month), int(day))
    except ValueError:
        return None


def select_latest_match(entries: List[DirectoryEntry], slug: str) -> Optional[DirectoryEntry]:
    """Most recent directory named ``<date>-<slug>``.

    Later date prefix wins; undated names sort last; equal dates fall back
    to reverse-lexicographic name order.
    """
    matches = [e for e in entries if e.type == "dir" and e.name.endswith(f"-{slug}")]
    if not matches:
        return None
    matches.sort(key=lambda e: e.name, reverse=True)
    matches.sort(key=lambda e: parse_dir_date(e.name) or _dt.date.min, reverse=True)
    return matches[0]
