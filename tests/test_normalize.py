from __future__ import annotations

import datetime as _dt

import pytest

from idea_explorer.normalize import (
    date_prefix,
    generate_slug,
    parse_dir_date,
    sanitize_idea_for_prompt,
    select_latest_match,
)
from idea_explorer.schemas import DirectoryEntry


@pytest.mark.parametrize(
    "text,expected",
    [
        ("AI-powered recipe planner!", "ai-powered-recipe-planner"),
        ("  Hello   World  ", "hello-world"),
        ("snake_case and--dashes", "snake-case-and-dashes"),
        ("Café résumé", "caf-rsum"),
        ("!!!", "untitled"),
        ("", "untitled"),
    ],
)
def test_generate_slug(text, expected):
    assert generate_slug(text) == expected


def test_long_slug_cuts_on_word_boundary():
    slug = generate_slug("a marketplace connecting independent farmers with restaurants in small towns")
    assert len(slug) <= 50
    assert not slug.endswith("-")
    assert slug == "a-marketplace-connecting-independent-farmers-with"


def test_long_slug_without_late_boundary_is_hard_cut():
    slug = generate_slug("x" * 20 + " " + "y" * 60)
    assert len(slug) == 50
    assert slug.startswith("x" * 20 + "-y")


def test_sanitize_idea_for_prompt():
    assert sanitize_idea_for_prompt("line one\nline <two>\t`code`") == "line one line two code"
    assert len(sanitize_idea_for_prompt("z" * 900)) == 500
    assert sanitize_idea_for_prompt("<>") == "untitled"


def test_dates():
    assert date_prefix(_dt.date(2026, 1, 5)) == "2026-01-05"
    assert parse_dir_date("2026-01-05-foo") == _dt.date(2026, 1, 5)
    assert parse_dir_date("2026-13-40-foo") is None
    assert parse_dir_date("notes-foo") is None


def _dir(name: str) -> DirectoryEntry:
    return DirectoryEntry(name=name, path=f"ideas/{name}", type="dir")


def test_select_latest_match():
    entries = [
        _dir("2026-01-01-foo"),
        _dir("2026-01-05-foo"),
        _dir("notes-foo"),
        _dir("2026-02-01-foobar"),
        DirectoryEntry(name="2026-03-01-foo", path="ideas/2026-03-01-foo", type="file"),
    ]
    assert select_latest_match(entries, "foo").name == "2026-01-05-foo"
    assert select_latest_match([_dir("notes-foo"), _dir("old-foo")], "foo").name == "old-foo"
    assert select_latest_match(entries, "baz") is None
