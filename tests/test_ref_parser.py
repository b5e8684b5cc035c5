import pytest

from study_api.models import Section
from study_api.ref_parser import (
    contains_verse_references,
    extract_key_verses,
    extract_related_verses,
    extract_sections,
    extract_verse_references,
    find_reference,
    parse_reference,
    render_sections,
    unique_in_order,
)


COMMENTARY = """Intro line
## Historical Context
Genesis opens with creation.
### Genesis 1:1-5
God speaks light into being (1:3). Compare John 1:1 and 1:3.
## Key Themes
##Not a header
 ## Indented is not a header
#### Too deep
## Key Themes
"""


def _dump(sections):
    return [s.model_dump() for s in sections]


def test_extract_sections_levels_and_order():
    assert _dump(extract_sections(COMMENTARY)) == [
        {"title": "Historical Context", "level": 2},
        {"title": "Genesis 1:1-5", "level": 3},
        {"title": "Key Themes", "level": 2},
        {"title": "Key Themes", "level": 2},
    ]


def test_extract_sections_historical_context_then_range():
    content = "## Historical Context\n### Genesis 1:1-5\nIn the beginning."
    sections = extract_sections(content)
    assert sections[0] == Section(title="Historical Context", level=2)
    assert sections[1] == Section(title="Genesis 1:1-5", level=3)
    assert "1:1-5" in extract_key_verses(content)


def test_extract_sections_idempotent():
    first = extract_sections(COMMENTARY)
    second = extract_sections(render_sections(first))
    assert second == first


def test_extract_sections_empty():
    assert extract_sections("") == []
    assert extract_sections(None) == []


def test_extract_sections_custom_parser():
    class BoldParser:
        def sections(self, text):
            return [Section(title=line.strip("*"), level=2) for line in text.split("\n") if line.startswith("**")]

    assert extract_sections("**Theme**\nbody", parser=BoldParser()) == [Section(title="Theme", level=2)]


def test_extract_key_verses_dedupes_in_first_seen_order():
    text = "See 3:16, then 1:1-5, then 3:16 again and 1:1-5."
    assert extract_key_verses(text) == ["3:16", "1:1-5"]


def test_extract_related_verses():
    text = "Read John 3:16 and 1 John 1:9 and John 3:16 again. Romans 8:28-30 too."
    assert extract_related_verses(text) == ["John 3:16", "1 John 1:9", "Romans 8:28-30"]


def test_unique_in_order():
    assert unique_in_order(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_extract_verse_references_expands_lists():
    text = "See John 3:16,18,20-22 and Psalm 23. Also 1 John 1:9 and Gen. 1:1"
    assert extract_verse_references(text) == [
        "John 3:16",
        "John 3:18",
        "John 3:20-22",
        "Psalm 23",
        "1 John 1:9",
        "Gen 1:1",
    ]


def test_extract_verse_references_skips_unknown_chapter_only():
    assert extract_verse_references("In 2020 Chapter 4 was printed") == []


def test_extract_verse_references_numbered_book_compact():
    assert extract_verse_references("2Kings 4:1") == ["2 Kings 4:1"]


def test_contains_verse_references():
    assert contains_verse_references("Song of Solomon 2:4 is sung")
    assert not contains_verse_references("nothing to cite here")


def test_parse_reference():
    assert parse_reference("John 3:16") == ("John", 3, 16, 16)
    assert parse_reference(" 1 John 1:9-10 ") == ("1 John", 1, 9, 10)


def test_parse_reference_reversed_range():
    assert parse_reference("Psalm 23:4-1") == ("Psalm", 23, 4, 4)


def test_parse_reference_invalid():
    with pytest.raises(ValueError):
        parse_reference("John 3")
    with pytest.raises(ValueError):
        parse_reference("love your neighbour")


def test_find_reference_none():
    assert find_reference("For God so loved the world") is None
