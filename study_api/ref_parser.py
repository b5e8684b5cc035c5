import re
from typing import Iterable, List, Optional, Tuple

from study_api.models import Section

KEY_VERSE_PATTERN = re.compile(r"(\d+):(\d+(?:-\d+)?)")
RELATED_VERSE_PATTERN = re.compile(r"([1-3]?(?:\s?[A-Za-z]+))\s+(\d+):(\d+(?:-\d+)?)")

BOOK_NAMES = {
    "Genesis", "Exodus", "Leviticus", "Numbers", "Deuteronomy", "Joshua", "Judges",
    "Ruth", "Samuel", "Kings", "Chronicles", "Ezra", "Nehemiah", "Esther", "Job",
    "Psalm", "Psalms", "Proverbs", "Ecclesiastes", "Song of Solomon", "Song of Songs",
    "Isaiah", "Jeremiah", "Lamentations", "Ezekiel", "Daniel", "Hosea", "Joel", "Amos",
    "Obadiah", "Jonah", "Micah", "Nahum", "Habakkuk", "Zephaniah", "Haggai",
    "Zechariah", "Malachi", "Matthew", "Mark", "Luke", "John", "Acts", "Romans",
    "Corinthians", "Galatians", "Ephesians", "Philippians", "Colossians",
    "Thessalonians", "Timothy", "Titus", "Philemon", "Hebrews", "James", "Peter",
    "Jude", "Revelation",
}

REFERENCE_PATTERN = re.compile(
    r"\b(?P<book>(?:[1-3]\s?)?(?:Song of (?:Solomon|Songs)|[A-Z][a-z]+))\.?"
    r"\s+(?P<chapter>\d+)"
    r"(?::(?P<verse>\d+)(?:-(?P<end>\d+))?(?P<more>(?:,\s*\d+(?:-\d+)?)*))?\b"
)


class LineOutlineParser:
    """Reads markdown headers by their literal ``## `` / ``### `` prefix."""

    prefixes = (("## ", 2), ("### ", 3))

    def sections(self, text: str) -> List[Section]:
        found = []
        for line in (text or "").split("\n"):
            for prefix, level in self.prefixes:
                if line.startswith(prefix):
                    found.append(Section(title=line[len(prefix):], level=level))
                    break
        return found


default_outline_parser = LineOutlineParser()


def extract_sections(text: str, parser=None) -> List[Section]:
    return (parser or default_outline_parser).sections(text)


def render_sections(sections: Iterable[Section]) -> str:
    return "\n".join(f"{'#' * s.level} {s.title}" for s in sections)


def unique_in_order(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def extract_key_verses(text: str) -> List[str]:
    """Bare ``chapter:verse`` citations, as listed under a commentary."""
    return unique_in_order(m.group(0) for m in KEY_VERSE_PATTERN.finditer(text or ""))


def extract_related_verses(text: str) -> List[str]:
    """Book-qualified citations such as ``John 3:16`` or ``1 John 1:9-10``."""
    return unique_in_order(m.group(0).strip() for m in RELATED_VERSE_PATTERN.finditer(text or ""))


def _known_book(book: str) -> bool:
    return re.sub(r"^[1-3]\s?", "", book) in BOOK_NAMES


def _normalize_book(book: str) -> str:
    # "1John" and "1 John" name the same book
    return re.sub(r"^([1-3])\s?", r"\1 ", book)


def extract_verse_references(text: str) -> List[str]:
    """Normalized references found in free text.

    Comma lists are expanded (``John 3:16,18`` gives ``John 3:16`` and
    ``John 3:18``). Chapter-only references are kept only for known book names.
    """
    text = text or ""
    refs = []
    pos = 0
    while True:
        m = REFERENCE_PATTERN.search(text, pos)
        if not m:
            break
        book = _normalize_book(m.group("book"))
        chapter = m.group("chapter")
        verse = m.group("verse")
        if verse is None:
            if _known_book(book):
                refs.append(f"{book} {chapter}")
                pos = m.end()
            else:
                # "Also 1 John 1:9": the number may start the next book name
                pos = m.start("chapter")
            continue
        pos = m.end()
        end = m.group("end")
        refs.append(f"{book} {chapter}:{verse}-{end}" if end else f"{book} {chapter}:{verse}")
        for part in (m.group("more") or "").split(","):
            part = part.strip()
            if part:
                refs.append(f"{book} {chapter}:{part}")
    return unique_in_order(refs)


def contains_verse_references(text: str) -> bool:
    return bool(extract_verse_references(text))


def parse_reference(text: str) -> Tuple[str, int, int, int]:
    m = REFERENCE_PATTERN.fullmatch((text or "").strip())
    if not m or m.group("verse") is None or m.group("more"):
        raise ValueError("invalid reference")
    book = _normalize_book(m.group("book"))
    vs = int(m.group("verse"))
    vs_end = int(m.group("end")) if m.group("end") else vs
    if vs_end < vs:
        vs_end = vs
    return book, int(m.group("chapter")), vs, vs_end


def find_reference(text: str) -> Optional[Tuple[str, int, int, int]]:
    try:
        return parse_reference(text)
    except ValueError:
        return None
