# position_resolver.py
from collections import namedtuple

from errors import DataIncompleteError, OutOfRangeError
from quran_data import CHAPTER_COUNT, parse_verse_key


class VersePosition(namedtuple("VersePosition", ["chapter", "verse"])):
    """Verse address, compares and unpacks like a (surah, ayah) tuple"""
    __slots__ = ()

    @classmethod
    def from_key(cls, verse_key):
        return cls(*parse_verse_key(verse_key))

    @property
    def verse_key(self):
        return f"{self.chapter}:{self.verse}"


class ListeningRange(namedtuple("ListeningRange", ["start", "total_steps"])):
    """Contiguous run of ``total_steps`` verses beginning at ``start``"""
    __slots__ = ()

    def __new__(cls, start, total_steps):
        if not isinstance(start, VersePosition):
            start = VersePosition(*start)
        if total_steps < 1:
            raise ValueError("A listening range needs at least one verse")
        return super().__new__(cls, start, int(total_steps))


def resolve(start, offset, lengths):
    """Map a start position plus a linear offset to an absolute verse.

    Walks forward chapter by chapter, subtracting each chapter's verse count,
    until the verse fits. Raises DataIncompleteError when a chapter on the way
    has no known verse count and OutOfRangeError when the offset runs past the
    end of chapter 114.
    """
    if offset < 0:
        raise OutOfRangeError(f"Negative offset {offset}")
    if not isinstance(start, VersePosition):
        start = VersePosition(*start)

    chapter = start.chapter
    if not (1 <= chapter <= CHAPTER_COUNT):
        raise OutOfRangeError(f"Invalid chapter: {chapter}")
    count = lengths.verse_count(chapter)
    if count is None:
        raise DataIncompleteError(chapter)
    if not (1 <= start.verse <= count):
        raise OutOfRangeError(f"Invalid verse {start.verse} for chapter {chapter} (1-{count})")

    verse = start.verse + offset
    while verse > count:
        if chapter >= CHAPTER_COUNT:
            raise OutOfRangeError(f"Offset {offset} from {start.verse_key} runs past the last verse")
        verse -= count
        chapter += 1
        count = lengths.verse_count(chapter)
        if count is None:
            raise DataIncompleteError(chapter)

    return VersePosition(chapter, verse)
