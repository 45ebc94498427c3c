# quran_data.py
CHAPTER_COUNT = 114

# Surah-ayah count mapping (index 0 unused, 1-114 are surah numbers)
SURAH_AYAT = [
    0,   # Index 0 (unused)
    7,   286, 200, 176, 120, 165, 206, 75, 129, 109,
    123, 111, 43, 52, 99, 128, 111, 110, 98, 135,
    112, 78, 118, 64, 77, 227, 93, 88, 69, 60,
    34,  30,  73,  54, 45, 83, 182, 88, 75, 85,
    54,  53,  89,  59, 37, 35, 38, 29, 18, 45,
    60,  49,  62,  55, 78, 96, 29, 22, 24, 13,
    14,  11,  11,  18, 12, 12, 30, 52, 52, 44,
    28,  28,  20,  56, 40, 31, 50, 40, 46, 42,
    29,  19,  36,  25, 22, 17, 19, 26, 30, 20,
    15,  21,  11,  8, 8, 19, 5, 8, 8, 11,
    11,  8,   3,   9, 5, 4, 7, 3, 6, 3,
    5,   4,   5,   6
]

# Listening modes and the highest selectable number in each
MODE_LIMITS = {
    "chapter": 114,
    "juz": 30,
    "hizb": 60,
    "rub": 240,
}


def validate_selection(mode, number):
    """Check a listening mode and its segment number, raising ValueError"""
    if mode not in MODE_LIMITS:
        raise ValueError(f"Unknown listening mode: {mode}")
    limit = MODE_LIMITS[mode]
    if not isinstance(number, int) or not (1 <= number <= limit):
        raise ValueError(f"{mode.capitalize()} number must be between 1 and {limit}")
    return mode, number


def parse_verse_key(verse_key):
    """Split a "chapter:verse" key into integers"""
    parts = str(verse_key).split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid verse key: {verse_key}")
    chapter, verse = int(parts[0]), int(parts[1])
    if not (1 <= chapter <= CHAPTER_COUNT) or verse < 1:
        raise ValueError(f"Invalid verse key: {verse_key}")
    return chapter, verse


class ChapterLengthTable:
    """Verse count of every chapter, as far as it has been loaded.

    The table may be partial while the chapter listing is still arriving;
    ``verse_count`` returns None for chapters that are not known yet so the
    resolver can report the gap instead of guessing.
    """

    def __init__(self, counts=None):
        self._counts = {}
        for chapter, count in (counts or {}).items():
            chapter, count = int(chapter), int(count)
            if not (1 <= chapter <= CHAPTER_COUNT):
                raise ValueError(f"Invalid chapter number: {chapter}")
            if count < 1:
                raise ValueError(f"Invalid verse count {count} for chapter {chapter}")
            self._counts[chapter] = count

    @classmethod
    def builtin(cls):
        """Table built from the bundled verse counts"""
        return cls({chapter: SURAH_AYAT[chapter] for chapter in range(1, CHAPTER_COUNT + 1)})

    @classmethod
    def from_chapters(cls, chapters):
        """Table built from a chapter listing.

        Accepts the upstream shape (``id``/``verses_count``) as well as
        ``chapter_number``/``verse_count`` entries.
        """
        counts = {}
        for entry in chapters:
            chapter = entry.get("id", entry.get("chapter_number"))
            count = entry.get("verses_count", entry.get("verse_count"))
            if chapter is None or count is None:
                continue
            counts[chapter] = count
        return cls(counts)

    def verse_count(self, chapter):
        return self._counts.get(chapter)

    def is_complete(self):
        return len(self._counts) == CHAPTER_COUNT

    def __len__(self):
        return len(self._counts)

    def __contains__(self, chapter):
        return chapter in self._counts
