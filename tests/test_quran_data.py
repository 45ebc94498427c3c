import pytest

from quran_data import ChapterLengthTable, parse_verse_key, validate_selection


def test_builtin_table_is_complete():
    table = ChapterLengthTable.builtin()
    assert table.is_complete()
    assert table.verse_count(1) == 7
    assert table.verse_count(2) == 286
    assert table.verse_count(114) == 6


def test_from_chapters_accepts_both_shapes():
    table = ChapterLengthTable.from_chapters([
        {"id": 1, "verses_count": 7},
        {"chapter_number": 2, "verse_count": 286},
        {"name_simple": "no numbers"},
    ])
    assert len(table) == 2
    assert 2 in table
    assert table.verse_count(3) is None
    assert not table.is_complete()


def test_rejects_bad_counts():
    with pytest.raises(ValueError):
        ChapterLengthTable({1: 0})
    with pytest.raises(ValueError):
        ChapterLengthTable({115: 3})


@pytest.mark.parametrize("mode, number", [("chapter", 114), ("juz", 30), ("hizb", 60), ("rub", 240)])
def test_mode_upper_bounds(mode, number):
    assert validate_selection(mode, number) == (mode, number)
    with pytest.raises(ValueError):
        validate_selection(mode, number + 1)


def test_parse_verse_key():
    assert parse_verse_key("2:255") == (2, 255)
    with pytest.raises(ValueError):
        parse_verse_key("2-255")
