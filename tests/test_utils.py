import pytest

from viewing_rec.utils import clean_title, title_key, split_names, parse_duration_minutes, clean_field


@pytest.mark.parametrize("raw, expected", [
    ("Breaking Bad: Season 1: Pilot", "Breaking Bad"),
    ('"The Office: Season 2"', "The Office"),
    ("  Inception  ", "Inception"),
    ("Inception", "Inception"),
    ('"Quoted"', "Quoted"),
    (":Leading colon", ""),
    ("", ""),
])
def test_clean_title(raw, expected):
    assert clean_title(raw) == expected


def test_clean_title_is_idempotent():
    for raw in ['"Show: S1"', '""Nested": x"', "A: B: C", '  "Padded"  ', "Plain"]:
        once = clean_title(raw)
        assert clean_title(once) == once


def test_title_key_is_case_and_space_insensitive():
    assert title_key("  The Matrix ") == title_key("the matrix")


def test_split_names_drops_blanks_sentinel_and_duplicates():
    assert split_names("Drama, Crime,,  ") == ["Drama", "Crime"]
    assert split_names("N/A") == []
    assert split_names(None) == []
    assert split_names("") == []
    assert split_names("A, B, A") == ["A", "B"]


def test_parse_duration_minutes():
    assert parse_duration_minutes("142 min") == 142
    assert parse_duration_minutes("1h 30min") == 1
    assert parse_duration_minutes("N/A") is None
    assert parse_duration_minutes(None) is None


def test_parse_duration_minutes_treats_huge_numbers_as_unknown():
    assert parse_duration_minutes("9" * 5000 + " min") is None
    assert parse_duration_minutes("1234567 min") is None
    assert parse_duration_minutes("999999 min") == 999999


def test_clean_field():
    assert clean_field("N/A") is None
    assert clean_field("   ") is None
    assert clean_field(None) is None
    assert clean_field(" Drama ") == "Drama"
    assert clean_field(120) == "120"
