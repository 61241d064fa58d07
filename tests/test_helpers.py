from beaconhunt.helpers import (
    abs64,
    exists,
    is_dir,
    round_half_up,
    sort_by_string_length,
    string_in_slice,
)

INT64_MAX = 2**63 - 1
INT64_MIN = -(2**63)


def test_sort_by_string_length():
    assert sort_by_string_length(["yy", "z", "aaaa"]) == ["z", "yy", "aaaa"]


def test_abs64():
    assert abs64(INT64_MAX) == INT64_MAX
    assert abs64(1) == 1
    assert abs64(0) == 0
    assert abs64(-1) == 1
    # -1 * MinInt64 overflows back to MinInt64
    assert abs64(INT64_MIN) == INT64_MIN


def test_round_half_up():
    assert round_half_up(-16.6) == -17
    assert round_half_up(-16.1) == -16
    assert round_half_up(16.1) == 16
    assert round_half_up(16.6) == 17


def test_string_in_slice():
    cases = [
        ("a", ["a", "b", "c", "d"], True),
        ("abc", ["a", "b", "c", "d"], False),
        ("ethan", ["ethan", "melissa"], True),
        ("-1", [], False),
        ("-1", ["-1"], True),
        ("somethingsomething999", ["somethingsomething"], False),
    ]
    for value, items, expected in cases:
        assert string_in_slice(value, items) is expected


def test_exists_and_is_dir(tmp_path):
    file_path = tmp_path / "file.txt"
    assert exists(file_path) is False
    file_path.write_text("x")
    assert exists(file_path) is True
    assert is_dir(file_path) is False
    assert is_dir(tmp_path) is True
    assert is_dir(tmp_path / "missing") is False