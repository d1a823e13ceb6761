from datetime import time

import pytest

from deadline_computer import (
    compute_default_deadlines,
    format_deadlines,
    parse_deadlines,
    resolve_deadlines,
    set_deadline,
)


def test_default_deadlines_for_three_bottles():
    assert compute_default_deadlines(3, 7, 20) == [time(11, 15), time(15, 45), time(20, 0)]


@pytest.mark.parametrize('count', range(1, 11))
@pytest.mark.parametrize('window', [(7, 20), (0, 23), (9, 10), (6, 22)])
def test_default_deadlines_cover_every_interval(count, window):
    deadlines = compute_default_deadlines(count, *window)

    assert len(deadlines) == count
    assert deadlines == sorted(deadlines)
    for deadline in deadlines:
        assert deadline.minute % 15 == 0
        assert deadline.hour <= 23


def test_short_window_may_produce_equal_neighbours():
    deadlines = compute_default_deadlines(10, 9, 10)

    assert len(deadlines) == 10
    assert len(set(deadlines)) < 10


def test_no_intervals_no_deadlines():
    assert compute_default_deadlines(0, 7, 20) == []
    assert compute_default_deadlines(-2, 7, 20) == []


def test_ties_round_up_to_next_quarter():
    # 7.5-minute steps: half minutes round up, then 8+ minutes past a quarter rounds up
    assert compute_default_deadlines(1, 8, 16) == [time(16, 0)]
    assert compute_default_deadlines(8, 7, 8) == [
        time(7, 15), time(7, 15), time(7, 30), time(7, 30),
        time(7, 45), time(7, 45), time(8, 0), time(8, 0),
    ]


def test_parse_and_format():
    deadlines = parse_deadlines("09:00, 13:30,17:45")

    assert deadlines == [time(9, 0), time(13, 30), time(17, 45)]
    assert format_deadlines(deadlines) == "09:00,13:30,17:45"


def test_parse_skips_unreadable_entries():
    assert parse_deadlines("09:00,noon,17:00") == [time(9, 0), time(17, 0)]
    assert parse_deadlines(None) == []
    assert parse_deadlines("") == []


def test_resolve_uses_stored_list_when_length_matches():
    assert resolve_deadlines("09:00,13:00,17:00", 3, 7, 20) == [time(9, 0), time(13, 0), time(17, 0)]


def test_resolve_discards_mismatched_list():
    assert resolve_deadlines("09:00,13:00", 3, 7, 20) == compute_default_deadlines(3, 7, 20)
    assert resolve_deadlines("09:00,bad,17:00", 3, 7, 20) == compute_default_deadlines(3, 7, 20)


def test_resolve_without_stored_list_computes_default():
    assert resolve_deadlines(None, 4, 8, 20) == compute_default_deadlines(4, 8, 20)


def test_set_deadline_pushes_later_entries_forward():
    deadlines = [time(11, 15), time(15, 45), time(20, 0)]

    assert set_deadline(deadlines, 0, time(16, 0)) == [time(16, 0), time(16, 15), time(20, 0)]


def test_set_deadline_pulls_earlier_entries_back():
    deadlines = [time(11, 15), time(15, 45), time(20, 0)]

    assert set_deadline(deadlines, 2, time(11, 0)) == [time(10, 30), time(10, 45), time(11, 0)]


def test_set_deadline_equal_neighbour_is_shifted():
    deadlines = [time(9, 0), time(13, 0), time(17, 0)]

    assert set_deadline(deadlines, 1, time(17, 0)) == [time(9, 0), time(17, 0), time(17, 15)]


def test_set_deadline_out_of_range_is_ignored():
    deadlines = [time(9, 0), time(13, 0)]

    assert set_deadline(deadlines, 5, time(10, 0)) == deadlines
    assert set_deadline(deadlines, -1, time(10, 0)) == deadlines


def test_set_deadline_does_not_mutate_input():
    deadlines = [time(9, 0), time(13, 0)]
    set_deadline(deadlines, 0, time(14, 0))

    assert deadlines == [time(9, 0), time(13, 0)]
