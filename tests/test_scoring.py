from types import SimpleNamespace

import pytest

from scoring import average_percentage, compute_percentage, rank_results, rank_scores, top_performers


def test_percentage_follows_total_marks():
    assert compute_percentage(85, 100) == 85.0
    assert compute_percentage(85, 50) == 170.0


def test_percentage_needs_positive_total():
    with pytest.raises(ValueError):
        compute_percentage(10, 0)


def test_ties_share_a_rank():
    assert rank_scores([70, 90, 80, 80]) == {90: 1, 80: 2, 70: 4}


def test_rank_results_reports_participants():
    results = [SimpleNamespace(id=i, score=s) for i, s in enumerate([55, 55, 40], start=1)]
    assert rank_results(results) == {1: (1, 3), 2: (1, 3), 3: (3, 3)}


def test_top_performers_and_average():
    results = [
        SimpleNamespace(id=1, score=60, percentage=60.0),
        SimpleNamespace(id=2, score=90, percentage=90.0),
        SimpleNamespace(id=3, score=90, percentage=90.0),
    ]
    assert [r.id for r in top_performers(results, limit=2)] == [2, 3]
    assert average_percentage(results) == 80.0
    assert average_percentage([]) == 0.0
