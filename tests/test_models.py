import json

import pytest

from domain.errors import INVALID_INPUT, AppError
from domain.models import BatchResult, NewestFirstSeries, PricePeriod, ScoringCandidate
from domain.settings import DEFAULT_PARAMS


def _period(start: int, end: int, avg: float) -> PricePeriod:
    return PricePeriod(
        label=f"{end} days ago to {start} days ago",
        start_offset_days=start,
        end_offset_days=end,
        average_price=avg,
        high_price=avg + 2,
        low_price=max(avg - 2, 0),
    )


def test_newest_first_series_orders_by_offset():
    stored_oldest_first = [_period(10, 15, 100), _period(5, 10, 101), _period(0, 5, 99)]
    series = NewestFirstSeries.from_periods(stored_oldest_first)
    assert list(series) == [99, 101, 100]
    assert series[0] == 99
    assert len(series) == 3


def test_newest_first_series_allows_gaps():
    series = NewestFirstSeries.from_periods([_period(0, 5, 1), _period(20, 25, 3)])
    assert list(series) == [1, 3]


def test_newest_first_series_rejects_overlap():
    with pytest.raises(AppError) as excinfo:
        NewestFirstSeries.from_periods([_period(0, 5, 1), _period(3, 8, 2)])
    assert excinfo.value.code == INVALID_INPUT


@pytest.mark.parametrize(
    "kwargs",
    [
        {"start_offset_days": 5, "end_offset_days": 5},
        {"start_offset_days": -1, "end_offset_days": 5},
        {"low_price": 12.0},
        {"high_price": 9.0},
        {"direction": "sideways"},
    ],
)
def test_price_period_validation(kwargs):
    base = dict(
        label="p",
        start_offset_days=0,
        end_offset_days=5,
        average_price=10.0,
        high_price=11.0,
        low_price=9.0,
    )
    base.update(kwargs)
    with pytest.raises(ValueError):
        PricePeriod(**base)


def test_price_period_from_dict_accepts_legacy_keys():
    period = PricePeriod.from_dict(
        {
            "name": "10 days ago to 5 days ago",
            "startDaysAgo": 5,
            "endDaysAgo": 10,
            "averagePrice": 101.5,
            "highestPrice": 104,
            "lowestPrice": 99,
            "changePercent": -1.2,
            "direction": "down",
        }
    )
    assert period.label == "10 days ago to 5 days ago"
    assert period.high_price == 104.0
    assert period.change_percent == -1.2
    assert period.change_absolute is None
    assert PricePeriod.from_dict(period.as_dict()) == period


def test_price_period_as_dict_omits_missing_change():
    data = _period(0, 5, 10).as_dict()
    assert "changePercent" not in data
    assert data["startOffsetDays"] == 0


@pytest.mark.parametrize(
    "raw",
    [
        json.dumps([{"label": "a", "startOffsetDays": 0, "endOffsetDays": 5,
                     "averagePrice": 10, "highPrice": 11, "lowPrice": 9}]),
        {"periods": [{"label": "a", "startOffsetDays": 0, "endOffsetDays": 5,
                      "averagePrice": 10, "highPrice": 11, "lowPrice": 9}]},
        [_period(0, 5, 10)],
    ],
)
def test_scoring_candidate_decodes_history(raw):
    periods = ScoringCandidate("id-1", "AAA", raw).periods()
    assert len(periods) == 1
    assert periods[0].average_price == 10.0


def test_scoring_candidate_empty_history():
    assert ScoringCandidate("id-1", "AAA").periods() == []
    assert ScoringCandidate("id-1", "AAA", "[]").periods() == []


def test_batch_result_message():
    result = BatchResult(processed_count=3, has_more=False, resume_token=None, params=DEFAULT_PARAMS)
    assert result.message == "Successfully processed 3 symbols"
