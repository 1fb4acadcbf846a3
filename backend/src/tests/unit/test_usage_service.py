"""Monthly transformation counter reset."""

from datetime import datetime, timezone

import pytest

from src.services.usage_service import next_reset_at, reset_transformations_if_due


@pytest.mark.parametrize(
    "now,expected",
    [
        (datetime(2025, 6, 15, 12, tzinfo=timezone.utc), datetime(2025, 7, 1, tzinfo=timezone.utc)),
        (datetime(2025, 12, 31, 23, 59, tzinfo=timezone.utc), datetime(2026, 1, 1, tzinfo=timezone.utc)),
        (datetime(2025, 1, 1, tzinfo=timezone.utc), datetime(2025, 2, 1, tzinfo=timezone.utc)),
    ],
)
def test_next_reset_at(now, expected):
    assert next_reset_at(now) == expected


def test_first_read_schedules_reset(make_user, fixed_now):
    user = make_user(transformations_count=5)
    assert reset_transformations_if_due(user, fixed_now) is False
    assert user.transformations_count == 5
    assert user.transformations_reset_at == datetime(2025, 7, 1, tzinfo=timezone.utc)


def test_reset_not_yet_due(make_user, fixed_now):
    user = make_user(
        transformations_count=5,
        transformations_reset_at=datetime(2025, 7, 1, tzinfo=timezone.utc),
    )
    assert reset_transformations_if_due(user, fixed_now) is False
    assert user.transformations_count == 5


def test_reset_due(make_user):
    user = make_user(
        transformations_count=99,
        transformations_reset_at=datetime(2025, 7, 1, tzinfo=timezone.utc),
    )
    assert reset_transformations_if_due(user, datetime(2025, 7, 1, tzinfo=timezone.utc)) is True
    assert user.transformations_count == 0
    assert user.transformations_reset_at == datetime(2025, 8, 1, tzinfo=timezone.utc)
