"""Tests for renewal date arithmetic."""

from datetime import datetime, timezone

from partner_rewards.core.calendar import add_years, advance_past


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestAddYears:
    def test_regular_date(self):
        assert add_years(_utc(2026, 10, 19, 8, 30)) == _utc(2027, 10, 19, 8, 30)

    def test_leap_day_falls_back(self):
        assert add_years(_utc(2024, 2, 29), 1) == _utc(2025, 2, 28)
        assert add_years(_utc(2024, 2, 29), 4) == _utc(2028, 2, 29)


class TestAdvancePast:
    def test_next_anniversary(self):
        due = _utc(2026, 1, 1)

        assert advance_past(due, _utc(2026, 1, 2)) == _utc(2027, 1, 1)

    def test_skips_missed_years(self):
        due = _utc(2023, 6, 1)

        assert advance_past(due, _utc(2026, 7, 1)) == _utc(2027, 6, 1)

    def test_leap_anchor_in_common_year(self):
        anchor = _utc(2024, 2, 29)

        assert advance_past(_utc(2025, 2, 28), _utc(2025, 3, 1), anchor) == _utc(2026, 2, 28)

    def test_leap_anchor_restored_in_leap_year(self):
        anchor = _utc(2024, 2, 29)

        assert advance_past(_utc(2027, 2, 28), _utc(2027, 3, 1), anchor) == _utc(2028, 2, 29)

    def test_never_returns_the_current_due_date(self):
        anchor = _utc(2024, 2, 29)

        # Run early, before the due date itself
        assert advance_past(_utc(2025, 2, 28), _utc(2025, 1, 1), anchor) == _utc(2026, 2, 28)
