"""
Deadline policy: option lookup, duration resolution and option management.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import ConflictError, NotFoundError, UnknownOptionError, ValidationError
from app.models import db
from app.models.workflow import DeadlineOption
from app.services import deadline_policy


class TestResolve:
    def test_three_hours_is_exact(self, now):
        assert deadline_policy.resolve("3_hours", now) == now + timedelta(hours=3)

    def test_day_based_option(self, now):
        assert deadline_policy.resolve("2_days", now) == now + timedelta(days=2)

    def test_naive_instant_treated_as_utc(self, now):
        naive = now.replace(tzinfo=None)
        assert deadline_policy.resolve("1_day", naive) == now + timedelta(days=1)

    def test_unknown_option(self, now):
        with pytest.raises(UnknownOptionError) as exc:
            deadline_policy.resolve("fortnight_and_a_bit", now)
        assert exc.value.option_key == "fortnight_and_a_bit"
        assert exc.value.code == "UNKNOWN_DEADLINE_OPTION"

    def test_hours_win_over_legacy_days(self, now):
        option = deadline_policy.get_option("3_hours")
        option.days = Decimal("0.125")
        option.hours = 3
        db.session.commit()
        assert deadline_policy.resolve("3_hours", now) - now == timedelta(hours=3)

    def test_legacy_days_only_row(self, now):
        db.session.add(DeadlineOption(key="half_day", label="Half Day", hours=None,
                                      days=Decimal("0.5"), sort_order=99))
        db.session.commit()
        assert deadline_policy.duration_for("half_day") == timedelta(hours=12)

    def test_row_without_any_duration(self):
        db.session.add(DeadlineOption(key="broken", label="Broken", sort_order=99))
        db.session.commit()
        with pytest.raises(ValidationError):
            deadline_policy.duration_for("broken")


class TestSeeding:
    def test_defaults_present(self):
        keys = [o.key for o in deadline_policy.list_options()]
        assert keys == [k for k, _label, _hours in deadline_policy.DEFAULT_OPTIONS]

    def test_seed_is_idempotent(self):
        assert deadline_policy.seed_default_options() == 0

    def test_seed_restores_missing(self):
        db.session.delete(deadline_policy.get_option("6_hours"))
        db.session.commit()
        assert deadline_policy.seed_default_options() == 1
        assert deadline_policy.get_option("6_hours").hours == 6


class TestManagement:
    def test_create(self):
        option = deadline_policy.create_option({"key": "5_days", "label": "5 Days", "hours": 120})
        db.session.commit()
        assert option.hours == 120
        assert option.sort_order == len(deadline_policy.DEFAULT_OPTIONS) + 1

    def test_create_accepts_digit_string(self):
        option = deadline_policy.create_option({"key": "18_hours", "label": "18 Hours", "hours": "18"})
        assert option.hours == 18

    @pytest.mark.parametrize("payload", [
        {"key": "Bad Key", "label": "X", "hours": 1},
        {"key": "ok_key", "label": "", "hours": 1},
        {"key": "ok_key", "label": "X", "hours": 0},
        {"key": "ok_key", "label": "X", "hours": 9000},
        {"key": "ok_key", "label": "X", "hours": 1.5},
        {"key": "ok_key", "label": "X", "hours": True},
    ])
    def test_create_rejects_invalid(self, payload):
        with pytest.raises(ValidationError):
            deadline_policy.create_option(payload)

    def test_create_duplicate(self):
        with pytest.raises(ConflictError):
            deadline_policy.create_option({"key": "1_day", "label": "Again", "hours": 24})

    def test_update_does_not_touch_existing_deadlines(self, make_paper):
        paper = make_paper(students_involved=True)
        stage = paper.stages[0]
        before = stage.deadline

        deadline_policy.update_option(stage.deadline_option, {"hours": 200})
        db.session.commit()

        db.session.refresh(stage)
        assert stage.deadline == before

    def test_update_rename_rejected(self):
        with pytest.raises(ConflictError):
            deadline_policy.update_option("1_day", {"key": "one_day"})

    def test_update_missing(self):
        with pytest.raises(NotFoundError):
            deadline_policy.update_option("nope", {"label": "x"})

    def test_delete_unused(self):
        deadline_policy.delete_option("12_hours")
        db.session.commit()
        with pytest.raises(UnknownOptionError):
            deadline_policy.get_option("12_hours")

    def test_delete_in_use(self, make_paper):
        paper = make_paper()
        with pytest.raises(ConflictError):
            deadline_policy.delete_option(paper.stages[0].deadline_option)
