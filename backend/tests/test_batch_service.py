"""
Production batch tests.

Verifies:
- lifecycle transitions and terminal states
- completion credits quantity * yield / 100 exactly once
- quality checks are a closed, merged map
- expiring-batch and daily production queries
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from dairyflow.errors import InvalidTransitionError, NotFoundError, ValidationError
from dairyflow.extensions import db
from dairyflow.models import Batch, Product
from dairyflow.services import batch_service
from dairyflow.time_utils import utcnow

from conftest import make_product


def _batch_payload(**overrides):
    payload = {
        "product_name": "Whole Milk",
        "product_type": "milk",
        "quantity": 500,
        "unit": "L",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def empty_milk(db_session):
    return make_product(db_session, "MILK-5L", name="Whole Milk 5L", stock="0", min_threshold="100")


class TestCreateBatch:

    def test_defaults(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)

        assert batch.status == "pending"
        assert batch.batch_number.startswith("BATCH-")
        assert batch.operator_id == operator_user.id
        assert batch.operator_name == operator_user.name
        assert batch.start_time is not None
        assert batch.quality_checks == {
            "temperature": "pending",
            "ph": "pending",
            "bacteria": "pending",
            "fat_content": "pending",
        }

    def test_explicit_batch_number_kept(self, db_session, operator_user):
        batch = batch_service.create_batch(
            _batch_payload(batch_number="B-2026-001"), actor_user_id=operator_user.id
        )
        assert batch.batch_number == "B-2026-001"

    def test_duplicate_batch_number_rejected(self, db_session, operator_user):
        batch_service.create_batch(_batch_payload(batch_number="DUP"), actor_user_id=operator_user.id)
        with pytest.raises(ValidationError):
            batch_service.create_batch(_batch_payload(batch_number="DUP"), actor_user_id=operator_user.id)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"quantity": 0},
            {"quantity": -10},
            {"product_type": "ice-cream"},
            {"unit": "gallon"},
            {"product_name": "  "},
            {"quality_checks": {"smell": "passed"}},
            {"quality_checks": {"ph": "great"}},
            {"product_name": 42},
            {"batch_number": 123},
            {"batch_number": "B" * 65},
            {"notes": ["wash", "rinse"]},
            {"temperature": "warm"},
            {"ph": -1},
        ],
    )
    def test_invalid_payloads(self, db_session, operator_user, overrides):
        with pytest.raises(ValidationError):
            batch_service.create_batch(_batch_payload(**overrides), actor_user_id=operator_user.id)
        assert db_session.query(Batch).count() == 0

    def test_operator_required(self, db_session):
        with pytest.raises(ValidationError):
            batch_service.create_batch(_batch_payload())

    def test_unknown_product(self, db_session, operator_user):
        with pytest.raises(NotFoundError):
            batch_service.create_batch(_batch_payload(product_id=9999), actor_user_id=operator_user.id)


class TestLifecycle:

    def test_start_then_complete(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch = batch_service.start_batch(batch.id)
        assert batch.status == "in-progress"

        batch = batch_service.complete_batch(batch.id, yield_pct=95)
        assert batch.status == "completed"
        assert batch.end_time is not None
        assert batch.yield_pct == Decimal("95")

    def test_start_twice_rejected(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch_service.start_batch(batch.id)
        with pytest.raises(InvalidTransitionError):
            batch_service.start_batch(batch.id)

    @pytest.mark.parametrize("closer", ["fail_batch", "cancel_batch"])
    def test_terminal_states_reject_everything(self, db_session, operator_user, closer):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        getattr(batch_service, closer)(batch.id, reason="Contaminated tank")

        with pytest.raises(InvalidTransitionError):
            batch_service.start_batch(batch.id)
        with pytest.raises(InvalidTransitionError):
            batch_service.complete_batch(batch.id, yield_pct=90)
        with pytest.raises(InvalidTransitionError):
            batch_service.cancel_batch(batch.id)
        with pytest.raises(InvalidTransitionError):
            batch_service.record_quality_checks(batch.id, {"ph": "passed"})

    def test_fail_records_reason(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch = batch_service.fail_batch(batch.id, reason="Temperature excursion")
        assert batch.status == "failed"
        assert batch.failure_reason == "Temperature excursion"

    def test_unknown_batch(self, db_session):
        with pytest.raises(NotFoundError):
            batch_service.complete_batch(12345, yield_pct=90)

    @pytest.mark.parametrize("bad_yield", [-1, 100.5, "lots"])
    def test_yield_bounds(self, db_session, operator_user, bad_yield):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        with pytest.raises(ValidationError):
            batch_service.complete_batch(batch.id, yield_pct=bad_yield)
        assert batch_service.get_batch(batch.id).status == "pending"


class TestCompletionCredit:

    def test_completion_credits_yield(self, db_session, operator_user, empty_milk):
        batch = batch_service.create_batch(
            _batch_payload(product_id=empty_milk.id), actor_user_id=operator_user.id
        )
        batch_service.start_batch(batch.id)
        batch_service.complete_batch(batch.id, yield_pct=90)

        product = db_session.get(Product, empty_milk.id, populate_existing=True)
        assert product.current_stock == Decimal("450")
        assert product.status == "normal"
        assert product.last_restocked is not None

    def test_second_completion_does_not_recredit(self, db_session, operator_user, empty_milk):
        batch = batch_service.create_batch(
            _batch_payload(product_id=empty_milk.id), actor_user_id=operator_user.id
        )
        batch_service.complete_batch(batch.id, yield_pct=90)

        with pytest.raises(InvalidTransitionError):
            batch_service.complete_batch(batch.id, yield_pct=90)

        product = db_session.get(Product, empty_milk.id, populate_existing=True)
        assert product.current_stock == Decimal("450")

    def test_linked_batch_requires_yield(self, db_session, operator_user, empty_milk):
        batch = batch_service.create_batch(
            _batch_payload(product_id=empty_milk.id), actor_user_id=operator_user.id
        )
        with pytest.raises(ValidationError):
            batch_service.complete_batch(batch.id)

        assert batch_service.get_batch(batch.id).status == "pending"
        product = db_session.get(Product, empty_milk.id, populate_existing=True)
        assert product.current_stock == Decimal("0")

    def test_yield_recorded_at_creation_is_used(self, db_session, operator_user, empty_milk):
        batch = batch_service.create_batch(
            _batch_payload(product_id=empty_milk.id, quantity=200, yield_pct=50),
            actor_user_id=operator_user.id,
        )
        batch_service.complete_batch(batch.id)

        product = db_session.get(Product, empty_milk.id, populate_existing=True)
        assert product.current_stock == Decimal("100")

    def test_unlinked_batch_completes_without_stock_effect(self, db_session, operator_user, milk):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch_service.complete_batch(batch.id)

        product = db_session.get(Product, milk.id, populate_existing=True)
        assert product.current_stock == Decimal("100")

    def test_cancel_has_no_stock_effect(self, db_session, operator_user, empty_milk):
        batch = batch_service.create_batch(
            _batch_payload(product_id=empty_milk.id, yield_pct=90), actor_user_id=operator_user.id
        )
        batch_service.cancel_batch(batch.id)

        product = db_session.get(Product, empty_milk.id, populate_existing=True)
        assert product.current_stock == Decimal("0")


class TestUpdateBatch:

    def test_edit_readings_and_notes(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch = batch_service.update_batch(
            batch.id,
            {"temperature": "72.5", "ph": 6.7, "notes": " Pasteurised at line 2 "},
            actor_user_id=operator_user.id,
        )

        assert batch.temperature == Decimal("72.5")
        assert batch.ph == Decimal("6.7")
        assert batch.notes == "Pasteurised at line 2"
        assert batch.status == "pending"

    def test_null_clears_reading(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(temperature=4), actor_user_id=operator_user.id)
        batch = batch_service.update_batch(batch.id, {"temperature": None})
        assert batch.temperature is None

    def test_in_progress_is_editable(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch_service.start_batch(batch.id)
        batch = batch_service.update_batch(batch.id, {"ph": "6.5"})
        assert batch.ph == Decimal("6.5")

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"quantity": 900},
            {"status": "completed"},
            {"yield_pct": 90},
            {"ph": 15},
            {"ph": "sour"},
            {"temperature": 400},
            {"notes": 42},
            "notes",
        ],
    )
    def test_invalid_edits(self, db_session, operator_user, payload):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        with pytest.raises(ValidationError):
            batch_service.update_batch(batch.id, payload)

    @pytest.mark.parametrize("closer", ["fail_batch", "cancel_batch"])
    def test_terminal_batch_rejected(self, db_session, operator_user, closer):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        getattr(batch_service, closer)(batch.id)
        with pytest.raises(InvalidTransitionError):
            batch_service.update_batch(batch.id, {"notes": "late"})

    def test_unknown_batch(self, db_session):
        with pytest.raises(NotFoundError):
            batch_service.update_batch(12345, {"notes": "x"})


class TestQualityChecks:

    def test_merge_keeps_other_keys(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch_service.record_quality_checks(batch.id, {"ph": "passed"})
        batch = batch_service.record_quality_checks(batch.id, {"bacteria": "failed"})

        assert batch.quality_checks["ph"] == "passed"
        assert batch.quality_checks["bacteria"] == "failed"
        assert batch.quality_checks["temperature"] == "pending"

    def test_completion_merges_checks(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch = batch_service.complete_batch(batch.id, quality_checks={"fat_content": "passed"})
        assert batch.quality_checks["fat_content"] == "passed"
        assert batch.quality_checks["ph"] == "pending"

    def test_unknown_key_rejected(self, db_session, operator_user):
        batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        with pytest.raises(ValidationError):
            batch_service.record_quality_checks(batch.id, {"colour": "passed"})


class TestQueries:

    def test_list_filters(self, db_session, operator_user):
        milk_batch = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch_service.create_batch(
            _batch_payload(product_name="Cheddar", product_type="cheese", unit="kg"),
            actor_user_id=operator_user.id,
        )
        batch_service.start_batch(milk_batch.id)

        assert [b.id for b in batch_service.list_batches(status="in-progress")] == [milk_batch.id]
        assert len(batch_service.list_batches(product_type="cheese")) == 1
        assert len(batch_service.list_batches()) == 2
        with pytest.raises(ValidationError):
            batch_service.list_batches(status="brewing")

    def test_find_expiring_batches(self, db_session, operator_user, milk):
        now = utcnow()
        # milk shelf life is 7 days: started 5 days ago -> expires in 2 days
        soon = batch_service.create_batch(
            _batch_payload(product_id=milk.id, start_time=(now - timedelta(days=5)).isoformat()),
            actor_user_id=operator_user.id,
        )
        batch_service.start_batch(soon.id)
        # fresh batch expires in 7 days, outside a 3 day window
        fresh = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch_service.start_batch(fresh.id)
        # pending batches are not tracked
        batch_service.create_batch(
            _batch_payload(start_time=(now - timedelta(days=6)).isoformat()),
            actor_user_id=operator_user.id,
        )

        expiring = batch_service.find_expiring_batches(within_days=3, now=now)
        assert [entry["batch_id"] for entry in expiring] == [soon.id]
        assert expiring[0]["days_left"] in (1, 2)

    def test_daily_production_summary(self, db_session, operator_user):
        first = batch_service.create_batch(_batch_payload(quantity=300), actor_user_id=operator_user.id)
        second = batch_service.create_batch(
            _batch_payload(product_name="Cheddar", product_type="cheese", unit="kg", quantity=40),
            actor_user_id=operator_user.id,
        )
        failed = batch_service.create_batch(_batch_payload(), actor_user_id=operator_user.id)
        batch_service.complete_batch(first.id)
        batch_service.complete_batch(second.id)
        batch_service.fail_batch(failed.id)

        summary = batch_service.daily_production_summary()
        assert summary["completed_batches"] == 2
        assert summary["failed_batches"] == 1
        assert summary["total_quantity"] == pytest.approx(340)
        assert summary["quantity_by_product"] == {"Cheddar": 40.0, "Whole Milk": 300.0}
        assert summary["operators"] == [operator_user.name]
