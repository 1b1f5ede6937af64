"""Optimistic-concurrency updates and change history."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from buyer_leads.adapters.db.models import Buyer, BuyerHistory
from buyer_leads.core.errors import ConflictAppError, NotFoundAppError, ValidationAppError
from buyer_leads.schemas.buyer import BuyerCreate, BuyerRead
from buyer_leads.services.buyer_store import create_buyer, get_buyer
from buyer_leads.services.buyer_update import compute_diff, is_stale, update_buyer
from conftest import buyer_payload


def _history_count(session) -> int:
    return session.scalar(select(func.count()).select_from(BuyerHistory))


@pytest.fixture
def buyer(session, owner) -> BuyerRead:
    created = create_buyer(session, owner, BuyerCreate.model_validate(buyer_payload()))
    return BuyerRead.model_validate(created)


def test_update_changes_fields_and_bumps_version(session, owner, buyer) -> None:
    result = update_buyer(
        session, owner, buyer.id, {"status": "Qualified"}, expected_updated_at=buyer.updated_at
    )

    assert result.after.status == "Qualified"
    assert result.after.updated_at > buyer.updated_at
    assert result.before.status == "New"


def test_stale_version_conflicts_and_writes_nothing(session, owner, buyer) -> None:
    with pytest.raises(ConflictAppError) as exc_info:
        update_buyer(
            session,
            owner,
            buyer.id,
            {"status": "Dropped"},
            expected_updated_at=buyer.updated_at - timedelta(seconds=30),
        )

    assert exc_info.value.code == "stale_version"
    assert get_buyer(session, owner, buyer.id).status == "New"
    assert _history_count(session) == 0


def test_version_within_tolerance_is_accepted(session, owner, buyer) -> None:
    result = update_buyer(
        session,
        owner,
        buyer.id,
        {"status": "Visited"},
        expected_updated_at=buyer.updated_at - timedelta(milliseconds=400),
        tolerance_seconds=1.0,
    )

    assert result.after.status == "Visited"


def test_zero_tolerance_requires_exact_version(session, owner, buyer) -> None:
    with pytest.raises(ConflictAppError):
        update_buyer(
            session,
            owner,
            buyer.id,
            {"status": "Visited"},
            expected_updated_at=buyer.updated_at - timedelta(milliseconds=1),
            tolerance_seconds=0,
        )


def test_resubmitting_identical_values_records_no_history(session, owner, buyer) -> None:
    same = {"full_name": buyer.full_name, "tags": list(buyer.tags), "budget_max": buyer.budget_max}

    result = update_buyer(session, owner, buyer.id, same, expected_updated_at=buyer.updated_at)

    assert result.diff == {}
    assert _history_count(session) == 0


def test_changed_fields_produce_one_entry_with_each_key(session, owner, buyer) -> None:
    changes = {"status": "Contacted", "city": "Mohali", "tags": ["hot"], "notes": buyer.notes}

    update_buyer(session, owner, buyer.id, changes, expected_updated_at=buyer.updated_at)

    entries = session.scalars(select(BuyerHistory)).all()
    assert len(entries) == 1
    entry = entries[0]
    assert set(entry.diff) == {"status", "city", "tags"}
    assert entry.diff["city"] == {"old": "Chandigarh", "new": "Mohali"}
    assert entry.diff["tags"] == {"old": ["hot", "family"], "new": ["hot"]}
    assert entry.changed_by == "user-1"
    assert entry.buyer_id == buyer.id


def test_update_without_version_skips_stale_check(session, owner, buyer) -> None:
    result = update_buyer(session, owner, buyer.id, {"purpose": "Rent"})

    assert result.after.purpose == "Rent"


def test_missing_buyer_is_not_found(session, owner) -> None:
    with pytest.raises(NotFoundAppError):
        update_buyer(session, owner, "does-not-exist", {"status": "Qualified"})


def test_other_owner_cannot_update(session, other_user, buyer) -> None:
    with pytest.raises(NotFoundAppError):
        update_buyer(session, other_user, buyer.id, {"status": "Qualified"})


def test_admin_can_update_and_is_recorded_as_author(session, admin, buyer) -> None:
    result = update_buyer(session, admin, buyer.id, {"status": "Negotiation"})

    assert result.after.owner_id == "user-1"
    entry = session.scalars(select(BuyerHistory)).one()
    assert entry.changed_by == "admin-1"


def test_merged_record_must_keep_bhk_for_residential(session, owner) -> None:
    plot = create_buyer(
        session, owner, BuyerCreate.model_validate(buyer_payload(property_type="Plot", bhk=None))
    )

    with pytest.raises(ValidationAppError) as exc_info:
        update_buyer(session, owner, plot.id, {"property_type": "Villa"})

    assert exc_info.value.details["issues"][0]["path"] == ["bhk"]
    assert get_buyer(session, owner, plot.id).property_type == "Plot"


def test_merged_record_budget_order(session, owner, buyer) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        update_buyer(session, owner, buyer.id, {"budget_max": buyer.budget_min - 1})

    assert exc_info.value.details["issues"][0]["path"] == ["budget_max"]


def test_write_after_concurrent_change_conflicts(session, owner, buyer) -> None:
    # Keep the row loaded so this session holds the pre-change version
    stale = get_buyer(session, owner, buyer.id)

    # Another writer bumps the version behind this session's back
    session.connection().execute(
        update(Buyer)
        .where(Buyer.id == buyer.id)
        .values(updated_at=buyer.updated_at + timedelta(seconds=5))
    )
    session.commit()

    with pytest.raises(ConflictAppError) as exc_info:
        update_buyer(session, owner, buyer.id, {"status": "Qualified"})

    assert exc_info.value.code == "update_conflict"
    assert _history_count(session) == 0
    assert stale.id == buyer.id


def test_unknown_keys_are_ignored(session, owner, buyer) -> None:
    result = update_buyer(session, owner, buyer.id, {"owner_id": "thief", "status": "Visited"})

    assert result.after.owner_id == "user-1"
    assert set(result.diff) == {"status"}


def test_compute_diff_only_reports_real_changes(buyer) -> None:
    diff = compute_diff(buyer, {"status": "New", "bhk": "3", "unknown": 1})

    assert diff == {"bhk": {"old": "2", "new": "3"}}


def test_is_stale_is_symmetric() -> None:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert is_stale(now, now + timedelta(seconds=2), 1.0) is True
    assert is_stale(now + timedelta(seconds=2), now, 1.0) is True
    assert is_stale(now, now + timedelta(seconds=0.5), 1.0) is False
