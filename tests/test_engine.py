from __future__ import annotations

from datetime import date

import pytest

from guestsync.adapters import InMemoryCRM
from guestsync.exceptions import StayKeyCollision
from guestsync.pipeline.duplicates import DuplicateIndex
from guestsync.pipeline.engine import EnginePolicy, reconcile
from guestsync.pipeline.records import CRMIdentity, RecordOutcome, ReviewReason


def test_new_guest_creates_identity_and_stay(crm, make_row):
    result = reconcile([make_row(email="j@x.com", first="John", last="Doe", check_in="2026-03-01")], crm)

    plan = result.plan
    assert [draft.email for draft in plan.create_identities] == ["j@x.com"]
    assert len(plan.create_stays) == 1
    assert plan.create_stays[0].identity_id is None
    assert plan.create_stays[0].check_in == date(2026, 3, 1)
    assert plan.update_stays == ()
    assert not result.review_required
    assert result.summary.identities_created == 1
    assert result.summary.created == 1
    assert result.decisions[0].outcome == RecordOutcome.CREATE_IDENTITY


def test_shared_email_with_different_names_goes_to_review(john_crm, make_row):
    result = reconcile(
        [
            make_row(email="guest@example.com", first="John", last="Doe"),
            make_row(email="guest@example.com", first="Mary", last="Doe", check_in="2026-03-02"),
        ],
        john_crm,
    )

    assert result.plan.is_empty
    assert len(result.review_queue) == 2
    assert {item.reason for item in result.review_queue} == {ReviewReason.SHARED_EMAIL_CONFLICT}
    assert all("John Doe, Mary Doe" in item.details for item in result.review_queue)
    assert result.summary.conflict_emails == 1
    assert result.summary.needs_review == 2
    assert {d.outcome for d in result.decisions} == {RecordOutcome.NEEDS_REVIEW}


def test_empty_crm_city_is_filled_with_one_change(make_row, make_stay):
    crm = InMemoryCRM(
        identities=[CRMIdentity("ID-1", "guest@example.com", "John", "Doe")],
        stays=[make_stay(city="")],
    )

    result = reconcile([make_row(CITY="Mendoza")], crm)

    assert result.plan.create_identities == ()
    assert result.plan.create_stays == ()
    (update,) = result.plan.update_stays
    assert [(c.label, c.from_value, c.to_value) for c in update.changes] == [("City", "", "Mendoza")]
    assert result.decisions[0].outcome == RecordOutcome.UPDATE_STAY


def test_rerun_after_apply_is_idempotent(crm, make_row):
    rows = [
        make_row(email="a@x.com", first="Ann", last="Lee", check_in="2026-03-01"),
        make_row(email="a@x.com", first="Ann", last="Lee", check_in="2026-05-01"),
        make_row(email="b@x.com", first="Bob", last="Ray"),
    ]

    first = reconcile(rows, crm)
    crm.apply(first.plan)
    second = reconcile(rows, crm)

    assert len(first.plan.create_identities) == 2
    assert len(first.plan.create_stays) == 3
    assert second.plan.is_empty
    assert second.summary.no_op == 3


def test_existing_identity_is_never_recreated(john_crm, make_row):
    result = reconcile([make_row(check_in="2026-06-10", check_out="2026-06-12")], john_crm)

    assert result.plan.create_identities == ()
    (stay,) = result.plan.create_stays
    assert stay.identity_id == "ID-1"
    assert result.summary.identities_created == 0


def test_unchanged_stay_is_no_op(john_crm, make_row):
    result = reconcile([make_row()], john_crm)

    assert result.plan.is_empty
    assert result.summary.no_op == 1
    assert result.decisions[0].outcome == RecordOutcome.NO_OP


def test_agents_and_invalid_rows_are_counted_not_synced(crm, make_row):
    rows = [
        make_row(email="abc@guest.booking.com"),
        make_row(email="reservas@agency.com"),
        make_row(email="someone@gmail.co"),
        make_row(email="ok@example.com", CHECK_IN="soon"),
        make_row(email="real@example.com"),
    ]

    result = reconcile(rows, crm)

    summary = result.summary
    assert summary.filtered_agent == 2
    assert summary.invalid == 2
    assert summary.eligible == 1
    assert [d.outcome for d in result.decisions] == [
        RecordOutcome.SKIP_NON_GUEST,
        RecordOutcome.SKIP_NON_GUEST,
        RecordOutcome.SKIP_INVALID,
        RecordOutcome.SKIP_INVALID,
        RecordOutcome.CREATE_IDENTITY,
    ]
    assert [r.reason for r in result.rejections] == ["provider-typo", "invalid-date"]


def test_ambiguous_crm_identity_goes_to_review(make_row):
    crm = InMemoryCRM(
        identities=[
            CRMIdentity("ID-1", "dup@x.com", "John", "Doe"),
            CRMIdentity("ID-2", "dup@x.com", "John", "Doe"),
        ]
    )

    result = reconcile([make_row(email="dup@x.com")], crm)

    assert result.plan.is_empty
    (item,) = result.review_queue
    assert item.reason == ReviewReason.MULTIPLE_CRM_IDENTITIES
    assert "ID-1" in item.details and "ID-2" in item.details


def test_first_record_wins_for_duplicate_stay_key(crm, make_row):
    result = reconcile(
        [
            make_row(email="a@x.com", first="Ann", last="Lee", CITY="Salta"),
            make_row(email="a@x.com", first="Ann", last="Lee", CITY="Jujuy"),
        ],
        crm,
    )

    (stay,) = result.plan.create_stays
    assert stay.city == "Salta"
    assert result.summary.duplicate_in_batch == 1
    assert result.decisions[1].detail == "duplicate-in-batch"


def test_new_guest_without_check_in_gets_identity_but_no_stay(crm, make_row):
    result = reconcile([make_row(email="new@x.com", check_in=None, check_out=None)], crm)

    assert [draft.email for draft in result.plan.create_identities] == ["new@x.com"]
    assert result.plan.create_stays == ()
    assert result.summary.no_stay == 1
    assert result.summary.identities_created == 1
    assert result.summary.no_op == 0
    assert result.decisions[0].outcome == RecordOutcome.CREATE_IDENTITY
    assert result.decisions[0].detail == "no check-in date"


def test_known_guest_without_check_in_writes_nothing(john_crm, make_row):
    result = reconcile([make_row(check_in=None, check_out=None)], john_crm)

    assert result.plan.is_empty
    assert result.summary.no_stay == 1
    assert result.summary.no_op == 0
    assert result.decisions[0].outcome == RecordOutcome.SKIP_NO_STAY


def test_later_dated_record_adds_stay_to_identity_drafted_without_one(crm, make_row):
    result = reconcile(
        [
            make_row(email="new@x.com", check_in=None, check_out=None),
            make_row(email="new@x.com", check_in="2026-04-02", check_out="2026-04-05"),
        ],
        crm,
    )

    assert len(result.plan.create_identities) == 1
    assert [stay.check_in for stay in result.plan.create_stays] == [date(2026, 4, 2)]
    assert [d.outcome for d in result.decisions] == [RecordOutcome.CREATE_IDENTITY, RecordOutcome.CREATE_STAY]


def test_crm_identity_name_is_never_rewritten(make_row, make_stay):
    crm = InMemoryCRM(
        identities=[CRMIdentity("ID-1", "guest@example.com", "Jon", "Doe")],
        stays=[make_stay(city="")],
    )
    rows = [
        make_row(first="John", last="Doe", CITY="Mendoza"),
        make_row(first="John", last="Doe", check_in="2026-05-10", check_out="2026-05-12"),
    ]

    result = reconcile(rows, crm)
    crm.apply(result.plan)

    assert result.plan.create_identities == ()
    (stay,) = result.plan.create_stays
    assert stay.identity_id == "ID-1"
    (update,) = result.plan.update_stays
    assert update.existing.identity_id == "ID-1"
    assert [change.field for change in update.changes] == ["city"]
    assert crm.identities == {"ID-1": CRMIdentity("ID-1", "guest@example.com", "Jon", "Doe")}


def test_shared_email_resolution_policy_lets_matching_name_through(john_crm, make_row):
    rows = [
        make_row(email="guest@example.com", first="John", last="Doe", check_in="2026-07-01"),
        make_row(email="guest@example.com", first="Mary", last="Doe", check_in="2026-07-01"),
    ]

    result = reconcile(rows, john_crm, policy=EnginePolicy(resolve_shared_emails=True))

    (stay,) = result.plan.create_stays
    assert stay.first_name == "John"
    assert stay.identity_id == "ID-1"
    (item,) = result.review_queue
    assert item.record.first_name == "Mary"
    assert item.reason == ReviewReason.SHARED_EMAIL_NO_NAME_MATCH


def test_shared_email_resolution_policy_reviews_new_identity(crm, make_row):
    rows = [
        make_row(email="fam@x.com", first="John", last="Doe"),
        make_row(email="fam@x.com", first="Mary", last="Doe"),
    ]

    result = reconcile(rows, crm, policy=EnginePolicy(resolve_shared_emails=True))

    assert result.plan.is_empty
    assert {item.reason for item in result.review_queue} == {ReviewReason.SHARED_EMAIL_NEW_IDENTITY}


def test_conflicted_records_never_reach_the_plan(john_crm, make_row):
    rows = [
        make_row(email="guest@example.com", first="John", last="Doe", check_in="2026-08-01"),
        make_row(email="guest@example.com", first="Johnny", last="Doe", check_in="2026-08-02"),
        make_row(email="other@example.com", first="Ann", last="Lee"),
    ]

    result = reconcile(rows, john_crm)

    planned_emails = {s.email.lower() for s in result.plan.create_stays}
    planned_emails |= {u.proposed.email.lower() for u in result.plan.update_stays}
    assert "guest@example.com" not in planned_emails
    assert {item.record.source_id for item in result.review_queue} == {rows[0]["NAME_ID"], rows[1]["NAME_ID"]}


def test_flag_reset_warning_is_advisory(make_row, make_stay):
    crm = InMemoryCRM(
        identities=[CRMIdentity("ID-1", "guest@example.com", "John", "Doe")],
        stays=[make_stay(flags={"attended_happy_hour": True})],
    )

    result = reconcile([make_row()], crm, policy=EnginePolicy(compare_default_flags=True))

    assert len(result.plan.update_stays) == 1
    assert result.summary.flag_reset_warnings == 1
    assert "Attended Happy Hour" in result.warnings[0]


def test_front_desk_lists_arrivals_without_usable_email(crm, make_row):
    rows = [
        make_row(email="bad@gmail.co", first="Lucia", check_in="2026-10-19"),
        make_row(email="tbc@company.com", first="TBC", check_in="2026-10-19"),
        make_row(email="bad2@gmail.co", first="Later", check_in="2026-10-25"),
        make_row(email="", first="NoMail", check_in="2026-10-19"),
    ]

    result = reconcile(rows, crm, as_of=date(2026, 10, 19))

    assert [(item.first_name, item.reason) for item in result.front_desk] == [
        ("Lucia", "provider-typo"),
        ("TBC", "company"),
        ("NoMail", "missing"),
    ]
    assert result.summary.front_desk == 3


def test_possible_duplicates_annotate_new_identities(crm, make_row, make_stay):
    index = DuplicateIndex.from_stays(
        [make_stay(identity_id="ID-9", email="jd@oldmail.com", check_in=date(2026, 3, 1))]
    )

    result = reconcile([make_row(email="john.doe@newmail.com")], crm, duplicate_index=index)

    assert result.summary.possible_duplicates == 1
    assert result.possible_duplicates[0].existing.identity_id == "ID-9"
    assert len(result.plan.create_identities) == 1
    assert "jd@oldmail.com" in result.decisions[0].detail


def test_misfiled_crm_stay_stops_the_run(make_row, make_stay):
    class MisfilingReader(InMemoryCRM):
        def find_stays_by_identity(self, identity_ids):
            stay = make_stay(identity_id="ID-1")
            return {("ID-1", date(1999, 1, 1)): stay}

    crm = MisfilingReader(identities=[CRMIdentity("ID-1", "guest@example.com", "John", "Doe")])

    with pytest.raises(StayKeyCollision):
        reconcile([make_row()], crm)


def test_crm_reads_are_batched(make_row):
    crm = InMemoryCRM()
    rows = [make_row(email=f"guest{i}@example.com", first=f"G{i}", last="Lee") for i in range(5)]

    reconcile(rows, crm, policy=EnginePolicy(crm_batch_size=2))

    # 3 identity batches, no stay lookups for brand-new identities
    assert crm.reads == 3
