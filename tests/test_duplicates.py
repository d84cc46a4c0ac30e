from __future__ import annotations

from datetime import date

from guestsync.pipeline.duplicates import DuplicateIndex, score_duplicate
from guestsync.pipeline.records import SourceGuestRecord


def _guest(email="john.doe@newmail.com", city="Mendoza", country="AR", state="Mendoza", check_in=date(2026, 3, 1)):
    return SourceGuestRecord(
        source_id="1",
        first_name="John",
        last_name="Doe",
        email=email,
        billing_city=city,
        billing_state=state,
        billing_country=country,
        check_in=check_in,
    )


def test_score_rewards_location_and_check_in_proximity(make_stay):
    existing = make_stay(email="jd@oldmail.com", city="Mendoza", country="AR", state="Mendoza", check_in=date(2026, 3, 2))

    close = score_duplicate(_guest(), existing, name_frequency=1)
    name_only = score_duplicate(_guest(city="", country="", state="", check_in=None), existing, name_frequency=1)

    assert close > name_only
    # 30 name + 20 city + 10 country + 5 state + 15 check-in within 3 days
    assert close == 80
    assert name_only == 30


def test_score_counts_same_email_domain(make_stay):
    existing = make_stay(email="jd@newmail.com", city="", country="", state="", check_in=date(2025, 1, 1))
    assert score_duplicate(_guest(city="", country="", state=""), existing, name_frequency=1) == 45


def test_score_name_rarity_steps(make_stay):
    existing = make_stay(email="x@other.com", city="", country="", state="", check_in=date(2020, 1, 1))
    guest = _guest(city="", country="", state="")
    assert [score_duplicate(guest, existing, n) for n in (1, 2, 5, 10, 11)] == [30, 22, 12, 5, 0]


def test_check_in_proximity_steps(make_stay):
    guest = _guest(city="", country="", state="")
    scores = []
    for offset in (0, 3, 14, 60, 61):
        existing = make_stay(
            email="x@other.com", city="", country="", state="", check_in=date.fromordinal(date(2026, 3, 1).toordinal() + offset)
        )
        scores.append(score_duplicate(guest, existing, 11))
    assert scores == [20, 15, 8, 3, 0]


def test_index_finds_same_name_under_other_email(make_stay):
    index = DuplicateIndex.from_stays(
        [
            make_stay(identity_id="ID-1", email="jd@oldmail.com", check_in=date(2026, 3, 2)),
            make_stay(identity_id="ID-2", email="mary@x.com", first_name="Mary", check_in=date(2026, 3, 1)),
        ],
        threshold=75,
    )

    matches = index.find_duplicates(_guest())

    assert [m.existing.identity_id for m in matches] == ["ID-1"]
    assert matches[0].score == 80


def test_index_skips_known_emails_and_low_scores(make_stay):
    index = DuplicateIndex.from_stays([make_stay(identity_id="ID-1", email="jd@oldmail.com")], threshold=75)

    assert index.find_duplicates(_guest(email="JD@oldmail.com")) == []
    assert index.find_duplicates(_guest(city="Salta", country="", state="", check_in=None)) == []


def test_index_ignores_stays_without_full_name(make_stay):
    index = DuplicateIndex.from_stays([make_stay(first_name="", email="anon@x.com")])
    assert index.by_name == {}
    assert "anon@x.com" in index.emails
