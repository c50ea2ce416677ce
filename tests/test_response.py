import threading

import pytest

from conftest import add_load, make_donation, make_recipient
from donations.models import DonationStatus, Offer, OfferStatus, VerificationStatus
from matching.response import (
    ANOTHER_RECIPIENT_ACCEPTED,
    DonationNotFoundError,
    OfferNotFoundError,
    ResponseResolver,
    StateConflictError,
)


@pytest.fixture
def offered_donation(store, pickup_location):
    for recipient_id in ("r1", "r2", "r3", "walk_in"):
        store.add_recipient(make_recipient(recipient_id))
    donation = make_donation(pickup_location)
    donation.matched_recipients = [
        Offer(recipient_id="r1", score=0.9),
        Offer(recipient_id="r2", score=0.8),
        Offer(recipient_id="r3", score=0.7),
    ]
    return store.add_donation(donation)


def accepted_count(donation):
    return len(donation.accepted_offers())


def test_accept_declines_every_other_offer(store, offered_donation):
    result = ResponseResolver(store).accept(offered_donation.id, "r2")

    donation = store.get_donation(offered_donation.id)
    assert donation.accepted_by == "r2"
    assert donation.status == DonationStatus.MATCHED
    assert donation.offer_for("r2").status == OfferStatus.ACCEPTED
    for recipient_id in ("r1", "r3"):
        offer = donation.offer_for(recipient_id)
        assert offer.status == OfferStatus.DECLINED
        assert offer.decline_reason == ANOTHER_RECIPIENT_ACCEPTED
    assert sorted(result.declined_recipient_ids) == ["r1", "r3"]
    assert not result.manual


def test_accept_is_idempotent(store, offered_donation):
    calls = []
    resolver = ResponseResolver(store, on_accepted=calls.append)

    resolver.accept(offered_donation.id, "r1")
    repeat = resolver.accept(offered_donation.id, "r1")

    assert repeat.already_accepted
    assert len(calls) == 1
    assert accepted_count(store.get_donation(offered_donation.id)) == 1


def test_manual_acceptance_without_offer(store, offered_donation):
    result = ResponseResolver(store).accept(offered_donation.id, "walk_in")

    donation = store.get_donation(offered_donation.id)
    offer = donation.offer_for("walk_in")
    assert result.manual
    assert offer.status == OfferStatus.ACCEPTED
    assert offer.score == 0.5
    assert offer.method == "manual"
    assert donation.accepted_by == "walk_in"
    assert all(
        donation.offer_for(recipient_id).status == OfferStatus.DECLINED for recipient_id in ("r1", "r2", "r3")
    )


@pytest.mark.parametrize("recipient_id,overrides", [
    ("no_such_recipient", None),
    ("unverified", {"verification_status": VerificationStatus.PENDING}),
    ("closed", {"is_active": False}),
])
def test_manual_acceptance_requires_eligible_recipient(store, offered_donation, recipient_id, overrides):
    if overrides is not None:
        store.add_recipient(make_recipient(recipient_id, **overrides))

    with pytest.raises(StateConflictError):
        ResponseResolver(store).accept(offered_donation.id, recipient_id)

    donation = store.get_donation(offered_donation.id)
    assert donation.accepted_by is None
    assert donation.status == DonationStatus.ACTIVE
    assert donation.offer_for(recipient_id) is None


def test_full_recipient_cannot_accept(store, offered_donation, pickup_location):
    store.add_recipient(make_recipient("small_pantry", capacity=2))
    add_load(store, "small_pantry", 2, pickup_location)
    add_load(store, "r1", 50, pickup_location)
    resolver = ResponseResolver(store)

    with pytest.raises(StateConflictError, match="at capacity"):
        resolver.accept(offered_donation.id, "small_pantry")
    with pytest.raises(StateConflictError, match="at capacity"):
        resolver.accept(offered_donation.id, "r1")

    assert store.get_donation(offered_donation.id).accepted_by is None


def test_unset_capacity_uses_default_limit(store, offered_donation, pickup_location):
    store.add_recipient(make_recipient("no_limit_given", capacity=None))
    add_load(store, "no_limit_given", 50, pickup_location)

    with pytest.raises(StateConflictError, match="50/50"):
        ResponseResolver(store).accept(offered_donation.id, "no_limit_given")


def test_accept_on_non_active_donation_conflicts(store, pickup_location):
    donation = store.add_donation(make_donation(pickup_location, status=DonationStatus.PROCESSING))

    with pytest.raises(StateConflictError):
        ResponseResolver(store).accept(donation.id, "r1")

    assert store.get_donation(donation.id).accepted_by is None


def test_second_recipient_loses_after_acceptance(store, offered_donation):
    resolver = ResponseResolver(store)
    resolver.accept(offered_donation.id, "r1")

    with pytest.raises(StateConflictError):
        resolver.accept(offered_donation.id, "r2")

    donation = store.get_donation(offered_donation.id)
    assert donation.accepted_by == "r1"
    assert donation.offer_for("r2").status == OfferStatus.DECLINED


def test_declined_recipient_cannot_accept(store, offered_donation):
    resolver = ResponseResolver(store)
    resolver.decline(offered_donation.id, "r1", "no fridge space")

    with pytest.raises(StateConflictError):
        resolver.accept(offered_donation.id, "r1")

    assert store.get_donation(offered_donation.id).accepted_by is None


def test_concurrent_accepts_have_exactly_one_winner(store, pickup_location):
    store.add_recipient(make_recipient("a"))
    store.add_recipient(make_recipient("b"))
    for _ in range(20):
        donation = store.add_donation(make_donation(pickup_location))
        resolver = ResponseResolver(store)
        barrier = threading.Barrier(2)
        outcomes = {}

        def accept(recipient_id):
            barrier.wait()
            try:
                resolver.accept(donation.id, recipient_id)
                outcomes[recipient_id] = "won"
            except StateConflictError:
                outcomes[recipient_id] = "lost"

        threads = [threading.Thread(target=accept, args=(rid,)) for rid in ("a", "b")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes.values()) == ["lost", "won"]
        winner = next(rid for rid, outcome in outcomes.items() if outcome == "won")
        loser = next(rid for rid, outcome in outcomes.items() if outcome == "lost")

        stored = store.get_donation(donation.id)
        assert stored.status == DonationStatus.MATCHED
        assert stored.accepted_by == winner
        assert accepted_count(stored) == 1
        assert stored.offer_for(loser).status == OfferStatus.DECLINED
        assert stored.offer_for(loser).decline_reason == ANOTHER_RECIPIENT_ACCEPTED


def test_decline_sets_reason(store, offered_donation):
    offer = ResponseResolver(store).decline(offered_donation.id, "r3", "too far")

    assert offer.status == OfferStatus.DECLINED
    assert offer.decline_reason == "too far"
    assert store.get_donation(offered_donation.id).status == DonationStatus.ACTIVE


def test_decline_requires_open_offer(store, offered_donation):
    resolver = ResponseResolver(store)

    with pytest.raises(OfferNotFoundError):
        resolver.decline(offered_donation.id, "stranger")

    resolver.decline(offered_donation.id, "r1")
    with pytest.raises(OfferNotFoundError):
        resolver.decline(offered_donation.id, "r1")


def test_unknown_donation(store):
    resolver = ResponseResolver(store)

    with pytest.raises(DonationNotFoundError):
        resolver.accept("missing", "r1")
    with pytest.raises(DonationNotFoundError):
        resolver.decline("missing", "r1")


def test_failing_hook_does_not_undo_acceptance(store, offered_donation):
    def explode(result):
        raise RuntimeError("queue down")

    result = ResponseResolver(store, on_accepted=explode).accept(offered_donation.id, "r1")

    assert result.offer.status == OfferStatus.ACCEPTED
    assert store.get_donation(offered_donation.id).accepted_by == "r1"
