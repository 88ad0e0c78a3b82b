import pytest

from coinledger import audit, models, slabs
from coinledger.errors import NoMatchingSlab, OverlappingSlabs, SlabGap, ValidationError
from coinledger.slabs import SlabInfo, validate_slab_set


def _slab(min_coins, max_coins, pct=50):
    return SlabInfo(id=None, min_coins=min_coins, max_coins=max_coins, payout_percentage=pct)


def test_resolve_boundaries(db_session, default_slabs):
    assert slabs.resolve(db_session, 0) == 50
    assert slabs.resolve(db_session, 999) == 50
    assert slabs.resolve(db_session, 1000) == 60
    assert slabs.resolve(db_session, 4999) == 60
    assert slabs.resolve(db_session, 5000) == 70
    assert slabs.resolve(db_session, 10_000_000) == 70


def test_resolve_is_total_over_sampled_amounts(db_session, default_slabs):
    active = slabs.list_active_slabs(db_session)
    for coins in list(range(0, 6001, 7)) + [999, 1000, 4999, 5000]:
        matches = [slab for slab in active if slab.covers(coins)]
        assert len(matches) == 1
        assert slabs.resolve(db_session, coins) == matches[0].payout_percentage


def test_resolve_rejects_negative_amount(db_session, default_slabs):
    with pytest.raises(ValidationError):
        slabs.resolve(db_session, -1)


def test_resolve_without_slabs_is_a_configuration_error(db_session):
    with pytest.raises(NoMatchingSlab):
        slabs.resolve(db_session, 1000)

    entries = audit.list_entries(db_session, action="payout_config_error")
    assert len(entries) == 1
    assert entries[0].actor_type == models.ACTOR_SYSTEM
    assert entries[0].details == {"coins_requested": 1000}


@pytest.mark.parametrize(
    "candidate, error",
    [
        ([], SlabGap),
        ([_slab(1, None)], SlabGap),
        ([_slab(0, 999), _slab(1001, None)], SlabGap),
        ([_slab(0, 999), _slab(1000, 4999)], SlabGap),
        ([_slab(0, 999), _slab(999, None)], OverlappingSlabs),
        ([_slab(0, None), _slab(1000, None)], OverlappingSlabs),
        ([_slab(0, 999), _slab(500, 800), _slab(1000, None)], OverlappingSlabs),
        ([_slab(0, 999, pct=101), _slab(1000, None)], ValidationError),
        ([_slab(0, 10), _slab(11, 5), _slab(12, None)], ValidationError),
    ],
)
def test_validate_slab_set_rejects_broken_sets(candidate, error):
    with pytest.raises(error):
        validate_slab_set(candidate)


def test_validate_slab_set_sorts_unordered_input():
    ordered = validate_slab_set([_slab(5000, None, 70), _slab(0, 999, 50), _slab(1000, 4999, 60)])
    assert [slab.payout_percentage for slab in ordered] == [50, 60, 70]


def test_replace_slabs_swaps_active_set(db_session, default_slabs):
    created = slabs.replace_slabs(
        db_session,
        admin_id="admin-1",
        slabs=[
            {"min_coins": 0, "max_coins": 1999, "payout_percentage": 55},
            {"min_coins": 2000, "max_coins": None, "payout_percentage": 65},
        ],
    )

    assert [slab.payout_percentage for slab in created] == [55, 65]
    assert slabs.resolve(db_session, 1999) == 55
    assert slabs.resolve(db_session, 2000) == 65
    assert len(slabs.list_slabs(db_session)) == 5
    assert audit.count_entries(db_session, action="payout_slabs_replaced") == 2


def test_update_that_opens_gap_is_rejected_without_changes(db_session, default_slabs):
    middle = next(slab for slab in default_slabs if slab.min_coins == 1000)

    with pytest.raises(SlabGap):
        slabs.update_slab(db_session, admin_id="admin-1", slab_id=middle.id, changes={"max_coins": 3999})

    db_session.expire_all()
    assert slabs.get_slab(db_session, middle.id).max_coins == 4999
    assert slabs.resolve(db_session, 4500) == 60
    assert audit.count_entries(db_session, action="payout_slab_updated") == 0


def test_update_percentage_is_visible_to_resolve(db_session, default_slabs):
    middle = next(slab for slab in default_slabs if slab.min_coins == 1000)

    slabs.update_slab(db_session, admin_id="admin-1", slab_id=middle.id, changes={"payout_percentage": 70})

    assert slabs.resolve(db_session, 1000) == 70
    entry = audit.list_entries(db_session, action="payout_slab_updated")[0]
    assert entry.details == {"before": {"payout_percentage": 60}, "after": {"payout_percentage": 70}}


def test_create_overlapping_slab_is_rejected(db_session, default_slabs):
    with pytest.raises(OverlappingSlabs):
        slabs.create_slab(db_session, admin_id="admin-1", min_coins=2000, max_coins=2999, payout_percentage=65)
    assert len(slabs.list_slabs(db_session)) == 3


def test_inactive_slab_can_be_staged_then_deactivation_is_checked(db_session, default_slabs):
    staged = slabs.create_slab(
        db_session,
        admin_id="admin-1",
        min_coins=2000,
        max_coins=2999,
        payout_percentage=65,
        is_active=False,
    )
    assert staged.is_active is False
    assert slabs.resolve(db_session, 2500) == 60

    last = next(slab for slab in default_slabs if slab.max_coins is None)
    with pytest.raises(SlabGap):
        slabs.deactivate_slab(db_session, admin_id="admin-1", slab_id=last.id)
    assert slabs.resolve(db_session, 9000) == 70
