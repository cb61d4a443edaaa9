from decimal import Decimal

from tenderstock.app.db.models.core_types import FulfillmentStatus
from tenderstock.services.errors import OrphanedReference
from tenderstock.services.reconciliation import (
    attention_order,
    classify_status,
    compute_state,
    delivery_eligible_items,
    status_counts,
)


def test_two_deliveries_leave_item_partial(state_factory):
    """
    GIVEN un item commandé à 100
    - livraison A : 40
    - livraison B : 35

    THEN delivered 75, remaining 25, PARTIAL
    """
    state = state_factory([("LAP-01", 100)], [(1, [("LAP-01", 40)]), (2, [("LAP-01", 35)])])

    recon = compute_state(state.items, state.deliveries)

    assert recon["LAP-01"].delivered_qty == 75
    assert recon["LAP-01"].remaining_qty == 25
    assert recon["LAP-01"].status is FulfillmentStatus.partial


def test_third_delivery_completes_the_item(state_factory):
    state = state_factory(
        [("LAP-01", 100)],
        [(1, [("LAP-01", 40)]), (2, [("LAP-01", 35)]), (3, [("LAP-01", 25)])],
    )

    recon = compute_state(state.items, state.deliveries)

    assert recon["LAP-01"].delivered_qty == 100
    assert recon["LAP-01"].remaining_qty == 0
    assert recon["LAP-01"].status is FulfillmentStatus.complete


def test_single_partial_delivery(state_factory):
    state = state_factory([("MON-01", 50)], [(1, [("MON-01", 20)])])

    recon = compute_state(state.items, state.deliveries)

    assert recon["MON-01"].delivered_qty == 20
    assert recon["MON-01"].remaining_qty == 30
    assert recon["MON-01"].status is FulfillmentStatus.partial


def test_item_without_delivery_is_pending(state_factory):
    state = state_factory([("LAP-01", 100), ("KBD-01", 40)], [(1, [("LAP-01", 10)])])

    recon = compute_state(state.items, state.deliveries)

    assert recon["KBD-01"].delivered_qty == 0
    assert recon["KBD-01"].remaining_qty == 40
    assert recon["KBD-01"].status is FulfillmentStatus.pending


def test_result_does_not_depend_on_delivery_order(state_factory):
    state = state_factory(
        [("LAP-01", 100), ("MON-01", 50)],
        [(1, [("LAP-01", 30), ("MON-01", 5)]), (2, [("LAP-01", 25)]), (3, [("MON-01", 45)])],
    )

    forward = compute_state(state.items, state.deliveries)
    backward = compute_state(state.items, tuple(reversed(state.deliveries)))

    assert forward.items == backward.items


def test_over_delivered_stored_data_is_complete_with_negative_remaining(state_factory):
    state = state_factory([("KBD-01", 40)], [(1, [("KBD-01", 45)])])

    recon = compute_state(state.items, state.deliveries)

    assert recon["KBD-01"].remaining_qty == -5
    assert recon["KBD-01"].status is FulfillmentStatus.complete


def test_line_for_unknown_item_is_reported_not_dropped(state_factory):
    state = state_factory([("LAP-01", 100)], [(4, [("LAP-01", 10), ("GHOST-9", 3)])])

    recon = compute_state(state.items, state.deliveries)

    assert "GHOST-9" not in recon
    assert recon["LAP-01"].delivered_qty == 10
    assert len(recon.unmatched) == 1
    orphan = recon.orphaned_references()[0]
    assert isinstance(orphan, OrphanedReference)
    assert orphan.item_master_id == "GHOST-9"
    assert orphan.sequence_number == 4
    assert orphan.to_dict()["code"] == "orphaned_reference"


def test_excluded_items_are_omitted(state_factory):
    state = state_factory(
        [("LAP-01", 100), ("MON-01", 50)],
        [(1, [("LAP-01", 10), ("MON-01", 20)])],
        excluded=frozenset({"MON-01"}),
    )

    recon = compute_state(state.items, state.deliveries, state.excluded)

    assert "MON-01" not in recon
    assert recon["LAP-01"].delivered_qty == 10
    # ligne d'un item exclu : pas une orpheline
    assert recon.unmatched == ()


def test_classify_status_boundaries():
    assert classify_status(0, 10) is FulfillmentStatus.pending
    assert classify_status(1, 10) is FulfillmentStatus.partial
    assert classify_status(10, 10) is FulfillmentStatus.complete
    assert classify_status(11, 10) is FulfillmentStatus.complete


def test_status_counts_lists_every_status(state_factory):
    state = state_factory([("A", 10), ("B", 10), ("C", 10)], [(1, [("A", 10)])])

    counts = status_counts(compute_state(state.items, state.deliveries))

    assert counts == {
        FulfillmentStatus.pending: 2,
        FulfillmentStatus.partial: 0,
        FulfillmentStatus.complete: 1,
    }


def test_delivery_eligible_items_skip_complete_and_excluded(state_factory):
    state = state_factory(
        [("A", 10), ("B", 10), ("C", 10)],
        [(1, [("A", 10), ("B", 4)])],
        excluded=frozenset({"C"}),
    )

    recon = compute_state(state.items, state.deliveries, state.excluded)

    assert [i.item_master_id for i in delivery_eligible_items(state.items, recon)] == ["B"]


def test_attention_order(state_factory):
    """
    1. en attente sans prix
    2. complet sans prix
    3. partiel
    4. le reste, ordre d'origine
    """
    state = state_factory(
        [("DONE-PRICED", 5), ("PARTIAL", 5), ("DONE-UNPRICED", 5), ("PENDING-PRICED", 5), ("PENDING-UNPRICED", 5)],
        [(1, [("DONE-PRICED", 5), ("PARTIAL", 2), ("DONE-UNPRICED", 5)])],
    )
    prices = {"DONE-PRICED": Decimal("10"), "PENDING-PRICED": Decimal("3")}

    recon = compute_state(state.items, state.deliveries)
    ordered = [i.item_master_id for i in attention_order(state.items, recon, prices)]

    assert ordered == ["PENDING-UNPRICED", "DONE-UNPRICED", "PARTIAL", "DONE-PRICED", "PENDING-PRICED"]
