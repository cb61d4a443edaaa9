from datetime import date

import pytest
from sqlalchemy import func, select

from tenderstock.app.db.models import models_v1 as m
from tenderstock.services.acquisition import FinalizeTender
from tenderstock.services.deliveries import CreateDelivery, DeleteDelivery, DeliveryDraft, EditDelivery
from tenderstock.services.errors import PersistenceFailure, QuantityMismatch, TenderLocked, ValidationError
from tenderstock.services.serials import CommitSerials, SerialDraft
from tenderstock.services.state import DeliveryLine, LineKey


def deliver(service, *lines, personnel="R. Ahmed", serials=None):
    return service.apply(
        CreateDelivery(
            personnel=personnel,
            delivery_date=date(2024, 5, 2),
            lines=tuple(DeliveryLine(pid, qty) for pid, qty in lines),
            serials=serials or {},
        )
    )


def serial_count(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(m.DeliverySerialNumber)).scalar_one()


def test_sequence_numbers_are_never_reused(service):
    for qty in (10, 10, 10):
        deliver(service, ("LAP-01", qty)).unwrap()
    assert [d.sequence_number for d in service.state.deliveries] == [1, 2, 3]

    third = service.state.deliveries[-1]
    service.apply(DeleteDelivery(third.id, confirmed=True)).unwrap()
    deliver(service, ("LAP-01", 5)).unwrap()

    reloaded = service.reload()
    assert [d.sequence_number for d in reloaded.deliveries] == [1, 2, 4]
    assert reloaded.last_sequence_number == 4


def test_delivery_above_remaining_is_rejected(service):
    deliver(service, ("MON-01", 40)).unwrap()

    result = deliver(service, ("MON-01", 11))

    assert not result.ok
    assert isinstance(result.error, ValidationError)
    assert "remaining quantity 10" in result.error.message
    assert len(service.reload().deliveries) == 1


def test_blank_personnel_and_empty_lines_are_rejected(service):
    assert isinstance(deliver(service, ("LAP-01", 1), personnel="  ").error, ValidationError)
    assert deliver(service).error.field == "lines"
    assert service.reload().deliveries == ()


def test_unknown_item_and_duplicate_lines_are_rejected(service):
    assert deliver(service, ("NOPE", 1)).error.field == "item_master_id"
    assert deliver(service, ("LAP-01", 1), ("LAP-01", 2)).error.field == "item_master_id"


def test_edit_does_not_count_the_delivery_against_itself(service):
    deliver(service, ("LAP-01", 60)).unwrap()
    delivery = service.state.deliveries[0]

    state = service.apply(EditDelivery(delivery.id, lines=(DeliveryLine("LAP-01", 100),))).unwrap()

    assert state.delivery(delivery.id).line_for("LAP-01").delivered_qty == 100
    assert service.reconciliation()["LAP-01"].remaining_qty == 0
    # métadonnées conservées
    assert state.delivery(delivery.id).personnel == "R. Ahmed"


def test_edit_clears_serials_of_changed_and_removed_lines(service, db_session):
    mon = SerialDraft(required_quantity=2)
    mon.add_bulk("MON-A\nMON-B")
    kbd = SerialDraft(required_quantity=1)
    kbd.add_single("KBD-A")
    deliver(service, ("MON-01", 2), ("KBD-01", 1), ("LAP-01", 1), serials={"MON-01": mon, "KBD-01": kbd}).unwrap()
    delivery = service.state.deliveries[0]
    assert serial_count(db_session) == 3

    service.apply(
        EditDelivery(delivery.id, lines=(DeliveryLine("MON-01", 3), DeliveryLine("KBD-01", 1)))
    ).unwrap()

    reloaded = service.reload()
    assert reloaded.serials_for(LineKey(delivery.id, "MON-01")) == ()
    assert [s.serial_number for s in reloaded.serials_for(LineKey(delivery.id, "KBD-01"))] == ["KBD-A"]
    assert reloaded.delivery(delivery.id).line_for("LAP-01") is None
    assert serial_count(db_session) == 1


def test_delete_requires_confirmation_and_cascades_serials(service, db_session):
    draft = SerialDraft(required_quantity=2)
    draft.add_bulk("S1\nS2")
    deliver(service, ("MON-01", 2), serials={"MON-01": draft}).unwrap()
    delivery = service.state.deliveries[0]

    result = service.apply(DeleteDelivery(delivery.id))
    assert not result.ok
    assert result.error.field == "confirmed"

    service.apply(DeleteDelivery(delivery.id, confirmed=True)).unwrap()

    assert service.state.serials == ()
    assert serial_count(db_session) == 0
    assert db_session.execute(select(func.count()).select_from(m.DeliveryLine)).scalar_one() == 0
    assert service.reconciliation()["MON-01"].remaining_qty == 50


def test_serials_must_match_quantity_on_create(service, db_session):
    draft = SerialDraft(required_quantity=3)
    draft.add_bulk("S1\nS2")

    result = deliver(service, ("MON-01", 3), serials={"MON-01": draft})

    assert isinstance(result.error, QuantityMismatch)
    assert service.reload().deliveries == ()
    assert serial_count(db_session) == 0


def test_draft_remove_line_drops_quantity_price_and_serials():
    draft = DeliveryDraft()
    draft.set_quantity("LAP-01", 2)
    draft.serial_draft("LAP-01").add_single("L-1")
    draft.set_quantity("MON-01", 1)

    draft.remove_line("LAP-01")

    assert draft.to_lines() == (DeliveryLine("MON-01", 1),)
    assert "LAP-01" not in draft.serials
    with pytest.raises(ValidationError):
        draft.serial_draft("LAP-01")


def test_create_from_draft(service):
    draft = service.delivery_draft()
    draft.set_quantity("KBD-01", 2)
    draft.serial_draft("KBD-01").add_bulk("K1\nK2")

    state = service.apply(
        CreateDelivery.from_draft(draft, personnel="Store keeper", delivery_date=date(2024, 6, 1), chalan_reference="CH-77")
    ).unwrap()

    saved = state.deliveries[0]
    assert saved.chalan_reference == "CH-77"
    assert {s.serial_number for s in state.serials_for(LineKey(saved.id, "KBD-01"))} == {"K1", "K2"}


def test_finalized_tender_is_locked(service):
    deliver(service, ("LAP-01", 5)).unwrap()
    service.apply(FinalizeTender("Procurement officer")).unwrap()

    result = deliver(service, ("LAP-01", 5))

    assert isinstance(result.error, TenderLocked)
    with pytest.raises(TenderLocked):
        service.delivery_draft()
    reloaded = service.reload()
    assert reloaded.is_finalized
    assert reloaded.finalized_by == "Procurement officer"
    assert len(reloaded.deliveries) == 1


def test_failed_create_leaves_no_delivery(service, db_session, fail_commits, monkeypatch):
    snapshot = service.state
    draft = SerialDraft(required_quantity=2)
    draft.add_bulk("S1\nS2")

    fail_commits()
    result = deliver(service, ("MON-01", 2), serials={"MON-01": draft})
    monkeypatch.undo()

    assert isinstance(result.error, PersistenceFailure)
    assert service.state is snapshot
    reloaded = service.reload()
    assert reloaded.deliveries == ()
    assert reloaded.last_sequence_number == 0
    assert serial_count(db_session) == 0
    # le numéro n'a pas été consommé
    assert deliver(service, ("MON-01", 2)).unwrap().deliveries[0].sequence_number == 1


def test_failed_serial_replace_keeps_saved_set(service, db_session, fail_commits, monkeypatch):
    """
    GIVEN une ligne avec deux séries enregistrées
    WHEN le remplacement échoue au commit (après suppression + insertion flushées)
    THEN l'ancien jeu est toujours là, en mémoire comme en base
    """
    first = SerialDraft(required_quantity=2)
    first.add_bulk("OLD-1\nOLD-2")
    deliver(service, ("KBD-01", 2), serials={"KBD-01": first}).unwrap()
    delivery = service.state.deliveries[0]
    key = LineKey(delivery.id, "KBD-01")
    snapshot = service.state

    second = service.serial_draft(delivery.id, "KBD-01")
    for entry in list(second.entries):
        second.remove(entry.id)
    second.add_bulk("NEW-1\nNEW-2")

    fail_commits()
    result = service.apply(CommitSerials(delivery.id, "KBD-01", second))
    monkeypatch.undo()

    assert isinstance(result.error, PersistenceFailure)
    assert service.state is snapshot
    assert [s.serial_number for s in service.reload().serials_for(key)] == ["OLD-1", "OLD-2"]
    assert serial_count(db_session) == 2
