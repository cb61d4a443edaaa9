from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from tenderstock.app.db.models.core_types import FulfillmentStatus
from tenderstock.services.commands import Command, CommandResult
from tenderstock.services.deliveries import DeliveryDraft
from tenderstock.services.errors import AcquisitionError, PersistenceFailure, ValidationError
from tenderstock.services.pricing import PricingSummary, compute_actual_value
from tenderstock.services.reconciliation import (
    Reconciliation,
    attention_order,
    compute_state,
    delivery_eligible_items,
    status_counts,
)
from tenderstock.services.serials import SerialDraft
from tenderstock.services.state import LineKey, TenderLineItem, TenderState, require_open
from tenderstock.services.store import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinalizeTender:
    finalized_by: str
    name = "finalize_tender"

    def execute(self, state: TenderState, store: Store) -> TenderState:
        if state.is_finalized:
            raise ValidationError("Tender is already finalized")
        by = (self.finalized_by or "").strip()
        if not by:
            raise ValidationError("finalized_by is required", field="finalized_by")

        at = datetime.now(timezone.utc)
        store.finalize(state.tender_id, by, at)
        logger.info("Tender %s finalized by %s", state.reference_number, by)
        return replace(state, is_finalized=True, finalized_by=by, finalized_at=at)


@dataclass(frozen=True)
class AcquisitionSummary:
    state: TenderState
    reconciliation: Reconciliation
    pricing: PricingSummary
    status_counts: dict[FulfillmentStatus, int]
    active_items: tuple[TenderLineItem, ...]
    excluded_items: tuple[TenderLineItem, ...]
    delivery_eligible: tuple[TenderLineItem, ...]


def summarize(state: TenderState) -> AcquisitionSummary:
    recon = compute_state(state.items, state.deliveries, state.excluded)
    return AcquisitionSummary(
        state=state,
        reconciliation=recon,
        pricing=compute_actual_value(state.items, recon, state.pricing),
        status_counts=status_counts(recon),
        active_items=tuple(attention_order(state.items, recon, state.pricing.actual_unit_prices)),
        excluded_items=state.excluded_items(),
        delivery_eligible=tuple(delivery_eligible_items(state.items, recon)),
    )


class AcquisitionService:
    """
    Point d'entrée unique des mutations d'un tender.

    apply(command) : calcule + persiste ; l'état en mémoire n'est remplacé
    qu'en cas de succès, sinon le snapshot précédent est conservé et
    l'erreur est renvoyée dans le résultat (jamais levée).
    Les appels concurrents sur un même tender ne sont pas supportés :
    c'est à l'appelant de les sérialiser.
    """

    def __init__(self, store: Store, tender_id: int):
        self.store = store
        self.state = store.load(tender_id)

    def apply(self, command: Command) -> CommandResult:
        snapshot = self.state
        try:
            new_state = command.execute(snapshot, self.store)
        except PersistenceFailure as exc:
            self.state = snapshot
            logger.error("%s failed on tender %s: %s", command.name, snapshot.reference_number, exc.message)
            return CommandResult.failure(snapshot, exc)
        except AcquisitionError as exc:
            logger.warning("%s rejected on tender %s [%s]: %s", command.name, snapshot.reference_number, exc.code, exc.message)
            return CommandResult.failure(snapshot, exc)

        self.state = new_state
        return CommandResult.success(new_state)

    def reload(self) -> TenderState:
        self.state = self.store.load(self.state.tender_id)
        return self.state

    # ---------- Lecture ----------
    def reconciliation(self) -> Reconciliation:
        return compute_state(self.state.items, self.state.deliveries, self.state.excluded)

    def pricing_summary(self) -> PricingSummary:
        return compute_actual_value(self.state.items, self.reconciliation(), self.state.pricing)

    def summary(self) -> AcquisitionSummary:
        return summarize(self.state)

    # ---------- Brouillons ----------
    def delivery_draft(self, delivery_id: int | None = None) -> DeliveryDraft:
        require_open(self.state)
        if delivery_id is None:
            return DeliveryDraft()
        delivery = self.state.delivery(delivery_id)
        if delivery is None:
            raise ValidationError(f"Delivery {delivery_id} not found", field="delivery_id")
        return DeliveryDraft.from_delivery(delivery)

    def serial_draft(self, delivery_id: int, item_master_id: str) -> SerialDraft:
        delivery = self.state.delivery(delivery_id)
        line = delivery.line_for(item_master_id) if delivery else None
        if line is None:
            raise ValidationError(
                f"No delivery line for delivery {delivery_id} and item {item_master_id}",
                field="item_master_id",
            )
        saved = self.state.serials_for(LineKey(delivery_id, item_master_id))
        return SerialDraft.from_saved(line.delivered_qty, saved)
