"""
Exclusion "non acheté" d'un item (soft delete) et restauration.

Seule la marque change : livraisons et numéros de série restent dans le
registre, l'état de réception est recalculé à la restauration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from tenderstock.services.errors import ValidationError
from tenderstock.services.state import TenderState, require_open

if TYPE_CHECKING:
    from tenderstock.services.store import Store

logger = logging.getLogger(__name__)


def _toggle(state: TenderState, store: "Store", item_master_id: str, excluded: bool) -> TenderState:
    require_open(state)
    if state.item(item_master_id) is None:
        raise ValidationError(f"Item {item_master_id} is not part of tender {state.reference_number}", field="item_master_id")

    # idempotent : déjà dans l'état voulu -> aucune écriture
    if (item_master_id in state.excluded) == excluded:
        return state

    store.set_exclusion(state.tender_id, item_master_id, excluded)
    marks = state.excluded | {item_master_id} if excluded else state.excluded - {item_master_id}
    logger.info(
        "Item %s %s on tender %s",
        item_master_id,
        "excluded" if excluded else "restored",
        state.reference_number,
    )
    return replace(state, excluded=frozenset(marks))


@dataclass(frozen=True)
class ExcludeItem:
    item_master_id: str
    name = "exclude_item"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        return _toggle(state, store, self.item_master_id, True)


@dataclass(frozen=True)
class RestoreItem:
    item_master_id: str
    name = "restore_item"

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        return _toggle(state, store, self.item_master_id, False)
