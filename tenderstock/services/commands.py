"""
Contrat unique des opérations qui modifient un tender.

Une commande calcule le nouvel état localement, appelle la persistance,
et ne renvoie le nouvel état que si l'écriture a réussi. C'est
AcquisitionService.apply qui garde (ou restaure) le snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from tenderstock.services.errors import AcquisitionError
from tenderstock.services.state import TenderState

if TYPE_CHECKING:
    from tenderstock.services.store import Store


class Command(Protocol):
    name: str

    def execute(self, state: TenderState, store: "Store") -> TenderState:
        ...


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    state: TenderState
    error: AcquisitionError | None = None

    @classmethod
    def success(cls, state: TenderState) -> "CommandResult":
        return cls(ok=True, state=state)

    @classmethod
    def failure(cls, state: TenderState, error: AcquisitionError) -> "CommandResult":
        return cls(ok=False, state=state, error=error)

    def unwrap(self) -> TenderState:
        if self.error is not None:
            raise self.error
        return self.state
