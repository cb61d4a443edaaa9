"""
Taxonomie des erreurs du moteur de réception.

Les erreurs de validation / d'allocation se corrigent côté utilisateur
(on ressaisit, on relance). PersistenceFailure implique toujours un rollback
de l'état en mémoire vers le dernier snapshot persisté.
"""

from __future__ import annotations

from typing import Any, Sequence


class AcquisitionError(Exception):
    code = "acquisition_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(AcquisitionError):
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class TenderNotFound(AcquisitionError):
    code = "tender_not_found"

    def __init__(self, tender_id: int):
        super().__init__(f"Tender {tender_id} not found")
        self.tender_id = tender_id


class TenderLocked(AcquisitionError):
    code = "tender_locked"

    def __init__(self, reference_number: str):
        super().__init__(f"Tender {reference_number} is finalized; acquisitions are locked")
        self.reference_number = reference_number


class QuantityMismatch(AcquisitionError):
    code = "quantity_mismatch"

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Serial numbers must match delivered quantity: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "expected": self.expected, "actual": self.actual}


class DuplicateSerial(AcquisitionError):
    code = "duplicate_serial"

    def __init__(self, serials: Sequence[str]):
        super().__init__(f"Duplicate serial numbers: {', '.join(serials)}")
        self.serials = list(serials)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "serials": self.serials}


class LimitExceeded(AcquisitionError):
    code = "limit_exceeded"

    def __init__(self, serials: Sequence[str], limit: int):
        super().__init__(f"Cannot add more serial numbers. Maximum allowed: {limit}")
        self.serials = list(serials)
        self.limit = limit

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "serials": self.serials, "limit": self.limit}


class PersistenceFailure(AcquisitionError):
    code = "persistence_failure"


class OrphanedReference(AcquisitionError):
    code = "orphaned_reference"

    def __init__(self, item_master_id: str, delivery_id: int | None, sequence_number: int | None = None):
        where = f"delivery #{sequence_number}" if sequence_number is not None else f"delivery {delivery_id}"
        super().__init__(f"{where} references item {item_master_id} which is not part of the tender")
        self.item_master_id = item_master_id
        self.delivery_id = delivery_id
        self.sequence_number = sequence_number

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "item_master_id": self.item_master_id,
            "delivery_id": self.delivery_id,
            "sequence_number": self.sequence_number,
        }
