import enum


class PricingMode(str, enum.Enum):
    individual = "INDIVIDUAL"
    total = "TOTAL"


class FulfillmentStatus(str, enum.Enum):
    pending = "PENDING"
    partial = "PARTIAL"
    complete = "COMPLETE"


class SerialDraftState(str, enum.Enum):
    empty = "EMPTY"
    drafting = "DRAFTING"
    complete = "COMPLETE"
