from decimal import Decimal

from core.exceptions import BusinessRuleViolation


def format_quantity(value):
    """Render a quantity without trailing zeros (Decimal('40.000') -> '40')."""
    return format(Decimal(str(value)).normalize(), 'f')


class LedgerError(BusinessRuleViolation):
    """A consume/restore request the ledger cannot honour."""


class InsufficientQuantity(LedgerError):
    """Requested quantity exceeds what remains in the batch."""

    def __init__(self, available, requested, unit):
        super().__init__(
            f"Insufficient feed. Available: {format_quantity(available)} {unit}",
            available=float(available),
            requested=float(requested),
            unit=unit,
        )
        self.available = available
        self.requested = requested
        self.unit = unit
