"""
Billing enumerations.
"""

import enum


class InvoiceType(str, enum.Enum):
    """Invoice type enumeration."""
    INVOICE = "INVOICE"  # Final invoice, bills its charges
    PROFORMA = "PROFORMA"  # Preliminary quote, never marks charges billed


class InvoiceStatus(str, enum.Enum):
    """Invoice status enumeration."""
    DRAFT = "DRAFT"  # Generated, not yet sent
    PROFORMA = "PROFORMA"  # Generated as a proforma invoice
    SENT = "SENT"  # Sent to the business
    PAID = "PAID"  # Payment received
    CANCELLED = "CANCELLED"  # Voided


INVOICE_NUMBER_PREFIXES = {
    InvoiceType.INVOICE: "INV",
    InvoiceType.PROFORMA: "PRO",
}
