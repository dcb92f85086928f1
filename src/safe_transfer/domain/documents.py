"""Per-category document requirements.

Each category has a fixed, ordered checklist of document slots per role.
Sellers always prove ownership or authenticity; only freelancing deals ask
the buyer for a document (the project requirements).

Slots are addressed by a stable ``key`` rather than by document type, because
several slots in one checklist share a type (a vehicle's RC and insurance are
both ``ownership`` documents).
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

from safe_transfer.domain.enums import Category, DocumentType, PartyRole

if TYPE_CHECKING:
    from safe_transfer.domain.models import Deal, DealDocument


@dataclass(frozen=True)
class DocumentSlot:
    key: str
    document_type: DocumentType
    name: str
    required: bool


@dataclass(frozen=True)
class SlotStatus:
    """A checklist slot tagged with whether a file has been provided for it."""

    slot: DocumentSlot
    present: bool
    document: DealDocument | None = None


_OWNERSHIP = DocumentType.OWNERSHIP
_AGREEMENT = DocumentType.AGREEMENT

_SELLER_SLOTS: MappingProxyType[Category, tuple[DocumentSlot, ...]] = MappingProxyType(
    {
        Category.VEHICLE: (
            DocumentSlot("registration_certificate", _OWNERSHIP,
                         "Vehicle Registration Certificate (RC)", True),
            DocumentSlot("insurance_certificate", _OWNERSHIP, "Insurance Certificate", True),
            DocumentSlot("pollution_certificate", _OWNERSHIP, "Pollution Certificate", False),
            DocumentSlot("service_records", _OWNERSHIP, "Service Records", False),
        ),
        Category.REAL_ESTATE: (
            DocumentSlot("title_deed", _OWNERSHIP, "Property Title Deed", True),
            DocumentSlot("property_tax_receipt", _OWNERSHIP, "Property Tax Receipt", True),
            DocumentSlot("society_noc", _OWNERSHIP, "NOC from Society/Builder", False),
            DocumentSlot("encumbrance_certificate", _OWNERSHIP,
                         "Encumbrance Certificate", True),
        ),
        Category.DOMAIN: (
            DocumentSlot("domain_ownership_certificate", _OWNERSHIP,
                         "Domain Ownership Certificate", True),
            DocumentSlot("domain_transfer_authorization", _OWNERSHIP,
                         "Domain Transfer Authorization", True),
        ),
        Category.FREELANCING: (
            DocumentSlot("work_portfolio", _AGREEMENT, "Work Portfolio/Samples", True),
            DocumentSlot("project_specification", _AGREEMENT,
                         "Project Specification Document", True),
        ),
        Category.OTHER: (
            DocumentSlot("proof_of_ownership", _OWNERSHIP, "Proof of Ownership", True),
            DocumentSlot("item_specification", DocumentType.OTHER,
                         "Item Description/Specification", True),
        ),
    }
)

_BUYER_SLOTS: MappingProxyType[Category, tuple[DocumentSlot, ...]] = MappingProxyType(
    {
        Category.FREELANCING: (
            DocumentSlot("project_requirements", _AGREEMENT,
                         "Project Requirements Document", True),
        ),
    }
)


def required_documents(category: Category | str, role: PartyRole | str) -> tuple[DocumentSlot, ...]:
    """Ordered checklist (required and optional slots) for a category and role."""
    table = _SELLER_SLOTS if PartyRole(role) == PartyRole.SELLER else _BUYER_SLOTS
    return table.get(Category(category), ())


def find_slot(category: Category | str, role: PartyRole | str, key: str) -> DocumentSlot | None:
    for slot in required_documents(category, role):
        if slot.key == key:
            return slot
    return None


def document_checklist(deal: Deal, role: PartyRole) -> list[SlotStatus]:
    checklist = []
    for slot in required_documents(deal.category, role):
        document = deal.document_for(slot.key)
        present = document is not None and bool(document.file_url)
        checklist.append(SlotStatus(slot=slot, present=present, document=document))
    return checklist


def missing_required(deal: Deal, role: PartyRole) -> list[DocumentSlot]:
    return [
        status.slot
        for status in document_checklist(deal, role)
        if status.slot.required and not status.present
    ]


def all_required_present(deal: Deal) -> bool:
    """True when both parties have filled every required slot."""
    return not missing_required(deal, PartyRole.BUYER) and not missing_required(
        deal, PartyRole.SELLER
    )
