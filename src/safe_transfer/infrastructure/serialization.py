"""Conversion between domain dataclasses and JSON documents.

Deals and payments are stored as one JSON document each. pydantic's
TypeAdapter does both directions from the dataclass definitions, so the
stored layout follows ``domain.models`` field for field: Decimals as strings,
datetimes as ISO-8601, enums as their values.
"""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter

from safe_transfer.domain.models import AuditEntry, Deal, Payment

_deal_adapter = TypeAdapter(Deal)
_payment_adapter = TypeAdapter(Payment)
_audit_adapter = TypeAdapter(list[AuditEntry])


def deal_to_document(deal: Deal) -> dict[str, Any]:
    return _deal_adapter.dump_python(deal, mode="json")


def deal_from_document(document: dict[str, Any]) -> Deal:
    return _deal_adapter.validate_python(document)


def payment_to_document(payment: Payment) -> dict[str, Any]:
    return _payment_adapter.dump_python(payment, mode="json")


def payment_from_document(document: dict[str, Any]) -> Payment:
    return _payment_adapter.validate_python(document)


def audit_from_documents(entries: list[dict[str, Any]]) -> list[AuditEntry]:
    return _audit_adapter.validate_python(entries)
