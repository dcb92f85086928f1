"""Deal lifecycle operations.

Every function here takes the Deal to change plus ``now`` and mutates the
deal in place. Checks (authorization, transition guard, input validation)
all run before the first write, so a raised exception leaves the deal as it
was. Each status change or recorded action appends exactly one audit entry.

The functions never persist anything and never perform I/O. The orchestrator
loads a deal, runs one of these on a copy, and saves it with a version check.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import TYPE_CHECKING

from safe_transfer.domain import audit, authorization
from safe_transfer.domain.audit import SYSTEM_ACTOR
from safe_transfer.domain.documents import all_required_present, find_slot, missing_required
from safe_transfer.domain.enums import (
    Category,
    DealAction,
    DealStatus,
    DeliveryMethod,
    DisputeOutcome,
    DisputeStatus,
    KycStatus,
    PartyRole,
    PartyType,
    ReleaseReason,
)
from safe_transfer.domain.exceptions import InvalidTransition, ValidationError
from safe_transfer.domain.fees import escrow_fee, validate_deal_amount
from safe_transfer.domain.models import (
    Deal,
    DealDocument,
    DealMessage,
    DealTerms,
    Dispute,
)
from safe_transfer.domain.state_machine import DealStateMachine, fire

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal

    from safe_transfer.domain.enums import PaymentMethod
    from safe_transfer.domain.models import DocumentMeta, UserProfile

MAX_MESSAGE_LENGTH = 1000
MAX_FEEDBACK_LENGTH = 1000
CONTRACT_CATEGORIES = frozenset({Category.REAL_ESTATE})

_MILESTONES = (
    "deal_created",
    "parties_accepted",
    "kyc_completed",
    "documents_uploaded",
    "contract_signed",
    "payment_deposited",
    "delivered",
    "confirmed",
    "funds_released",
)

_DISPUTE_EVENTS = {
    DisputeOutcome.RESUME_DELIVERY: "resume_delivery",
    DisputeOutcome.RELEASE_TO_SELLER: "resolve_for_seller",
    DisputeOutcome.REFUND_TO_BUYER: "resolve_for_buyer",
}


@dataclass(frozen=True)
class NextAction:
    text: str
    can_send_reminder: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_deal_id(sequence: int, prefix: str = "ST", width: int = 8) -> str:
    return f"{prefix}{sequence:0{width}d}"


def requires_contract(category: Category | str) -> bool:
    return Category(category) in CONTRACT_CATEGORIES


def applicable_milestones(category: Category | str) -> tuple[str, ...]:
    if requires_contract(category):
        return _MILESTONES
    return tuple(name for name in _MILESTONES if name != "contract_signed")


def has_open_dispute(deal: Deal) -> bool:
    return deal.dispute is not None and deal.dispute.status != DisputeStatus.RESOLVED


def _guard(deal: Deal, event: str) -> DealStatus:
    return DealStatus(fire(DealStateMachine, deal.status, event))


def _system_message(deal: Deal, sender_id: str, text: str, now: datetime) -> None:
    deal.messages.append(
        DealMessage(sender_id=sender_id, text=text, timestamp=now, is_system_message=True)
    )


def _kyc_approved(seller_kyc: KycStatus | str | None) -> bool:
    return seller_kyc is not None and KycStatus(seller_kyc) == KycStatus.APPROVED


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def _validate_terms(
    title: str,
    description: str,
    category: Category | str,
    amount: Decimal | int | str | float,
    delivery_method: DeliveryMethod | str,
    inspection_period_days: int,
    subcategory: str,
    additional_terms: str,
) -> DealTerms:
    errors: list[dict] = []

    def error(field_name: str, message: str) -> None:
        errors.append({"field": field_name, "message": message})

    title = (title or "").strip()
    description = (description or "").strip()
    subcategory = (subcategory or "").strip()
    additional_terms = (additional_terms or "").strip()

    if not 5 <= len(title) <= 200:
        error("title", "Title must be between 5 and 200 characters")
    if not 10 <= len(description) <= 2000:
        error("description", "Description must be between 10 and 2000 characters")
    if len(subcategory) > 100:
        error("subcategory", "Subcategory cannot exceed 100 characters")
    if len(additional_terms) > 1000:
        error("additional_terms", "Additional terms cannot exceed 1000 characters")

    try:
        category = Category(category)
    except ValueError:
        error("category", f"Invalid category: {category!r}")
    try:
        delivery_method = DeliveryMethod(delivery_method)
    except ValueError:
        error("delivery_method", f"Invalid delivery method: {delivery_method!r}")

    if (
        isinstance(inspection_period_days, bool)
        or not isinstance(inspection_period_days, int)
        or not 1 <= inspection_period_days <= 30
    ):
        error("inspection_period_days", "Inspection period must be between 1 and 30 days")

    try:
        amount = validate_deal_amount(amount)
    except ValidationError as err:
        errors.extend(err.errors)

    if errors:
        raise ValidationError("Invalid deal terms", errors=errors)

    return DealTerms(
        title=title,
        description=description,
        category=category,
        amount=amount,
        delivery_method=delivery_method,
        inspection_period_days=inspection_period_days,
        subcategory=subcategory,
        additional_terms=additional_terms,
    )


def new_deal(
    *,
    sequence: int,
    initiator_id: str,
    initiator_role: PartyRole | str,
    counterparty_id: str,
    title: str,
    description: str,
    category: Category | str,
    amount: Decimal | int | str | float,
    delivery_method: DeliveryMethod | str,
    inspection_period_days: int,
    now: datetime,
    subcategory: str = "",
    additional_terms: str = "",
    party_type: PartyType | str = PartyType.PERSONAL,
    id_prefix: str = "ST",
    id_width: int = 8,
) -> Deal:
    """Build a validated deal in ``created`` with its escrow fee frozen.

    ``party_type`` is the initiator's party type; it selects the fee schedule.

    Raises:
        ValidationError: Listing every invalid field.
    """
    try:
        role = PartyRole(initiator_role)
    except ValueError as err:
        raise ValidationError.for_field(
            "initiator_role", f"Invalid role: {initiator_role!r}"
        ) from err
    if not counterparty_id or counterparty_id == initiator_id:
        raise ValidationError.for_field(
            "counterparty_id", "Buyer and seller must be different users"
        )

    terms = _validate_terms(
        title,
        description,
        category,
        amount,
        delivery_method,
        inspection_period_days,
        subcategory,
        additional_terms,
    )
    party_type = PartyType(party_type)
    fee = escrow_fee(terms.amount, party_type)

    buyer_id, seller_id = (
        (initiator_id, counterparty_id)
        if role == PartyRole.BUYER
        else (counterparty_id, initiator_id)
    )
    deal = Deal(
        id=uuid.uuid4(),
        deal_id=format_deal_id(sequence, id_prefix, id_width),
        buyer_id=buyer_id,
        seller_id=seller_id,
        initiated_by=initiator_id,
        terms=terms,
        escrow_fee=fee.base_fee,
        escrow_fee_percentage=fee.percentage,
        escrow_fee_gst=fee.gst,
        escrow_fee_total=fee.total_fee,
        fee_party_type=party_type,
        created_at=now,
        updated_at=now,
    )
    deal.workflow.deal_created.mark(initiator_id, now)
    audit.append(
        deal,
        action="Deal created",
        performed_by=initiator_id,
        now=now,
        details=f"{terms.title} for ₹{terms.amount}",
        new_status=DealStatus.CREATED,
    )
    _system_message(deal, initiator_id, f"Deal created by {role.capitalize()}", now)
    return deal


# ---------------------------------------------------------------------------
# Acceptance & gating
# ---------------------------------------------------------------------------


def accept(deal: Deal, actor_id: str, now: datetime) -> bool:
    """Record the actor's acceptance.

    Returns False, without touching the deal, when the actor had already
    accepted. Moves the deal to ``accepted`` once both flags are set. The
    whole ``parties_accepted`` record is rebuilt from the one that was read,
    so a save based on a stale copy loses the version check rather than a
    flag.
    """
    role = deal.role_of(actor_id)
    current = deal.workflow.parties_accepted
    if role is not None and getattr(current, f"{role}_accepted"):
        return False

    authorization.authorize(actor_id, deal, DealAction.ACCEPT_DEAL)

    updated = replace(current, **{f"{role}_accepted": True, f"{role}_accepted_at": now})
    both = updated.buyer_accepted and updated.seller_accepted
    new_status = _guard(deal, "parties_accept") if both else None

    if both:
        updated.completed = True
        updated.completed_at = now
        updated.completed_by = actor_id
    deal.workflow.parties_accepted = updated

    action = f"Deal accepted by {role}"
    if new_status is not None:
        deal.accepted_at = now
        audit.change_status(
            deal, new_status, actor_id, now, action=action, details="Both parties accepted"
        )
    else:
        audit.append(deal, action=action, performed_by=actor_id, now=now)
    _system_message(deal, actor_id, f"{role.capitalize()} has accepted the deal", now)
    return True


def advance_gating(
    deal: Deal,
    seller_kyc: KycStatus | str | None,
    now: datetime,
) -> list[DealStatus]:
    """Move an accepted deal through the KYC and document gates.

    Runs after acceptance, after every KYC verdict change and after every
    document upload. Returns the statuses entered, in order (empty when
    nothing moved).
    """
    entered: list[DealStatus] = []
    approved = _kyc_approved(seller_kyc)

    while True:
        status = deal.status
        if status == DealStatus.ACCEPTED and not approved:
            new_status = _guard(deal, "await_kyc")
            audit.change_status(
                deal, new_status, SYSTEM_ACTOR, now, details="Seller KYC not approved"
            )
        elif status in (DealStatus.ACCEPTED, DealStatus.KYC_PENDING) and approved:
            new_status = _guard(deal, "request_documents")
            deal.workflow.kyc_completed.mark(deal.seller_id, now)
            audit.change_status(
                deal, new_status, SYSTEM_ACTOR, now, details="Seller KYC approved"
            )
        elif status == DealStatus.DOCUMENTS_PENDING and all_required_present(deal):
            contract = requires_contract(deal.category)
            new_status = _guard(deal, "require_contract" if contract else "documents_complete")
            deal.workflow.documents_uploaded.mark(SYSTEM_ACTOR, now)
            audit.change_status(
                deal, new_status, SYSTEM_ACTOR, now, details="All required documents uploaded"
            )
            next_step = "contract signing" if contract else "payment deposit"
            _system_message(
                deal,
                SYSTEM_ACTOR,
                "All required documents have been uploaded. "
                f"Deal is now ready for {next_step}.",
                now,
            )
        else:
            return entered
        entered.append(new_status)


def record_document(
    deal: Deal,
    actor_id: str,
    slot_key: str,
    meta: DocumentMeta,
    now: datetime,
) -> DealDocument:
    """Store a document for one of the actor's checklist slots.

    A later upload for the same slot replaces the earlier one.
    """
    role = authorization.authorize(actor_id, deal, DealAction.UPLOAD_DOCUMENT)
    slot = find_slot(deal.category, role, slot_key)
    if slot is None:
        raise ValidationError.for_field(
            "slot", f"'{slot_key}' is not a {role} document for {deal.category} deals"
        )
    if not meta.file_url or not meta.file_name:
        raise ValidationError.for_field("file_url", "Uploaded file name and URL are required")

    document = DealDocument(
        slot=slot.key,
        document_type=slot.document_type,
        file_name=meta.file_name,
        file_url=meta.file_url,
        uploaded_by=actor_id,
        uploaded_at=now,
        file_size=meta.file_size,
        mime_type=meta.mime_type,
    )
    replaced = deal.document_for(slot.key) is not None
    deal.documents = [d for d in deal.documents if d.slot != slot.key] + [document]

    audit.append(
        deal,
        action="Document replaced" if replaced else "Document uploaded",
        performed_by=actor_id,
        now=now,
        details=f"{slot.key}: {meta.file_name}",
    )
    _system_message(
        deal, actor_id, f"{role.capitalize()} uploaded {slot.name}: {meta.file_name}", now
    )
    return document


def sign_contract(
    deal: Deal,
    actor_id: str,
    seller_kyc: KycStatus | str | None,
    now: datetime,
) -> bool:
    """Record the actor's contract signature; idempotent like ``accept``."""
    role = deal.role_of(actor_id)
    current = deal.workflow.contract_signed
    if role is not None and getattr(current, f"{role}_signed"):
        return False

    authorization.authorize(actor_id, deal, DealAction.SIGN_CONTRACT, seller_kyc)

    updated = replace(current, **{f"{role}_signed": True, f"{role}_signed_at": now})
    both = updated.buyer_signed and updated.seller_signed
    new_status = _guard(deal, "contract_signed") if both else None

    if both:
        updated.completed = True
        updated.completed_at = now
        updated.completed_by = actor_id
    deal.workflow.contract_signed = updated

    action = f"Contract signed by {role}"
    if new_status is not None:
        audit.change_status(deal, new_status, actor_id, now, action=action)
    else:
        audit.append(deal, action=action, performed_by=actor_id, now=now)
    _system_message(deal, actor_id, f"{role.capitalize()} has signed the contract", now)
    return True


def record_kyc_reminder(
    deal: Deal,
    actor_id: str,
    seller_kyc: KycStatus | str | None,
    seller_label: str,
    now: datetime,
) -> None:
    authorization.authorize(actor_id, deal, DealAction.SEND_KYC_REMINDER, seller_kyc)
    audit.append(
        deal, action="KYC reminder sent", performed_by=actor_id, now=now, details=seller_label
    )
    _system_message(deal, actor_id, f"KYC reminder sent to {seller_label}", now)


# ---------------------------------------------------------------------------
# Funding & delivery
# ---------------------------------------------------------------------------


def record_payment_captured(
    deal: Deal,
    payment_id: str,
    transaction_id: str,
    method: PaymentMethod,
    now: datetime,
) -> None:
    """Mark the deal funded once its escrow deposit has been captured."""
    new_status = _guard(deal, "payment_captured")
    deposited = deal.workflow.payment_deposited
    deal.workflow.payment_deposited = replace(
        deposited,
        completed=True,
        completed_at=now,
        completed_by=deal.buyer_id,
        payment_id=payment_id,
        transaction_id=transaction_id,
        payment_method=method,
    )
    audit.change_status(
        deal,
        new_status,
        SYSTEM_ACTOR,
        now,
        action="Payment deposited into escrow",
        details=f"{payment_id} ({transaction_id})",
    )
    _system_message(
        deal, SYSTEM_ACTOR, f"Payment of ₹{deal.amount} deposited into escrow", now
    )


def start_delivery(deal: Deal, actor_id: str, now: datetime) -> None:
    authorization.authorize(actor_id, deal, DealAction.MARK_DELIVERED)
    new_status = _guard(deal, "start_delivery")
    audit.change_status(deal, new_status, actor_id, now, action="Delivery started")
    _system_message(deal, actor_id, "Seller has started delivery", now)


def mark_delivered(deal: Deal, actor_id: str, now: datetime) -> None:
    """Seller marks the item delivered; starts the inspection period.

    From ``funds_deposited`` both ``start_delivery`` and ``mark_delivered``
    fire, each with its own audit entry.
    """
    authorization.authorize(actor_id, deal, DealAction.MARK_DELIVERED)
    events = ["mark_delivered"]
    if deal.status == DealStatus.FUNDS_DEPOSITED:
        events.insert(0, "start_delivery")

    statuses = []
    status = deal.status
    for event in events:
        status = DealStatus(fire(DealStateMachine, status, event))
        statuses.append(status)

    if len(statuses) == 2:
        audit.change_status(deal, statuses[0], actor_id, now, action="Delivery started")
    deal.delivered_at = now
    deal.inspection_deadline = now + timedelta(days=deal.terms.inspection_period_days)
    deal.workflow.delivered.mark(actor_id, now)
    audit.change_status(
        deal,
        statuses[-1],
        actor_id,
        now,
        action="Item marked as delivered",
        details=f"Inspection period ends {deal.inspection_deadline.isoformat()}",
    )
    _system_message(
        deal,
        actor_id,
        f"Seller marked the item as delivered. Buyer has "
        f"{deal.terms.inspection_period_days} day(s) to inspect and confirm.",
        now,
    )


def confirm_receipt(
    deal: Deal,
    actor_id: str,
    now: datetime,
    rating: int | None = None,
    feedback: str | None = None,
) -> None:
    authorization.authorize(actor_id, deal, DealAction.CONFIRM_RECEIPT)
    if rating is not None and (isinstance(rating, bool) or not 1 <= rating <= 5):
        raise ValidationError.for_field("rating", "Rating must be between 1 and 5")
    if feedback is not None and len(feedback) > MAX_FEEDBACK_LENGTH:
        raise ValidationError.for_field("feedback", "Feedback cannot exceed 1000 characters")
    new_status = _guard(deal, "buyer_confirms")

    deal.workflow.confirmed = replace(
        deal.workflow.confirmed,
        completed=True,
        completed_at=now,
        completed_by=actor_id,
        rating=rating,
        feedback=feedback,
    )
    deal.completed_at = now
    audit.change_status(deal, new_status, actor_id, now, action="Receipt confirmed by buyer")
    _system_message(deal, actor_id, "Buyer confirmed receipt. Deal completed.", now)


def complete_on_inspection_timeout(deal: Deal, now: datetime) -> None:
    """Complete a delivered deal whose inspection period ran out undisputed."""
    if (
        deal.status != DealStatus.DELIVERED
        or deal.inspection_deadline is None
        or now < deal.inspection_deadline
        or has_open_dispute(deal)
    ):
        raise InvalidTransition(deal.status, "inspection_elapsed")
    new_status = _guard(deal, "inspection_elapsed")

    deal.workflow.confirmed.mark(SYSTEM_ACTOR, now)
    deal.completed_at = now
    audit.change_status(
        deal,
        new_status,
        SYSTEM_ACTOR,
        now,
        action="Inspection period elapsed",
        details="Completed without buyer confirmation or dispute",
    )
    _system_message(
        deal, SYSTEM_ACTOR, "Inspection period ended without a dispute. Deal completed.", now
    )


def admin_complete(deal: Deal, admin: UserProfile, now: datetime) -> None:
    authorization.authorize(admin, deal, DealAction.RELEASE_FUNDS)
    new_status = _guard(deal, "admin_completes")
    deal.completed_at = now
    audit.change_status(
        deal, new_status, admin.user_id, now, action="Deal completed by admin release"
    )


def record_funds_released(
    deal: Deal,
    reason: ReleaseReason | str,
    performed_by: str,
    now: datetime,
) -> None:
    """Record that the escrowed funds were released to the seller.

    Called in the same mutation that completes the deal.
    """
    reason = ReleaseReason(reason)
    if deal.status != DealStatus.COMPLETED or deal.workflow.funds_released.completed:
        raise InvalidTransition(deal.status, "release_funds")
    deal.workflow.funds_released = replace(
        deal.workflow.funds_released,
        completed=True,
        completed_at=now,
        completed_by=performed_by,
        release_reason=reason,
    )
    audit.append(
        deal,
        action="Funds released from escrow",
        performed_by=performed_by,
        now=now,
        details=str(reason),
    )


# ---------------------------------------------------------------------------
# Interruptions
# ---------------------------------------------------------------------------


def raise_dispute(
    deal: Deal,
    actor_id: str,
    reason: str,
    description: str,
    now: datetime,
) -> Dispute:
    authorization.authorize(actor_id, deal, DealAction.RAISE_DISPUTE)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError.for_field("reason", "A dispute reason is required")
    new_status = _guard(deal, "raise_dispute")

    deal.dispute = Dispute(
        raised_by=actor_id,
        raised_at=now,
        reason=reason,
        description=(description or "").strip(),
    )
    audit.change_status(
        deal, new_status, actor_id, now, action="Dispute raised", details=reason
    )
    _system_message(deal, actor_id, f"Dispute raised: {reason}", now)
    return deal.dispute


def resolve_dispute(
    deal: Deal,
    admin: UserProfile,
    outcome: DisputeOutcome | str,
    resolution: str,
    now: datetime,
) -> DealStatus:
    """Close the open dispute with an admin decision.

    ``resume_delivery`` sends the deal back to ``in_delivery`` (the seller
    marks it delivered again, which restarts the inspection period);
    ``release_to_seller`` completes it; ``refund_to_buyer`` refunds it.
    """
    authorization.authorize(admin, deal, DealAction.RESOLVE_DISPUTE)
    outcome = DisputeOutcome(outcome)
    resolution = (resolution or "").strip()
    if not resolution:
        raise ValidationError.for_field("resolution", "A resolution note is required")
    new_status = _guard(deal, _DISPUTE_EVENTS[outcome])

    deal.dispute = replace(
        deal.dispute,
        status=DisputeStatus.RESOLVED,
        resolution=resolution,
        outcome=outcome,
        resolved_by=admin.user_id,
        resolved_at=now,
    )
    if new_status == DealStatus.IN_DELIVERY:
        deal.delivered_at = None
        deal.inspection_deadline = None
    elif new_status == DealStatus.COMPLETED:
        deal.completed_at = now

    audit.change_status(
        deal,
        new_status,
        admin.user_id,
        now,
        action=f"Dispute resolved: {outcome}",
        details=resolution,
    )
    _system_message(deal, admin.user_id, f"Dispute resolved: {resolution}", now)
    return new_status


def cancel(
    deal: Deal,
    actor_id: str,
    reason: str,
    now: datetime,
    actor_label: str | None = None,
) -> None:
    """Cancel a deal before any funds are captured.

    Raises:
        InvalidTransition: Outside created/accepted/kyc_pending/documents_pending.
    """
    authorization.authorize(actor_id, deal, DealAction.CANCEL_DEAL)
    new_status = _guard(deal, "cancel")
    reason = (reason or "").strip()

    deal.cancelled_at = now
    audit.change_status(
        deal, new_status, actor_id, now, action="Deal cancelled", details=reason
    )
    suffix = f": {reason}" if reason else ""
    _system_message(deal, actor_id, f"Deal cancelled by {actor_label or actor_id}{suffix}", now)


def add_message(deal: Deal, actor_id: str, text: str, now: datetime) -> DealMessage:
    """Append a party's chat message.

    Raises:
        Unauthorized: The actor is not the buyer or the seller.
        ValidationError: Empty text or longer than 1000 characters.
    """
    authorization.authorize(actor_id, deal, DealAction.SEND_MESSAGE)
    text = (text or "").strip()
    if not text:
        raise ValidationError.for_field("text", "Message cannot be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError.for_field("text", "Message cannot exceed 1000 characters")

    message = DealMessage(sender_id=actor_id, text=text, timestamp=now)
    deal.messages.append(message)
    audit.append(deal, action="Message posted", performed_by=actor_id, now=now)
    return message


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------


def _document_action(deal: Deal, role: PartyRole) -> NextAction:
    if missing_required(deal, role):
        return NextAction("Upload required documents")
    other = PartyRole.SELLER if role == PartyRole.BUYER else PartyRole.BUYER
    if missing_required(deal, other):
        return NextAction("Waiting for counterparty documents")
    return _payment_action(role)


def _payment_action(role: PartyRole) -> NextAction:
    if role == PartyRole.BUYER:
        return NextAction("Deposit payment into escrow")
    return NextAction("Waiting for buyer payment")


def next_action(
    deal: Deal,
    user_id: str,
    seller_kyc: KycStatus | str | None = None,
) -> NextAction:
    """The caller's next step, as shown on the deal dashboard."""
    role = deal.role_of(user_id)
    if role is None:
        return NextAction("Not authorized for this deal")

    is_buyer = role == PartyRole.BUYER
    status = deal.status

    if status == DealStatus.CREATED:
        if getattr(deal.workflow.parties_accepted, f"{role}_accepted"):
            return NextAction("Waiting for counterparty acceptance")
        return NextAction("Accept or reject the deal")

    if status in (DealStatus.ACCEPTED, DealStatus.KYC_PENDING):
        if not _kyc_approved(seller_kyc):
            if is_buyer:
                return NextAction(
                    "Waiting for seller KYC approval — Send reminder", can_send_reminder=True
                )
            return NextAction("Complete KYC verification (Required for sellers)")
        return _document_action(deal, role)

    if status == DealStatus.DOCUMENTS_PENDING:
        return _document_action(deal, role)

    if status == DealStatus.PAYMENT_PENDING:
        return _payment_action(role)

    if status == DealStatus.CONTRACT_PENDING:
        if getattr(deal.workflow.contract_signed, f"{role}_signed"):
            return NextAction("Waiting for counterparty signature")
        return NextAction("Sign digital contract")

    if status == DealStatus.FUNDS_DEPOSITED:
        return NextAction("Waiting for delivery" if is_buyer else "Deliver item/service to buyer")

    if status == DealStatus.IN_DELIVERY:
        return NextAction("Waiting for delivery" if is_buyer else "Mark item as delivered")

    if status == DealStatus.DELIVERED:
        return NextAction("Confirm receipt" if is_buyer else "Waiting for buyer confirmation")

    return NextAction(
        {
            DealStatus.COMPLETED: "Deal completed",
            DealStatus.DISPUTED: "Dispute in progress",
            DealStatus.CANCELLED: "Deal cancelled",
            DealStatus.REFUNDED: "Funds refunded",
        }[status]
    )


def progress(deal: Deal) -> int:
    """Percentage of applicable workflow milestones completed (0-100).

    Milestones are never un-marked, so the value never decreases.
    """
    names = applicable_milestones(deal.category)
    done = sum(1 for name in names if deal.workflow.milestone(name).completed)
    return round(100 * done / len(names))


def can_perform_action(
    deal: Deal,
    user: UserProfile | str,
    action: DealAction | str,
    seller_kyc: KycStatus | str | None = None,
) -> bool:
    return authorization.is_allowed(user, deal, action, seller_kyc)
