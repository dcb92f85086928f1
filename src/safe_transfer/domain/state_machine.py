"""Deal and Payment state machine guards.

Uses python-statemachine to enforce legal state transitions at the domain
level. Whatever the orchestrator or API does, an illegal transition (e.g.
created -> funds_deposited) raises before any field is written.

A machine is instantiated per transition at the entity's current status, the
named event is fired, and the resulting status is written back by the caller
together with an audit entry.

Deal transition table:
    created            -> accepted            (parties_accept)
    accepted           -> kyc_pending         (await_kyc)
    accepted           -> documents_pending   (request_documents)
    kyc_pending        -> documents_pending   (request_documents)
    documents_pending  -> payment_pending     (documents_complete)
    documents_pending  -> contract_pending    (require_contract)
    contract_pending   -> payment_pending     (contract_signed)
    payment_pending    -> funds_deposited     (payment_captured)
    funds_deposited    -> in_delivery         (start_delivery)
    in_delivery        -> delivered           (mark_delivered)
    delivered          -> completed           (buyer_confirms | inspection_elapsed)
    delivered          -> completed           (admin_completes)
    created..documents_pending -> cancelled   (cancel)
    funds_deposited..delivered -> disputed    (raise_dispute)
    disputed           -> in_delivery         (resume_delivery)
    disputed           -> completed           (resolve_for_seller)
    disputed           -> refunded            (resolve_for_buyer)

Payment transition table:
    initiated             -> pending              (submit)
    pending               -> processing           (process)
    pending | processing  -> captured             (capture)
    initiated..processing -> failed               (fail)
    initiated..processing -> cancelled            (cancel)
    failed                -> pending              (retry)
    captured              -> refunded             (refund_full)
    captured              -> partially_refunded   (refund_partial)
    captured              -> disputed             (dispute)
    disputed              -> captured             (dispute_closed)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from safe_transfer.domain.exceptions import InvalidTransition


class _GuardMixin:
    """Shared constructor and helpers for the guard machines."""

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Current state value (matches the DealStatus / PaymentStatus enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class DealStateMachine(_GuardMixin, StateMachine):
    """Guards the deal lifecycle.

    Usage:
        sm = DealStateMachine("created")
        sm.parties_accept()
        sm.status  # "accepted"
    """

    # --- States ---
    created = State("Created", value="created", initial=True)
    accepted = State("Accepted", value="accepted")
    kyc_pending = State("KYC pending", value="kyc_pending")
    documents_pending = State("Documents pending", value="documents_pending")
    contract_pending = State("Contract pending", value="contract_pending")
    payment_pending = State("Payment pending", value="payment_pending")
    funds_deposited = State("Funds deposited", value="funds_deposited")
    in_delivery = State("In delivery", value="in_delivery")
    delivered = State("Delivered", value="delivered")
    disputed = State("Disputed", value="disputed")
    completed = State("Completed", value="completed", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)
    refunded = State("Refunded", value="refunded", final=True)

    # --- Acceptance & gating ---
    parties_accept = created.to(accepted)
    await_kyc = accepted.to(kyc_pending)
    request_documents = accepted.to(documents_pending) | kyc_pending.to(documents_pending)
    documents_complete = documents_pending.to(payment_pending)
    require_contract = documents_pending.to(contract_pending)
    contract_signed = contract_pending.to(payment_pending)

    # --- Funding & delivery ---
    payment_captured = payment_pending.to(funds_deposited)
    start_delivery = funds_deposited.to(in_delivery)
    mark_delivered = in_delivery.to(delivered)
    buyer_confirms = delivered.to(completed)
    inspection_elapsed = delivered.to(completed)
    admin_completes = delivered.to(completed)

    # --- Interruptions ---
    cancel = (
        created.to(cancelled)
        | accepted.to(cancelled)
        | kyc_pending.to(cancelled)
        | documents_pending.to(cancelled)
    )
    raise_dispute = (
        funds_deposited.to(disputed) | in_delivery.to(disputed) | delivered.to(disputed)
    )
    resume_delivery = disputed.to(in_delivery)
    resolve_for_seller = disputed.to(completed)
    resolve_for_buyer = disputed.to(refunded)


class PaymentStateMachine(_GuardMixin, StateMachine):
    """Guards the payment lifecycle."""

    initiated = State("Initiated", value="initiated", initial=True)
    pending = State("Pending", value="pending")
    processing = State("Processing", value="processing")
    captured = State("Captured", value="captured")
    failed = State("Failed", value="failed")
    disputed = State("Disputed", value="disputed")
    cancelled = State("Cancelled", value="cancelled", final=True)
    refunded = State("Refunded", value="refunded", final=True)
    partially_refunded = State("Partially refunded", value="partially_refunded", final=True)

    submit = initiated.to(pending)
    process = pending.to(processing)
    capture = pending.to(captured) | processing.to(captured)
    fail = initiated.to(failed) | pending.to(failed) | processing.to(failed)
    cancel = initiated.to(cancelled) | pending.to(cancelled) | processing.to(cancelled)
    retry = failed.to(pending)

    refund_full = captured.to(refunded)
    refund_partial = captured.to(partially_refunded)
    dispute = captured.to(disputed)
    dispute_closed = disputed.to(captured)


def fire(machine_cls: type[_GuardMixin], current_status: str, event_name: str) -> str:
    """Validate a transition and return the resulting status.

    Raises:
        InvalidTransition: If the event is unknown or illegal from ``current_status``.
    """
    sm = machine_cls(current_status=str(current_status))
    if event_name not in {event.id for event in sm.events}:
        raise InvalidTransition(str(current_status), event_name)
    try:
        getattr(sm, event_name)()
    except TransitionNotAllowed as err:
        raise InvalidTransition(str(current_status), event_name) from err
    return sm.status


def can_fire(machine_cls: type[_GuardMixin], current_status: str, event_name: str) -> bool:
    return event_name in machine_cls(current_status=str(current_status)).get_allowed_events()
