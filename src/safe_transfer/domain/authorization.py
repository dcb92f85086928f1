"""Authorization predicates for deal actions.

Each action has one rule: which parties may perform it (or admins only), the
deal statuses it is legal from, and whether the seller's KYC must be approved.
``authorize`` raises; ``is_allowed`` answers the same question as a boolean
and also hides actions the caller has already performed (accepting twice,
signing twice), which is what capability flags in the UI need.

Checks run in a fixed order so the error is stable: identity first
(Unauthorized), then state (InvalidTransition), then KYC (Unauthorized).
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

from safe_transfer.domain.enums import (
    CANCELLABLE_DEAL_STATUSES,
    DISPUTABLE_DEAL_STATUSES,
    TERMINAL_DEAL_STATUSES,
    DealAction,
    DealStatus,
    KycStatus,
    PartyRole,
)
from safe_transfer.domain.exceptions import InvalidTransition, Unauthorized
from safe_transfer.domain.models import UserProfile

if TYPE_CHECKING:
    from safe_transfer.domain.models import Deal

_BOTH = frozenset({PartyRole.BUYER, PartyRole.SELLER})
_BUYER = frozenset({PartyRole.BUYER})
_SELLER = frozenset({PartyRole.SELLER})
_ADMIN: frozenset[PartyRole] = frozenset()

UPLOADABLE_DEAL_STATUSES = frozenset(
    {
        DealStatus.CREATED,
        DealStatus.ACCEPTED,
        DealStatus.KYC_PENDING,
        DealStatus.DOCUMENTS_PENDING,
    }
)


@dataclass(frozen=True)
class ActionRule:
    roles: frozenset[PartyRole]
    statuses: frozenset[DealStatus]
    requires_seller_kyc: bool = False

    @property
    def admin_only(self) -> bool:
        return not self.roles


RULES: MappingProxyType[DealAction, ActionRule] = MappingProxyType(
    {
        DealAction.ACCEPT_DEAL: ActionRule(_BOTH, frozenset({DealStatus.CREATED})),
        DealAction.UPLOAD_DOCUMENT: ActionRule(_BOTH, UPLOADABLE_DEAL_STATUSES),
        DealAction.SIGN_CONTRACT: ActionRule(
            _BOTH, frozenset({DealStatus.CONTRACT_PENDING}), requires_seller_kyc=True
        ),
        DealAction.DEPOSIT_PAYMENT: ActionRule(
            _BUYER, frozenset({DealStatus.PAYMENT_PENDING}), requires_seller_kyc=True
        ),
        DealAction.MARK_DELIVERED: ActionRule(
            _SELLER, frozenset({DealStatus.FUNDS_DEPOSITED, DealStatus.IN_DELIVERY})
        ),
        DealAction.CONFIRM_RECEIPT: ActionRule(_BUYER, frozenset({DealStatus.DELIVERED})),
        DealAction.RAISE_DISPUTE: ActionRule(_BOTH, DISPUTABLE_DEAL_STATUSES),
        DealAction.CANCEL_DEAL: ActionRule(_BOTH, CANCELLABLE_DEAL_STATUSES),
        DealAction.SEND_MESSAGE: ActionRule(
            _BOTH, frozenset(set(DealStatus) - TERMINAL_DEAL_STATUSES)
        ),
        DealAction.SEND_KYC_REMINDER: ActionRule(
            _BUYER, frozenset({DealStatus.ACCEPTED, DealStatus.KYC_PENDING})
        ),
        DealAction.RESOLVE_DISPUTE: ActionRule(_ADMIN, frozenset({DealStatus.DISPUTED})),
        DealAction.RELEASE_FUNDS: ActionRule(_ADMIN, frozenset({DealStatus.DELIVERED})),
        DealAction.REFUND_PAYMENT: ActionRule(_ADMIN, frozenset({DealStatus.DISPUTED})),
    }
)


def role_of(deal: Deal, user_id: str) -> PartyRole | None:
    return deal.role_of(user_id)


def _identity(user: UserProfile | str) -> tuple[str, bool]:
    if isinstance(user, UserProfile):
        return user.user_id, user.is_admin
    return user, False


def _kyc_approved(seller_kyc: KycStatus | str | None) -> bool:
    return seller_kyc is not None and KycStatus(seller_kyc) == KycStatus.APPROVED


def authorize(
    user: UserProfile | str,
    deal: Deal,
    action: DealAction | str,
    seller_kyc: KycStatus | str | None = None,
) -> PartyRole | None:
    """Raise unless ``user`` may perform ``action`` on ``deal`` right now.

    Returns the caller's role (None for admin actions).

    Raises:
        Unauthorized: Not a party, wrong party, not an admin, or seller KYC
            not approved for a KYC-gated action.
        InvalidTransition: The caller may perform the action, but not from
            the deal's current status.
    """
    action = DealAction(action)
    rule = RULES[action]
    user_id, is_admin = _identity(user)

    role: PartyRole | None = None
    if rule.admin_only:
        if not is_admin:
            raise Unauthorized(user_id, action, "admin only")
    else:
        role = deal.role_of(user_id)
        if role is None:
            raise Unauthorized(user_id, action, "not a party to this deal")
        if role not in rule.roles:
            allowed = " or ".join(sorted(rule.roles))
            raise Unauthorized(user_id, action, f"only the {allowed} may do this")

    if deal.status not in rule.statuses:
        raise InvalidTransition(deal.status, action)

    if rule.requires_seller_kyc and not _kyc_approved(seller_kyc):
        raise Unauthorized(user_id, action, "seller KYC is not approved")

    if action == DealAction.SEND_KYC_REMINDER and _kyc_approved(seller_kyc):
        raise InvalidTransition(deal.status, action)

    return role


def is_allowed(
    user: UserProfile | str,
    deal: Deal,
    action: DealAction | str,
    seller_kyc: KycStatus | str | None = None,
) -> bool:
    """Boolean form of ``authorize`` that also rules out repeated actions."""
    try:
        role = authorize(user, deal, action, seller_kyc)
    except (Unauthorized, InvalidTransition):
        return False

    action = DealAction(action)
    if action == DealAction.ACCEPT_DEAL and role is not None:
        return not getattr(deal.workflow.parties_accepted, f"{role}_accepted")
    if action == DealAction.SIGN_CONTRACT and role is not None:
        return not getattr(deal.workflow.contract_signed, f"{role}_signed")
    return True
