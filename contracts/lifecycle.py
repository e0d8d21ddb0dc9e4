"""
Contract status transition table.

Every status change goes through ``resolve``; nothing else decides whether an
action is permitted for a status.
"""
from __future__ import annotations

from contracts.exceptions import InvalidTransition
from contracts.models import Contract

DRAFT = Contract.STATUS_DRAFT
SENT = Contract.STATUS_SENT
SIGNED = Contract.STATUS_SIGNED
DECLINED = Contract.STATUS_DECLINED
VOIDED = Contract.STATUS_VOIDED
CANCELLED = Contract.STATUS_CANCELLED

GENERATE_PDF = 'generate_pdf'
REGENERATE_PDF = 'regenerate_pdf'
SEND = 'send'
RESEND = 'resend'
SIGN = 'sign'
DECLINE = 'decline'
VOID = 'void'
CANCEL = 'cancel'

# current status -> {action: next status}
TRANSITIONS: dict[str, dict[str, str]] = {
    DRAFT: {
        GENERATE_PDF: DRAFT,
        REGENERATE_PDF: DRAFT,
        SEND: SENT,
        VOID: VOIDED,
        CANCEL: CANCELLED,
    },
    SENT: {
        RESEND: SENT,
        REGENERATE_PDF: SENT,
        SIGN: SIGNED,
        DECLINE: DECLINED,
        VOID: VOIDED,
        CANCEL: CANCELLED,
    },
    SIGNED: {},
    DECLINED: {},
    VOIDED: {},
    CANCELLED: {},
}

TERMINAL_STATUSES = frozenset(status for status, actions in TRANSITIONS.items() if not actions)


def _blocked_message(action: str, current: str) -> str:
    if action == SEND:
        return 'Only draft contracts can be sent'
    if action == RESEND:
        if current == DRAFT:
            return 'Cannot resend a draft contract; send it first'
        if current in (VOIDED, CANCELLED):
            return 'Cannot resend a voided or cancelled contract'
        return f'Cannot resend a {current} contract'
    if action == SIGN:
        return f'Cannot sign a {current} contract; only sent contracts can be signed'
    if action == DECLINE:
        return f'Cannot decline a {current} contract; only sent contracts can be declined'
    if action == GENERATE_PDF:
        return f'PDF can only be generated for draft contracts, not {current}'
    if action == REGENERATE_PDF:
        return f'Cannot regenerate the PDF of a {current} contract'
    return f'Cannot {action} a {current} contract'


def allowed_actions(current: str) -> list[str]:
    return sorted(TRANSITIONS.get(current, {}))


def is_terminal(current: str) -> bool:
    return current in TERMINAL_STATUSES


def resolve(current: str, action: str) -> str:
    """Return the status ``action`` leads to from ``current`` or raise InvalidTransition."""
    target = TRANSITIONS.get(current, {}).get(action)
    if target is None:
        raise InvalidTransition(
            _blocked_message(action, current),
            current_status=current,
            action=action,
        )
    return target
