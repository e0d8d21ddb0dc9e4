"""
Signal receivers: turn committed lifecycle transitions into notification tasks.

A failure here is logged and audited; it can never undo the transition.
"""
import logging

from django.dispatch import receiver

from contracts import signals
from contracts.tasks import (
    deliver_outcome_notice,
    deliver_signing_link,
    deliver_signing_otp,
    record_email_failure,
)

logger = logging.getLogger(__name__)


def _enqueue_link(contract_id, signing_url, expires_at, otp, is_reminder):
    try:
        deliver_signing_link.delay(contract_id, signing_url, expires_at, is_reminder)
        if otp:
            deliver_signing_otp.delay(contract_id, otp)
    except Exception as e:
        logger.error(f"Failed to enqueue signing link for contract {contract_id}: {e}", exc_info=True)
        record_email_failure(contract_id, 'signing_link', f'enqueue failed: {e}')


@receiver(signals.contract_sent)
def notify_on_contract_sent(sender, contract_id, signing_url, expires_at, otp=None, **kwargs):
    _enqueue_link(contract_id, signing_url, expires_at, otp, is_reminder=False)


@receiver(signals.contract_resent)
def notify_on_contract_resent(sender, contract_id, signing_url, expires_at, otp=None, **kwargs):
    _enqueue_link(contract_id, signing_url, expires_at, otp, is_reminder=True)


@receiver(signals.contract_signed)
def notify_on_contract_signed(sender, contract_id, **kwargs):
    try:
        deliver_outcome_notice.delay(contract_id, 'signed')
    except Exception as e:
        logger.error(f"Failed to enqueue signed notice for contract {contract_id}: {e}", exc_info=True)
        record_email_failure(contract_id, 'signed_notice', f'enqueue failed: {e}')


@receiver(signals.contract_declined)
def notify_on_contract_declined(sender, contract_id, reason='', **kwargs):
    try:
        deliver_outcome_notice.delay(contract_id, 'declined', reason or None)
    except Exception as e:
        logger.error(f"Failed to enqueue declined notice for contract {contract_id}: {e}", exc_info=True)
        record_email_failure(contract_id, 'declined_notice', f'enqueue failed: {e}')
