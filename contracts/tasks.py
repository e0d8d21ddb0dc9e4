"""
Celery tasks delivering contract notifications.

Tasks only read contract data and write EMAIL_FAILED audit rows; they never
touch contract status.
"""
import logging

from celery import shared_task
from django.conf import settings

from notifications.email_service import EmailService

logger = logging.getLogger(__name__)


class NotificationNotDelivered(Exception):
    pass


def record_email_failure(contract_id, kind: str, error: str, **metadata):
    from contracts.models import AuditLog
    from contracts.services.audit_trail import AuditTrail

    logger.error(f"Giving up on {kind} email for contract {contract_id}: {error}")
    AuditTrail().record_audit(
        AuditLog.EMAIL_FAILED,
        'contract',
        contract_id,
        'system',
        metadata={'notification': kind, 'error': error, **metadata},
    )


def _load_contract(contract_id):
    from contracts.models import Contract

    return Contract.objects.select_related('client').filter(pk=contract_id).first()


def _deliver(task, contract_id, kind, send):
    """Run ``send`` and retry on failure; the last failure is audited."""
    try:
        if not send():
            raise NotificationNotDelivered(f'{kind} email was not accepted by the mail backend')
        return True
    except NotificationNotDelivered as exc:
        if task.request.retries < task.max_retries:
            logger.warning(
                f"{kind} email for contract {contract_id} failed "
                f"(attempt {task.request.retries + 1}); retrying"
            )
            raise task.retry(exc=exc)
        record_email_failure(contract_id, kind, str(exc), attempts=task.request.retries + 1)
        return False


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def deliver_signing_link(self, contract_id: str, signing_url: str, expires_at: str = None, is_reminder: bool = False):
    """Email the magic link to the contract's client."""
    contract = _load_contract(contract_id)
    if contract is None or contract.client is None:
        logger.warning(f"Contract {contract_id} has no client to notify")
        return False

    client = contract.client
    return _deliver(
        self,
        contract_id,
        'signing_link',
        lambda: EmailService().send_signing_link_email(
            recipient_email=client.email,
            recipient_name=client.name,
            contract_title=contract.title,
            contract_number=contract.number,
            signing_url=signing_url,
            expires_at_iso=expires_at,
            is_reminder=is_reminder,
        ),
    )


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def deliver_signing_otp(self, contract_id: str, otp: str):
    """Email the verification code in its own message."""
    contract = _load_contract(contract_id)
    if contract is None or contract.client is None:
        logger.warning(f"Contract {contract_id} has no client to send a code to")
        return False

    client = contract.client
    return _deliver(
        self,
        contract_id,
        'signing_otp',
        lambda: EmailService().send_signing_otp_email(
            recipient_email=client.email,
            recipient_name=client.name,
            contract_title=contract.title,
            otp=otp,
        ),
    )


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def deliver_outcome_notice(self, contract_id: str, outcome: str, reason: str = None):
    """Notify the studio (and the client for signatures) that a contract was signed or declined."""
    contract = _load_contract(contract_id)
    if contract is None:
        logger.warning(f"Contract {contract_id} no longer exists; skipping {outcome} notice")
        return False

    recipients = []
    studio_email = (getattr(settings, 'STUDIO_NOTIFICATION_EMAIL', '') or '').strip()
    if studio_email:
        recipients.append(studio_email)
    if outcome == 'signed' and contract.client is not None and contract.client.email:
        recipients.append(contract.client.email)

    return _deliver(
        self,
        contract_id,
        f'{outcome}_notice',
        lambda: EmailService().send_contract_outcome_email(
            recipient_emails=recipients,
            contract_title=contract.title,
            contract_number=contract.number,
            outcome=outcome,
            reason=reason,
        ),
    )
