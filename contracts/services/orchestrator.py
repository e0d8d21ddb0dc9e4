"""
Contract Orchestrator

The only component that changes Contract.status. Every transition is resolved
against contracts.lifecycle and applied as a conditional UPDATE
(``WHERE id = ? AND status = <expected>``) so two concurrent requests can never
both win the same transition.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone
from prometheus_client import Counter

from contracts import lifecycle, signals
from contracts.exceptions import (
    ContractNotFound,
    ContractValidationError,
    DeletionNotAllowed,
    EmptyTemplateContent,
    InvalidTransition,
    MissingClientContact,
    OTPMismatch,
    SignerMismatch,
    TemplateInactive,
    TermsNotAccepted,
)
from contracts.models import AuditLog, Client, Contract, ContractEvent, ContractSequence
from contracts.services.audit_trail import AuditTrail, RequestContext
from contracts.services.pdf_integrity import (
    IntegrityResult,
    PDFArtifact,
    PDFInfo,
    PDFIntegrityService,
    contract_lock,
    parse_signature_data_url,
)
from contracts.services.rendering import (
    ContentRenderer,
    DatabaseTemplateStore,
    PlaceholderRenderer,
    TemplateStore,
)
from contracts.services.signing_tokens import IssuedToken, SigningTokenService

logger = logging.getLogger(__name__)

CONTRACT_TRANSITIONS = Counter(
    'studio_contract_transitions_total',
    'Contract status transitions applied',
    ['action', 'status'],
)
PDF_INTEGRITY_CHECKS = Counter(
    'studio_contract_pdf_integrity_checks_total',
    'Contract PDF integrity verifications',
    ['result'],
)

ENTITY = 'contract'
NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class SendResult:
    contract: Contract
    signing_url: str
    expires_at: datetime
    token_id: Any
    requires_otp: bool

    def as_dict(self):
        return {
            'contract_id': str(self.contract.id),
            'number': self.contract.number,
            'status': self.contract.status,
            'sent_at': self.contract.sent_at.isoformat() if self.contract.sent_at else None,
            'signing_url': self.signing_url,
            'expires_at': self.expires_at.isoformat(),
            'requires_otp': self.requires_otp,
        }


def format_contract_number(year: int, sequence: int) -> str:
    return f"CONT-{year}-{sequence:03d}"


class ContractOrchestrator:
    def __init__(
        self,
        *,
        template_store: Optional[TemplateStore] = None,
        renderer: Optional[ContentRenderer] = None,
        tokens: Optional[SigningTokenService] = None,
        pdfs: Optional[PDFIntegrityService] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.template_store = template_store or DatabaseTemplateStore()
        self.renderer = renderer or PlaceholderRenderer()
        self.tokens = tokens or SigningTokenService()
        self.pdfs = pdfs or PDFIntegrityService()
        self.audit = audit or AuditTrail()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    @staticmethod
    def _get(contract_id) -> Contract:
        try:
            return Contract.objects.select_related('client').get(pk=contract_id)
        except (Contract.DoesNotExist, ValueError, DjangoValidationError):
            raise ContractNotFound()

    @staticmethod
    def _current_status(contract_id) -> Optional[str]:
        try:
            return Contract.objects.filter(pk=contract_id).values_list('status', flat=True).first()
        except (ValueError, DjangoValidationError):
            return None

    def _transition(self, contract_id, action: str, **fields) -> str:
        """Apply ``action`` with a compare-and-set on status; returns the new status."""
        current = self._current_status(contract_id)
        if current is None:
            raise ContractNotFound()
        target = lifecycle.resolve(current, action)

        updated = Contract.objects.filter(pk=contract_id, status=current).update(
            status=target,
            updated_at=timezone.now(),
            **fields,
        )
        if updated != 1:
            # Lost the race: report against whatever status won.
            latest = self._current_status(contract_id)
            if latest is None:
                raise ContractNotFound()
            lifecycle.resolve(latest, action)
            raise InvalidTransition(
                f'Contract status changed concurrently (now {latest}); retry the request',
                current_status=latest,
                action=action,
            )

        CONTRACT_TRANSITIONS.labels(action=action, status=target).inc()
        logger.info(f"Contract {contract_id}: {current} --{action}--> {target}")
        return target

    def _next_number(self, year: int) -> str:
        while True:
            number = format_contract_number(year, ContractSequence.next_value(year))
            if not Contract.objects.filter(number=number).exists():
                return number
            logger.warning(f"Contract number {number} already taken; advancing sequence")

    @staticmethod
    def _require_client_contact(contract: Contract) -> Client:
        client = contract.client
        if client is None or not (client.email or '').strip():
            raise MissingClientContact()
        try:
            validate_email(client.email.strip())
        except DjangoValidationError:
            raise MissingClientContact()
        return client

    @staticmethod
    def _publish(signal, **kwargs):
        transaction.on_commit(lambda: signal.send(sender=ContractOrchestrator, **kwargs))

    # ------------------------------------------------------------------
    # generation
    # ------------------------------------------------------------------

    def generate_contract(
        self,
        template_id,
        title: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        client_id=None,
        proposal_id=None,
        actor=None,
        context: Optional[RequestContext] = None,
    ) -> Contract:
        template = self.template_store.get_active_template(template_id)
        if not template.is_active:
            raise TemplateInactive()
        if not (template.content or '').strip():
            raise EmptyTemplateContent()

        client = None
        if client_id:
            try:
                client = Client.objects.filter(pk=client_id).first()
            except (ValueError, DjangoValidationError):
                client = None
            if client is None:
                raise ContractValidationError('Client not found')

        snapshot = dict(variables or {})
        render_vars = dict(snapshot)
        if client is not None:
            render_vars['client'] = {**client.as_variables(), **(snapshot.get('client') or {})}
        content = self.renderer.render(template.content, render_vars)

        year = timezone.now().year
        for attempt in range(1, NUMBER_ATTEMPTS + 1):
            try:
                with transaction.atomic():
                    contract = Contract.objects.create(
                        number=self._next_number(year),
                        title=(title or template.name or 'Contract').strip(),
                        template_id=template.id,
                        template_version=template.version,
                        content=content,
                        variables=snapshot,
                        status=Contract.STATUS_DRAFT,
                        client=client,
                        proposal_id=proposal_id or None,
                        created_by=str(actor) if actor is not None else '',
                    )
                    self.audit.record_audit(
                        AuditLog.CREATE,
                        ENTITY,
                        contract.id,
                        actor,
                        changes={
                            'number': contract.number,
                            'status': contract.status,
                            'template_id': str(template.id),
                            'template_version': template.version,
                        },
                        context=context,
                    )
                break
            except IntegrityError:
                if attempt == NUMBER_ATTEMPTS:
                    raise
                logger.warning(f"Contract number collision on attempt {attempt}; retrying")

        logger.info(f"Contract {contract.number} generated from template {template.id} v{template.version}")
        return contract

    # ------------------------------------------------------------------
    # sending
    # ------------------------------------------------------------------

    def send_contract(
        self,
        contract_id,
        actor=None,
        *,
        require_otp: Optional[bool] = None,
        ttl_hours: Optional[int] = None,
        context: Optional[RequestContext] = None,
    ) -> SendResult:
        contract = self._get(contract_id)
        lifecycle.resolve(contract.status, lifecycle.SEND)
        client = self._require_client_contact(contract)

        # Slow I/O stays outside the transaction.
        artifact = self.pdfs.ensure_generated(contract.id)
        if artifact is not None:
            self._record_artifact(
                contract.id, artifact, ContractEvent.PDF_GENERATED, AuditLog.GENERATE_PDF, actor, context,
                trigger=lifecycle.SEND,
            )

        with transaction.atomic():
            sent_at = timezone.now()
            self._transition(contract.id, lifecycle.SEND, sent_at=sent_at)
            issued = self.tokens.rotate(contract.id, ttl_hours=ttl_hours, require_otp=require_otp)
            self.audit.record_event(contract.id, ContractEvent.SENT, {
                'recipient': client.email,
                'token_id': str(issued.token_id),
                'expires_at': issued.expires_at.isoformat(),
                'requires_otp': issued.otp is not None,
            })
            self.audit.record_audit(
                AuditLog.SEND,
                ENTITY,
                contract.id,
                actor,
                changes={'status': [Contract.STATUS_DRAFT, Contract.STATUS_SENT]},
                metadata={'pdf_generated': artifact is not None, 'recipient': client.email},
                context=context,
            )
            self._publish(signals.contract_sent, **self._link_payload(issued, actor))

        return self._send_result(contract.id, issued)

    def resend_contract(
        self,
        contract_id,
        actor=None,
        *,
        require_otp: Optional[bool] = None,
        ttl_hours: Optional[int] = None,
        context: Optional[RequestContext] = None,
    ) -> SendResult:
        contract = self._get(contract_id)
        lifecycle.resolve(contract.status, lifecycle.RESEND)
        client = self._require_client_contact(contract)

        with transaction.atomic():
            self._transition(contract.id, lifecycle.RESEND, sent_at=timezone.now())
            issued = self.tokens.rotate(contract.id, ttl_hours=ttl_hours, require_otp=require_otp)
            self.audit.record_event(contract.id, ContractEvent.RESENT, {
                'recipient': client.email,
                'token_id': str(issued.token_id),
                'expires_at': issued.expires_at.isoformat(),
                'requires_otp': issued.otp is not None,
            })
            self.audit.record_audit(
                AuditLog.RESEND_CONTRACT,
                ENTITY,
                contract.id,
                actor,
                metadata={'recipient': client.email},
                context=context,
            )
            self._publish(signals.contract_resent, **self._link_payload(issued, actor))

        return self._send_result(contract.id, issued)

    @staticmethod
    def _link_payload(issued: IssuedToken, actor) -> Dict[str, Any]:
        return {
            'contract_id': str(issued.contract_id),
            'signing_url': issued.url,
            'expires_at': issued.expires_at.isoformat(),
            'otp': issued.otp,
            'actor': str(actor) if actor is not None else None,
        }

    def _send_result(self, contract_id, issued: IssuedToken) -> SendResult:
        return SendResult(
            contract=self._get(contract_id),
            signing_url=issued.url,
            expires_at=issued.expires_at,
            token_id=issued.token_id,
            requires_otp=issued.otp is not None,
        )

    # ------------------------------------------------------------------
    # signer-facing
    # ------------------------------------------------------------------

    def record_view(self, token: str, *, context: Optional[RequestContext] = None) -> Contract:
        """Signer opened the link. Does not consume the token."""
        row = self.tokens.validate(token)
        context = context or RequestContext()
        self.audit.record_event(row.contract_id, ContractEvent.VIEWED, {
            'token_id': str(row.id),
            **context.hashed(),
        })
        contract = self._get(row.contract_id)
        contract.requires_otp = row.require_otp
        return contract

    @staticmethod
    def _lock_contract(contract_id) -> None:
        locked = Contract.objects.select_for_update().filter(pk=contract_id).values_list('pk', flat=True).first()
        if locked is None:
            raise ContractNotFound()

    def _complete_with_token(
        self,
        token: str,
        *,
        otp: Optional[str],
        action: str,
        fields_for,
        event_type: str,
        audit_action: str,
        metadata: Dict[str, Any],
        actor,
        context: Optional[RequestContext],
        on_success,
        prepare=None,
    ) -> Contract:
        """Consume ``token`` and apply ``action`` in one transaction.

        Row locks are taken contract first, then token, the same order the
        operator paths use. ``prepare`` may store a new artifact before the
        transaction; it is recorded with the status change or discarded.
        """
        context = context or RequestContext()
        contract_id = self.tokens.validate(token).contract_id
        now = timezone.now()

        with contract_lock(contract_id):
            artifact = prepare(self._get(contract_id), now) if prepare else None
            try:
                with transaction.atomic():
                    self._lock_contract(contract_id)
                    self.tokens.verify_and_consume(token, otp)
                    fields = fields_for(now)
                    event_meta = dict(metadata)
                    if artifact is not None:
                        fields.update(pdf_path=artifact.path, pdf_hash=artifact.hash, pdf_generated_at=now)
                        event_meta.update(pdf_path=artifact.path, pdf_hash=artifact.hash)
                    self._transition(contract_id, action, **fields)
                    self.audit.record_event(contract_id, event_type, {
                        **event_meta,
                        **context.hashed(),
                        'at': now.isoformat(),
                    })
                    self.audit.record_audit(
                        audit_action,
                        ENTITY,
                        contract_id,
                        actor,
                        metadata=event_meta,
                        context=context,
                    )
                    on_success(contract_id)
            except OTPMismatch as e:
                self._discard(artifact)
                attempts_left = self.tokens.register_failed_otp(e.token_id)
                if attempts_left:
                    detail = f'Invalid verification code. {attempts_left} attempt(s) left.'
                else:
                    detail = 'Invalid verification code. The signing link has been revoked.'
                raise OTPMismatch(detail, token_id=e.token_id, attempts_left=attempts_left)
            except Exception:
                self._discard(artifact)
                raise
        return self._get(contract_id)

    def _discard(self, artifact: Optional[PDFArtifact]) -> None:
        if artifact is not None:
            self.pdfs.delete(artifact.path)

    def record_signature(
        self,
        token: str,
        *,
        otp: Optional[str] = None,
        signer_name: str = '',
        signer_email: str = '',
        signature_data_url: str = '',
        agreed_to_terms: bool = True,
        context: Optional[RequestContext] = None,
    ) -> Contract:
        """Sign through the magic link.

        A signature image, when given, is stamped onto the PDF and the signed
        copy becomes the artifact under integrity protection.
        """
        signer_email = (signer_email or '').strip()

        def prepare(contract: Contract, signed_at) -> Optional[PDFArtifact]:
            if not agreed_to_terms:
                raise TermsNotAccepted()
            client_email = (contract.client.email if contract.client else '') or ''
            if signer_email and client_email and signer_email.lower() != client_email.strip().lower():
                raise SignerMismatch()
            if not signature_data_url:
                return None
            signature_png = parse_signature_data_url(signature_data_url)
            signer = ' '.join(part for part in (signer_name, f'<{signer_email}>' if signer_email else '') if part)
            caption = f"Signed by {signer or 'client'} on {signed_at:%Y-%m-%d %H:%M} UTC ({contract.number})"
            return self.pdfs.stamp_signature(contract.id, signature_png=signature_png, caption=caption)

        return self._complete_with_token(
            token,
            otp=otp,
            action=lifecycle.SIGN,
            fields_for=lambda now: {'signed_at': now},
            event_type=ContractEvent.SIGNED,
            audit_action=AuditLog.SIGN,
            metadata={
                'signer_name': signer_name,
                'signer_email': signer_email,
                'signature_captured': bool(signature_data_url),
            },
            actor=signer_email or 'signer',
            context=context,
            on_success=lambda contract_id: self._publish(
                signals.contract_signed,
                contract_id=str(contract_id),
                signer_email=signer_email or None,
            ),
            prepare=prepare,
        )

    def record_decline(
        self,
        token: str,
        *,
        otp: Optional[str] = None,
        reason: str = '',
        signer_name: str = '',
        signer_email: str = '',
        context: Optional[RequestContext] = None,
    ) -> Contract:
        reason = (reason or '').strip()
        return self._complete_with_token(
            token,
            otp=otp,
            action=lifecycle.DECLINE,
            fields_for=lambda now: {'declined_at': now, 'decline_reason': reason},
            event_type=ContractEvent.DECLINED,
            audit_action=AuditLog.DECLINE,
            metadata={'signer_name': signer_name, 'signer_email': signer_email, 'reason': reason},
            actor=signer_email or 'signer',
            context=context,
            on_success=lambda contract_id: self._publish(
                signals.contract_declined,
                contract_id=str(contract_id),
                reason=reason,
            ),
        )

    # ------------------------------------------------------------------
    # terminal operator actions
    # ------------------------------------------------------------------

    def void_contract(self, contract_id, reason: str = '', actor=None, *, context: Optional[RequestContext] = None) -> Contract:
        reason = (reason or '').strip()
        with transaction.atomic():
            previous = self._current_status(contract_id)
            self._transition(contract_id, lifecycle.VOID, voided_at=timezone.now(), voided_reason=reason)
            revoked = self.tokens.revoke_all_active(contract_id)
            self.audit.record_event(contract_id, ContractEvent.VOIDED, {'reason': reason, 'revoked_tokens': revoked})
            self.audit.record_audit(
                AuditLog.VOID,
                ENTITY,
                contract_id,
                actor,
                changes={'status': [previous, Contract.STATUS_VOIDED]},
                metadata={'reason': reason},
                context=context,
            )
        return self._get(contract_id)

    def cancel_contract(self, contract_id, reason: str = '', actor=None, *, context: Optional[RequestContext] = None) -> Contract:
        reason = (reason or '').strip()
        with transaction.atomic():
            previous = self._current_status(contract_id)
            self._transition(contract_id, lifecycle.CANCEL, cancelled_at=timezone.now(), cancelled_reason=reason)
            revoked = self.tokens.revoke_all_active(contract_id)
            self.audit.record_event(contract_id, ContractEvent.CANCELLED, {'reason': reason, 'revoked_tokens': revoked})
            self.audit.record_audit(
                AuditLog.CANCEL,
                ENTITY,
                contract_id,
                actor,
                changes={'status': [previous, Contract.STATUS_CANCELLED]},
                metadata={'reason': reason},
                context=context,
            )
        return self._get(contract_id)

    def delete_contract(self, contract_id, actor=None, *, context: Optional[RequestContext] = None) -> None:
        """Remove a contract and its artifact. Signed contracts are kept."""
        with transaction.atomic():
            contract = Contract.objects.select_for_update().filter(pk=contract_id).first()
            if contract is None:
                raise ContractNotFound()
            if contract.status == Contract.STATUS_SIGNED:
                raise DeletionNotAllowed()

            pdf_path = contract.pdf_path
            snapshot = {'number': contract.number, 'title': contract.title, 'status': contract.status}
            self.tokens.revoke_all_active(contract.id)
            contract.delete()
            self.audit.record_audit(
                AuditLog.DELETE,
                ENTITY,
                contract_id,
                actor,
                changes=snapshot,
                metadata={'pdf_path': pdf_path},
                context=context,
            )

        if pdf_path:
            self.pdfs.delete(pdf_path)
        logger.info(f"Contract {snapshot['number']} deleted")

    # ------------------------------------------------------------------
    # artifact
    # ------------------------------------------------------------------

    def generate_pdf(self, contract_id, actor=None, *, context: Optional[RequestContext] = None) -> PDFArtifact:
        contract = self._get(contract_id)
        lifecycle.resolve(contract.status, lifecycle.GENERATE_PDF)
        artifact = self.pdfs.generate(contract.id)
        self._record_artifact(contract.id, artifact, ContractEvent.PDF_GENERATED, AuditLog.GENERATE_PDF, actor, context)
        return artifact

    def regenerate_pdf(self, contract_id, actor=None, *, context: Optional[RequestContext] = None) -> PDFArtifact:
        contract = self._get(contract_id)
        lifecycle.resolve(contract.status, lifecycle.REGENERATE_PDF)
        previous_hash = contract.pdf_hash
        artifact = self.pdfs.regenerate(contract.id)
        self._record_artifact(
            contract.id, artifact, ContractEvent.PDF_REGENERATED, AuditLog.REGENERATE_PDF, actor, context,
            previous_hash=previous_hash,
        )
        return artifact

    def _record_artifact(self, contract_id, artifact: PDFArtifact, event_type, audit_action, actor, context, **extra):
        meta = {
            'pdf_path': artifact.path,
            'pdf_hash': artifact.hash,
            'file_size': artifact.size,
            **extra,
        }
        with transaction.atomic():
            self.audit.record_event(contract_id, event_type, meta)
            self.audit.record_audit(audit_action, ENTITY, contract_id, actor, metadata=meta, context=context)

    def verify_pdf(self, contract_id) -> IntegrityResult:
        result = self.pdfs.verify(contract_id)
        PDF_INTEGRITY_CHECKS.labels(result='valid' if result.is_valid else 'mismatch').inc()
        return result

    def get_pdf_info(self, contract_id) -> PDFInfo:
        return self.pdfs.info(contract_id)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get_contract(self, contract_id) -> Contract:
        return self._get(contract_id)

    def get_contract_events(self, contract_id) -> Dict[str, List[Dict[str, Any]]]:
        history = self.audit.history(contract_id)
        return {
            'contract_events': [item for item in history if item['source'] == 'event'],
            'audit_logs': [item for item in history if item['source'] == 'audit'],
            'history': history,
        }

    def get_contract_stats(self) -> Dict[str, int]:
        counts = {status: 0 for status, _ in Contract.STATUS_CHOICES}
        for row in Contract.objects.values('status').annotate(total=Count('id')):
            counts[row['status']] = row['total']
        counts['total'] = sum(counts.values())
        return counts
