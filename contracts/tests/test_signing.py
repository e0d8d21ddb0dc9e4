import os
from datetime import timedelta
from unittest import mock

from django.utils import timezone

from contracts.exceptions import (
    InvalidTransition,
    MissingClientContact,
    OTPMismatch,
    OTPRequired,
    SignerMismatch,
    TermsNotAccepted,
    TokenAlreadyUsed,
    TokenExpired,
    TokenNotFound,
)
from contracts.models import AuditLog, Client, Contract, ContractEvent, SigningToken
from contracts.services.pdf_integrity import sha256_hex
from contracts.services.signing_tokens import SigningTokenService, hash_secret
from contracts.services.storage import LocalArtifactStorage

from .base import StudioTestCase, signature_data_url, token_from_url


class SendContractTests(StudioTestCase):
    def test_send_issues_link_and_generates_pdf(self):
        contract = self.make_contract()

        result, token = self.send(contract)

        contract.refresh_from_db()
        self.assertEqual(contract.status, Contract.STATUS_SENT)
        self.assertIsNotNone(contract.sent_at)
        self.assertTrue(contract.pdf_path.startswith(f'contracts/{contract.id}/'))
        self.assertEqual(len(contract.pdf_hash), 64)
        self.assertTrue(result.signing_url.startswith('https://studio.test/contract/sign/'))
        self.assertFalse(result.requires_otp)

        row = SigningToken.objects.get(contract_id=contract.id)
        self.assertEqual(row.state, SigningToken.STATE_ISSUED)
        # Only the digest is persisted.
        self.assertEqual(row.token_hash, hash_secret(token))
        self.assertNotEqual(row.token_hash, token)

        self.assertTrue(ContractEvent.objects.filter(contract_id=contract.id, type=ContractEvent.SENT).exists())
        self.assertTrue(AuditLog.objects.filter(entity_id=contract.id, action=AuditLog.SEND).exists())

    def test_ttl_controls_expiry(self):
        contract = self.make_contract()
        before = timezone.now()

        result, _ = self.send(contract, ttl_hours=2)

        self.assertLessEqual(result.expires_at, before + timedelta(hours=2, seconds=5))
        self.assertGreater(result.expires_at, before + timedelta(hours=1))

    def test_send_twice_is_rejected_and_state_unchanged(self):
        contract = self.make_contract()
        self.send(contract)

        with self.assertRaises(InvalidTransition) as ctx:
            self.send(contract)

        self.assertEqual(str(ctx.exception.detail), 'Only draft contracts can be sent')
        self.assertEqual(SigningToken.objects.filter(contract_id=contract.id).count(), 1)
        self.assertEqual(ContractEvent.objects.filter(contract_id=contract.id, type=ContractEvent.SENT).count(), 1)

    def test_send_without_client_email_fails(self):
        nobody = Client.objects.create(name='No Email')
        contract = self.make_contract(client=nobody)

        with self.assertRaises(MissingClientContact) as ctx:
            self.send(contract)

        self.assertEqual(str(ctx.exception.detail), 'Contract must have a client with valid email')
        contract.refresh_from_db()
        self.assertEqual(contract.status, Contract.STATUS_DRAFT)
        self.assertFalse(SigningToken.objects.filter(contract_id=contract.id).exists())

    def test_send_with_invalid_client_email_fails(self):
        broken = Client.objects.create(name='Typo', email='not-an-email')
        contract = self.make_contract(client=broken)

        with self.assertRaises(MissingClientContact):
            self.send(contract)

    def test_send_keeps_existing_pdf(self):
        contract = self.make_contract()
        artifact = self.orchestrator.generate_pdf(contract.id, 'studio-user')

        self.send(contract)

        contract.refresh_from_db()
        self.assertEqual(contract.pdf_hash, artifact.hash)


class ResendContractTests(StudioTestCase):
    def test_resend_rotates_token(self):
        contract = self.make_contract()
        _, old_token = self.send(contract)

        result = self.orchestrator.resend_contract(contract.id, 'studio-user')
        new_token = token_from_url(result.signing_url)

        self.assertNotEqual(new_token, old_token)
        self.assertEqual(
            SigningToken.objects.filter(contract_id=contract.id, state=SigningToken.STATE_ISSUED).count(), 1
        )
        with self.assertRaises(TokenAlreadyUsed):
            self.orchestrator.record_signature(old_token)

        signed = self.orchestrator.record_signature(new_token, signer_name='Ada')
        self.assertEqual(signed.status, Contract.STATUS_SIGNED)
        self.assertTrue(
            AuditLog.objects.filter(entity_id=contract.id, action=AuditLog.RESEND_CONTRACT).exists()
        )
        self.assertTrue(ContractEvent.objects.filter(contract_id=contract.id, type=ContractEvent.RESENT).exists())

    def test_resend_draft_rejected(self):
        contract = self.make_contract()
        with self.assertRaises(InvalidTransition) as ctx:
            self.orchestrator.resend_contract(contract.id)
        self.assertEqual(str(ctx.exception.detail), 'Cannot resend a draft contract; send it first')

    def test_resend_voided_rejected(self):
        contract = self.make_contract()
        self.send(contract)
        self.orchestrator.void_contract(contract.id, 'wrong date', 'studio-user')

        with self.assertRaises(InvalidTransition) as ctx:
            self.orchestrator.resend_contract(contract.id)

        self.assertEqual(str(ctx.exception.detail), 'Cannot resend a voided or cancelled contract')
        self.assertFalse(
            SigningToken.objects.filter(contract_id=contract.id, state=SigningToken.STATE_ISSUED).exists()
        )


    def _assert_resend_rejected(self, contract):
        tokens_before = SigningToken.objects.filter(contract_id=contract.id).count()

        with self.assertRaises(InvalidTransition):
            self.orchestrator.resend_contract(contract.id)

        self.assertEqual(SigningToken.objects.filter(contract_id=contract.id).count(), tokens_before)
        self.assertFalse(
            SigningToken.objects.filter(contract_id=contract.id, state=SigningToken.STATE_ISSUED).exists()
        )
        self.assertFalse(ContractEvent.objects.filter(contract_id=contract.id, type=ContractEvent.RESENT).exists())

    def test_resend_signed_rejected(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        self.orchestrator.record_signature(token)

        self._assert_resend_rejected(contract)

    def test_resend_declined_rejected(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        self.orchestrator.record_decline(token, reason='Budget')

        self._assert_resend_rejected(contract)

    def test_resend_cancelled_rejected(self):
        contract = self.make_contract()
        self.send(contract)
        self.orchestrator.cancel_contract(contract.id, 'Client moved abroad', 'studio-user')

        self._assert_resend_rejected(contract)


class SignAndDeclineTests(StudioTestCase):
    def test_view_does_not_consume(self):
        contract = self.make_contract()
        _, token = self.send(contract)

        viewed = self.orchestrator.record_view(token)
        self.orchestrator.record_view(token)

        self.assertEqual(viewed.id, contract.id)
        self.assertFalse(viewed.requires_otp)
        self.assertEqual(
            ContractEvent.objects.filter(contract_id=contract.id, type=ContractEvent.VIEWED).count(), 2
        )
        self.assertEqual(SigningToken.objects.get(contract_id=contract.id).state, SigningToken.STATE_ISSUED)

    def test_sign_consumes_token(self):
        contract = self.make_contract()
        _, token = self.send(contract)

        signed = self.orchestrator.record_signature(token, signer_name='Ada', signer_email='ada@example.com')

        self.assertEqual(signed.status, Contract.STATUS_SIGNED)
        self.assertIsNotNone(signed.signed_at)
        self.assertEqual(SigningToken.objects.get(contract_id=contract.id).state, SigningToken.STATE_CONSUMED)
        event = ContractEvent.objects.get(contract_id=contract.id, type=ContractEvent.SIGNED)
        self.assertEqual(event.metadata['signer_name'], 'Ada')
        audit = AuditLog.objects.get(entity_id=contract.id, action=AuditLog.SIGN)
        self.assertEqual(audit.actor_id, 'ada@example.com')

    def test_replayed_token_rejected(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        self.orchestrator.record_signature(token)

        with self.assertRaises(TokenAlreadyUsed):
            self.orchestrator.record_signature(token)
        with self.assertRaises(TokenAlreadyUsed):
            self.orchestrator.record_decline(token, reason='changed my mind')

        self.assertEqual(Contract.objects.get(pk=contract.id).status, Contract.STATUS_SIGNED)

    def test_decline_records_reason(self):
        contract = self.make_contract()
        _, token = self.send(contract)

        declined = self.orchestrator.record_decline(token, reason='  Found another photographer ')

        self.assertEqual(declined.status, Contract.STATUS_DECLINED)
        self.assertEqual(declined.decline_reason, 'Found another photographer')
        self.assertIsNotNone(declined.declined_at)
        self.assertTrue(AuditLog.objects.filter(entity_id=contract.id, action=AuditLog.DECLINE).exists())

    def test_unknown_token(self):
        with self.assertRaises(TokenNotFound):
            self.orchestrator.record_view('does-not-exist')
        with self.assertRaises(TokenNotFound):
            self.orchestrator.record_signature('does-not-exist')

    def test_expired_token(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        SigningToken.objects.filter(contract_id=contract.id).update(expires_at=timezone.now() - timedelta(minutes=1))

        with self.assertRaises(TokenExpired):
            self.orchestrator.record_view(token)
        with self.assertRaises(TokenExpired):
            self.orchestrator.record_signature(token)

        self.assertEqual(Contract.objects.get(pk=contract.id).status, Contract.STATUS_SENT)

    def test_void_revokes_link(self):
        contract = self.make_contract()
        _, token = self.send(contract)

        voided = self.orchestrator.void_contract(contract.id, 'duplicate', 'studio-user')

        self.assertEqual(voided.status, Contract.STATUS_VOIDED)
        self.assertEqual(voided.voided_reason, 'duplicate')
        with self.assertRaises(TokenAlreadyUsed):
            self.orchestrator.record_signature(token)

    def test_cancel_signed_contract_rejected(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        self.orchestrator.record_signature(token)

        with self.assertRaises(InvalidTransition):
            self.orchestrator.cancel_contract(contract.id, 'too late')
        with self.assertRaises(InvalidTransition):
            self.orchestrator.void_contract(contract.id, 'too late')


@mock.patch.object(SigningTokenService, 'generate_otp', return_value='482913')
class OTPTests(StudioTestCase):
    def test_otp_required_when_enabled(self, _otp):
        contract = self.make_contract()
        result, token = self.send(contract, require_otp=True)

        self.assertTrue(result.requires_otp)
        self.assertTrue(self.orchestrator.record_view(token).requires_otp)
        with self.assertRaises(OTPRequired):
            self.orchestrator.record_signature(token)

        signed = self.orchestrator.record_signature(token, otp='482913')
        self.assertEqual(signed.status, Contract.STATUS_SIGNED)

    def test_otp_is_stored_hashed(self, _otp):
        contract = self.make_contract()
        self.send(contract, require_otp=True)

        row = SigningToken.objects.get(contract_id=contract.id)
        self.assertEqual(row.otp_hash, hash_secret('482913'))

    def test_wrong_otp_counts_attempts(self, _otp):
        contract = self.make_contract()
        _, token = self.send(contract, require_otp=True)

        with self.assertRaises(OTPMismatch) as ctx:
            self.orchestrator.record_signature(token, otp='000000')

        self.assertEqual(ctx.exception.attempts_left, 4)
        row = SigningToken.objects.get(contract_id=contract.id)
        self.assertEqual(row.failed_otp_attempts, 1)
        self.assertEqual(row.state, SigningToken.STATE_ISSUED)
        self.assertEqual(Contract.objects.get(pk=contract.id).status, Contract.STATUS_SENT)

    def test_token_revoked_after_max_failures(self, _otp):
        contract = self.make_contract()
        _, token = self.send(contract, require_otp=True)

        for _ in range(5):
            with self.assertRaises(OTPMismatch):
                self.orchestrator.record_signature(token, otp='111111')

        row = SigningToken.objects.get(contract_id=contract.id)
        self.assertEqual(row.state, SigningToken.STATE_REVOKED)
        with self.assertRaises(TokenAlreadyUsed):
            self.orchestrator.record_signature(token, otp='482913')
        self.assertEqual(Contract.objects.get(pk=contract.id).status, Contract.STATUS_SENT)


class SignatureCaptureTests(StudioTestCase):
    def test_signature_is_stamped_onto_verified_pdf(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        unsigned = Contract.objects.get(pk=contract.id)

        signed = self.orchestrator.record_signature(
            token,
            signer_name='Ada Lovelace',
            signer_email='ADA@example.com',
            signature_data_url=signature_data_url(),
        )

        self.assertEqual(signed.status, Contract.STATUS_SIGNED)
        self.assertNotEqual(signed.pdf_path, unsigned.pdf_path)
        self.assertNotEqual(signed.pdf_hash, unsigned.pdf_hash)
        data = LocalArtifactStorage(self.artifact_root).get_bytes(signed.pdf_path)
        self.assertEqual(sha256_hex(data), signed.pdf_hash)
        self.assertTrue(self.orchestrator.verify_pdf(contract.id).is_valid)
        self.assertEqual(self.orchestrator.get_pdf_info(contract.id).page_count, 1)

        event = ContractEvent.objects.get(contract_id=contract.id, type=ContractEvent.SIGNED)
        self.assertTrue(event.metadata['signature_captured'])
        self.assertEqual(event.metadata['pdf_hash'], signed.pdf_hash)

    def test_signer_email_must_match_client(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        before = Contract.objects.get(pk=contract.id)

        with self.assertRaises(SignerMismatch):
            self.orchestrator.record_signature(
                token, signer_email='eve@example.com', signature_data_url=signature_data_url(),
            )

        after = Contract.objects.get(pk=contract.id)
        self.assertEqual(after.status, Contract.STATUS_SENT)
        self.assertEqual(after.pdf_hash, before.pdf_hash)
        self.assertEqual(SigningToken.objects.get(contract_id=contract.id).state, SigningToken.STATE_ISSUED)

    def test_terms_must_be_accepted(self):
        contract = self.make_contract()
        _, token = self.send(contract)

        with self.assertRaises(TermsNotAccepted):
            self.orchestrator.record_signature(token, agreed_to_terms=False)

        self.assertEqual(Contract.objects.get(pk=contract.id).status, Contract.STATUS_SENT)

    @mock.patch.object(SigningTokenService, 'generate_otp', return_value='482913')
    def test_stamped_copy_discarded_when_signing_fails(self, _otp):
        contract = self.make_contract()
        _, token = self.send(contract, require_otp=True)
        before = Contract.objects.get(pk=contract.id)

        with self.assertRaises(OTPMismatch):
            self.orchestrator.record_signature(token, otp='000000', signature_data_url=signature_data_url())

        after = Contract.objects.get(pk=contract.id)
        self.assertEqual(after.pdf_path, before.pdf_path)
        self.assertTrue(self.orchestrator.verify_pdf(contract.id).is_valid)
        stored = os.listdir(os.path.join(self.artifact_root, 'contracts', str(contract.id)))
        self.assertEqual(stored, [os.path.basename(before.pdf_path)])
