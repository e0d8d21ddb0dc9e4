from django.test import RequestFactory

from contracts.exceptions import ContractNotFound, DeletionNotAllowed
from contracts.models import AuditLog, Contract, ContractEvent, SigningToken
from contracts.services.audit_trail import AuditTrail, RequestContext
from contracts.services.storage import LocalArtifactStorage

from .base import StudioTestCase


class AppendOnlyTests(StudioTestCase):
    def setUp(self):
        super().setUp()
        self.contract = self.make_contract()
        self.event = AuditTrail().record_event(self.contract.id, ContractEvent.VIEWED, {'note': 'first'})

    def test_event_rows_cannot_change(self):
        self.event.metadata = {'note': 'edited'}
        with self.assertRaises(PermissionError):
            self.event.save()
        with self.assertRaises(PermissionError):
            self.event.delete()
        with self.assertRaises(PermissionError):
            ContractEvent.objects.filter(pk=self.event.pk).update(metadata={})
        with self.assertRaises(PermissionError):
            ContractEvent.objects.filter(pk=self.event.pk).delete()

    def test_audit_rows_cannot_change(self):
        entry = AuditLog.objects.filter(entity_id=self.contract.id).first()
        with self.assertRaises(PermissionError):
            entry.save()
        with self.assertRaises(PermissionError):
            AuditLog.objects.all().delete()


class HistoryTests(StudioTestCase):
    def test_history_merges_streams_newest_first(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        self.orchestrator.record_view(token)
        self.orchestrator.record_signature(token, signer_name='Ada')

        payload = self.orchestrator.get_contract_events(contract.id)
        history = payload['history']

        stamps = [item['created_at'] for item in history]
        self.assertEqual(stamps, sorted(stamps, reverse=True))
        self.assertEqual({item['source'] for item in history}, {'event', 'audit'})
        self.assertEqual(len(history), len(payload['contract_events']) + len(payload['audit_logs']))
        event_types = {item['type'] for item in payload['contract_events']}
        self.assertTrue({'SENT', 'VIEWED', 'SIGNED'} <= event_types)
        audit_types = {item['type'] for item in payload['audit_logs']}
        self.assertTrue({'CREATE', 'SEND', 'SIGN'} <= audit_types)

    def test_signer_context_is_hashed(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        request = RequestFactory().get('/', HTTP_X_FORWARDED_FOR='203.0.113.9, 10.0.0.1', HTTP_USER_AGENT='Safari')
        context = RequestContext.from_request(request)

        self.orchestrator.record_view(token, context=context)

        self.assertEqual(context.ip_address, '203.0.113.9')
        event = ContractEvent.objects.get(contract_id=contract.id, type=ContractEvent.VIEWED)
        self.assertEqual(event.metadata['ip_hash'], context.hashed()['ip_hash'])
        self.assertNotIn('203.0.113.9', str(event.metadata))

    def test_audit_records_request_context(self):
        request = RequestFactory().post('/', REMOTE_ADDR='198.51.100.7', HTTP_USER_AGENT='curl/8.0')
        contract = self.orchestrator.generate_contract(
            self.template.id, 'Context', {}, client_id=self.client_record.id,
            actor='7', context=RequestContext.from_request(request),
        )

        entry = AuditLog.objects.get(entity_id=contract.id, action=AuditLog.CREATE)
        self.assertEqual(entry.ip_address, '198.51.100.7')
        self.assertEqual(entry.user_agent, 'curl/8.0')
        self.assertEqual(entry.actor_id, '7')


class DeleteContractTests(StudioTestCase):
    def test_delete_draft_keeps_trail(self):
        contract = self.make_contract()
        artifact = self.orchestrator.generate_pdf(contract.id)

        self.orchestrator.delete_contract(contract.id, 'studio-user')

        self.assertFalse(Contract.objects.filter(pk=contract.id).exists())
        self.assertIsNone(LocalArtifactStorage(self.artifact_root).get_bytes(artifact.path))
        entry = AuditLog.objects.get(entity_id=contract.id, action=AuditLog.DELETE)
        self.assertEqual(entry.changes['number'], contract.number)
        self.assertTrue(ContractEvent.objects.filter(contract_id=contract.id).exists())

    def test_delete_sent_revokes_link(self):
        contract = self.make_contract()
        self.send(contract)

        self.orchestrator.delete_contract(contract.id)

        self.assertFalse(
            SigningToken.objects.filter(contract_id=contract.id, state=SigningToken.STATE_ISSUED).exists()
        )

    def test_signed_contract_cannot_be_deleted(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        self.orchestrator.record_signature(token)

        with self.assertRaises(DeletionNotAllowed):
            self.orchestrator.delete_contract(contract.id)
        self.assertTrue(Contract.objects.filter(pk=contract.id).exists())

    def test_delete_unknown(self):
        with self.assertRaises(ContractNotFound):
            self.orchestrator.delete_contract('00000000-0000-0000-0000-000000000000')
