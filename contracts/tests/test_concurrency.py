import threading
from unittest import mock

from django.db import DatabaseError, connection
from django.test import skipUnlessDBFeature

from contracts import lifecycle
from contracts.exceptions import ContractError, InvalidTransition, TokenAlreadyUsed
from contracts.models import Contract, ContractEvent, SigningToken
from contracts.services import ContractOrchestrator, SigningTokenService

from .base import StudioTestCase, StudioTransactionTestCase, signature_data_url


class LockOrderTests(StudioTestCase):
    def test_sign_locks_contract_before_token(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        order = []
        real_lock = ContractOrchestrator._lock_contract
        real_consume = SigningTokenService.verify_and_consume

        def lock_contract(contract_id):
            order.append('contract')
            return real_lock(contract_id)

        def consume(service, raw_token, otp=None):
            order.append('token')
            return real_consume(service, raw_token, otp)

        with mock.patch.object(ContractOrchestrator, '_lock_contract', staticmethod(lock_contract)), \
                mock.patch.object(SigningTokenService, 'verify_and_consume', consume):
            self.orchestrator.record_decline(token, reason='Budget')

        self.assertEqual(order, ['contract', 'token'])

    def test_void_between_lookup_and_sign(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        before = Contract.objects.get(pk=contract.id)
        real_validate = SigningTokenService.validate

        def validate_then_void(service, raw_token):
            row = real_validate(service, raw_token)
            ContractOrchestrator().void_contract(contract.id, 'Double booked', 'studio-user')
            return row

        with mock.patch.object(SigningTokenService, 'validate', validate_then_void):
            with self.assertRaises(TokenAlreadyUsed):
                self.orchestrator.record_signature(token, signature_data_url=signature_data_url())

        after = Contract.objects.get(pk=contract.id)
        self.assertEqual(after.status, Contract.STATUS_VOIDED)
        self.assertIsNone(after.signed_at)
        self.assertEqual(after.pdf_hash, before.pdf_hash)
        self.assertTrue(self.orchestrator.verify_pdf(contract.id).is_valid)
        self.assertFalse(ContractEvent.objects.filter(contract_id=contract.id, type=ContractEvent.SIGNED).exists())


class LostRaceTests(StudioTestCase):
    def test_stale_status_loses_to_terminal_winner(self):
        contract = self.make_contract()
        _, token = self.send(contract)
        self.orchestrator.record_signature(token)
        before = Contract.objects.get(pk=contract.id)
        stale = [Contract.STATUS_SENT, Contract.STATUS_SENT, Contract.STATUS_SIGNED]

        with mock.patch.object(ContractOrchestrator, '_current_status', side_effect=stale):
            with self.assertRaises(InvalidTransition):
                self.orchestrator.void_contract(contract.id, 'too late', 'studio-user')

        after = Contract.objects.get(pk=contract.id)
        self.assertEqual(after.status, Contract.STATUS_SIGNED)
        self.assertEqual(after.pdf_hash, before.pdf_hash)
        self.assertEqual(SigningToken.objects.get(contract_id=contract.id).state, SigningToken.STATE_CONSUMED)
        self.assertFalse(ContractEvent.objects.filter(contract_id=contract.id, type=ContractEvent.VOIDED).exists())

    def test_stale_status_reports_concurrent_change(self):
        contract = self.make_contract()
        self.send(contract)
        stale = [Contract.STATUS_DRAFT, Contract.STATUS_DRAFT, Contract.STATUS_SENT]

        with mock.patch.object(ContractOrchestrator, '_current_status', side_effect=stale):
            with self.assertRaises(InvalidTransition) as ctx:
                self.orchestrator.cancel_contract(contract.id, 'changed plans', 'studio-user')

        self.assertEqual(ctx.exception.current_status, Contract.STATUS_SENT)
        self.assertEqual(ctx.exception.action, lifecycle.CANCEL)
        self.assertIn('changed concurrently', str(ctx.exception.detail))
        self.assertEqual(Contract.objects.get(pk=contract.id).status, Contract.STATUS_SENT)
        self.assertEqual(
            SigningToken.objects.filter(contract_id=contract.id, state=SigningToken.STATE_ISSUED).count(), 1
        )


@skipUnlessDBFeature('has_select_for_update')
class ConcurrentLifecycleTests(StudioTransactionTestCase):
    """Real parallel transactions; needs a database with row locks."""

    def _race(self, *calls):
        barrier = threading.Barrier(len(calls))
        outcomes = [None] * len(calls)

        def run(index, call):
            try:
                barrier.wait()
                outcomes[index] = call()
            except Exception as e:
                outcomes[index] = e
            finally:
                connection.close()

        threads = [threading.Thread(target=run, args=(i, call)) for i, call in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return outcomes

    def test_void_and_sign_race_has_one_winner(self):
        contract = self.make_contract()
        _, token = self.send(contract)

        outcomes = self._race(
            lambda: ContractOrchestrator().void_contract(contract.id, 'Double booked', 'studio-user'),
            lambda: ContractOrchestrator().record_signature(token, signature_data_url=signature_data_url()),
        )

        self.assertFalse([o for o in outcomes if isinstance(o, DatabaseError)])
        winners = [o for o in outcomes if isinstance(o, Contract)]
        losers = [o for o in outcomes if isinstance(o, ContractError)]
        self.assertEqual((len(winners), len(losers)), (1, 1))
        final = Contract.objects.get(pk=contract.id)
        self.assertEqual(final.status, winners[0].status)
        self.assertTrue(self.orchestrator.verify_pdf(contract.id).is_valid)

    def test_token_is_consumed_at_most_once(self):
        contract = self.make_contract()
        _, token = self.send(contract)

        outcomes = self._race(
            lambda: ContractOrchestrator().record_signature(token),
            lambda: ContractOrchestrator().record_decline(token, reason='Budget'),
            lambda: ContractOrchestrator().record_signature(token),
        )

        winners = [o for o in outcomes if isinstance(o, Contract)]
        self.assertEqual(len(winners), 1)
        self.assertTrue(all(isinstance(o, (Contract, ContractError)) for o in outcomes))
        self.assertEqual(Contract.objects.get(pk=contract.id).status, winners[0].status)

    def test_concurrent_generation_numbers_are_unique(self):
        outcomes = self._race(*[self.make_contract for _ in range(4)])

        numbers = [o.number for o in outcomes]
        self.assertEqual(len(set(numbers)), 4)
