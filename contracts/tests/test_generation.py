from django.test import SimpleTestCase
from django.utils import timezone

from contracts.exceptions import (
    ContractNotFound,
    ContractValidationError,
    EmptyTemplateContent,
    TemplateInactive,
    TemplateNotFound,
)
from contracts.models import AuditLog, Contract, ContractSequence, ContractTemplate
from contracts.services.orchestrator import format_contract_number
from contracts.services.rendering import PlaceholderRenderer

from .base import StudioTestCase


class PlaceholderRendererTests(SimpleTestCase):
    def test_dotted_paths_and_missing_values(self):
        out = PlaceholderRenderer().render(
            'Hi {{ client.name }}, see you at {{event.venue}} ({{event.missing}})',
            {'client': {'name': 'Ada'}, 'event': {'venue': 'Kew'}},
        )
        self.assertEqual(out, 'Hi Ada, see you at Kew ([event.missing])')

    def test_date_helpers_available(self):
        out = PlaceholderRenderer().render('{{year}}', {})
        self.assertEqual(out, str(timezone.localtime().year))

    def test_nested_object_is_not_rendered_inline(self):
        out = PlaceholderRenderer().render('{{event}}', {'event': {'venue': 'Kew'}})
        self.assertEqual(out, '[event]')


class GenerateContractTests(StudioTestCase):
    def test_generates_draft_with_snapshot(self):
        contract = self.make_contract()

        self.assertEqual(contract.status, Contract.STATUS_DRAFT)
        self.assertEqual(contract.template_id, self.template.id)
        self.assertEqual(contract.template_version, 1)
        self.assertIn('Ada Lovelace', contract.content)
        self.assertIn('Kew Gardens', contract.content)
        self.assertEqual(contract.variables['fees'], {'total': '$3,000'})
        self.assertEqual(contract.created_by, 'studio-user')
        self.assertTrue(
            AuditLog.objects.filter(action=AuditLog.CREATE, entity_id=contract.id, actor_id='studio-user').exists()
        )

    def test_numbers_are_sequential_per_year(self):
        year = timezone.now().year
        first = self.make_contract()
        second = self.make_contract()

        self.assertEqual(first.number, format_contract_number(year, 1))
        self.assertEqual(second.number, f'CONT-{year}-002')
        self.assertEqual(ContractSequence.objects.get(year=year).last_value, 2)

    def test_number_skips_values_already_taken(self):
        year = timezone.now().year
        Contract.objects.create(number=f'CONT-{year}-001', title='Imported', content='x')

        contract = self.make_contract()

        self.assertEqual(contract.number, f'CONT-{year}-002')

    def test_template_edit_bumps_version_without_touching_contracts(self):
        contract = self.make_contract()
        self.template.content = self.template.content + '\nNew clause.'
        self.template.save()
        self.template.refresh_from_db()

        self.assertEqual(self.template.version, 2)
        contract.refresh_from_db()
        self.assertEqual(contract.template_version, 1)
        self.assertNotIn('New clause.', contract.content)

    def test_inactive_template_rejected(self):
        ContractTemplate.objects.filter(pk=self.template.pk).update(is_active=False)
        with self.assertRaises(TemplateInactive):
            self.make_contract()
        self.assertEqual(Contract.objects.count(), 0)

    def test_empty_template_rejected(self):
        empty = ContractTemplate.objects.create(name='Blank', content='   ')
        with self.assertRaises(EmptyTemplateContent):
            self.orchestrator.generate_contract(empty.id, 'Blank', {})

    def test_unknown_template(self):
        with self.assertRaises(TemplateNotFound):
            self.orchestrator.generate_contract('00000000-0000-0000-0000-000000000000', 'Nope', {})

    def test_malformed_ids_are_typed_errors(self):
        with self.assertRaises(TemplateNotFound):
            self.orchestrator.generate_contract('not-a-uuid', 'Nope', {})
        with self.assertRaises(ContractValidationError) as ctx:
            self.orchestrator.generate_contract(self.template.id, 'Nope', {}, client_id='not-a-uuid')
        self.assertEqual(str(ctx.exception.detail), 'Client not found')
        with self.assertRaises(ContractNotFound):
            self.orchestrator.get_contract('not-a-uuid')
        self.assertFalse(Contract.objects.exists())

    def test_stats_count_by_status(self):
        self.make_contract()
        other = self.make_contract()
        self.orchestrator.cancel_contract(other.id, 'client changed plans', 'studio-user')

        stats = self.orchestrator.get_contract_stats()

        self.assertEqual(stats['draft'], 1)
        self.assertEqual(stats['cancelled'], 1)
        self.assertEqual(stats['total'], 2)
