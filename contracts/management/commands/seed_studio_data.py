"""
Seed data for the contract lifecycle

Creates:
- A sample photography client
- An active wedding photography agreement template
"""
from django.core.management.base import BaseCommand

from contracts.models import Client, ContractTemplate


WEDDING_AGREEMENT = '''WEDDING PHOTOGRAPHY AGREEMENT

This agreement is made on {{date}} between {{studio_name}} ("Photographer") and
{{client.name}} ("Client"), reachable at {{client.email}}.

1. EVENT
The Photographer will cover the event on {{event.date}} at {{event.venue}}
for {{event.hours}} hours of continuous coverage.

2. FEES
The total fee is {{fees.total}}. A non-refundable retainer of {{fees.retainer}}
is due on signing; the balance is due 14 days before the event.

3. DELIVERABLES
The Client will receive an online gallery of edited images within
{{delivery.weeks}} weeks of the event.

4. CANCELLATION
If the Client cancels, the retainer is kept by the Photographer. If the
Photographer cannot attend, all payments are refunded in full.

Signed electronically by the Client.'''


class Command(BaseCommand):
    help = 'Seed a sample client and contract template'

    def add_arguments(self, parser):
        parser.add_argument('--email', default='client@example.com', help='Email address of the sample client')

    def handle(self, *args, **options):
        self.stdout.write('Creating sample client...')
        client, created = Client.objects.get_or_create(
            email=options['email'],
            defaults={'name': 'Sample Client', 'phone': '+1 555 0100'},
        )
        self.stdout.write(f"  {'created' if created else 'exists'}: {client}")

        self.stdout.write('Creating contract templates...')
        template, created = ContractTemplate.objects.get_or_create(
            name='Wedding Photography Agreement',
            defaults={'content': WEDDING_AGREEMENT, 'created_by': 'seed'},
        )
        self.stdout.write(f"  {'created' if created else 'exists'}: {template}")

        self.stdout.write(self.style.SUCCESS(
            f"Seed complete. Generate a contract with template_id={template.id} client_id={client.id}"
        ))
