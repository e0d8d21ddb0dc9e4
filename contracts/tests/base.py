import base64
import shutil
import tempfile
from io import BytesIO

from django.core.cache import cache
from django.test import TestCase, TransactionTestCase, override_settings
from PIL import Image, ImageDraw

from contracts.models import Client, ContractTemplate
from contracts.services import ContractOrchestrator

TEMPLATE_BODY = (
    'Wedding photography agreement for {{client.name}}.\n'
    'Event: {{event.date}} at {{event.venue}}.\n'
    'Total fee: {{fees.total}}.'
)


class StudioFixtures:
    """Isolated artifact directory plus a client and an active template."""

    def setUp(self):
        super().setUp()
        self.artifact_root = tempfile.mkdtemp(prefix='contract-artifacts-')
        self.addCleanup(shutil.rmtree, self.artifact_root, ignore_errors=True)
        overrides = override_settings(
            CONTRACT_ARTIFACT_BACKEND='local',
            CONTRACT_ARTIFACT_ROOT=self.artifact_root,
            SIGNING_BASE_URL='https://studio.test',
            SIGNING_REQUIRE_OTP=False,
            STUDIO_NOTIFICATION_EMAIL='',
            EMAIL_BACKEND='django.core.mail.backends.locmem.EmailBackend',
        )
        overrides.enable()
        self.addCleanup(overrides.disable)
        cache.clear()

        self.client_record = Client.objects.create(name='Ada Lovelace', email='ada@example.com')
        self.template = ContractTemplate.objects.create(name='Wedding Agreement', content=TEMPLATE_BODY)
        self.orchestrator = ContractOrchestrator()

    def make_contract(self, client=None, **variables):
        return self.orchestrator.generate_contract(
            self.template.id,
            'Lovelace Wedding',
            variables or {'event': {'date': '2026-06-01', 'venue': 'Kew Gardens'}, 'fees': {'total': '$3,000'}},
            client_id=(client or self.client_record).id,
            actor='studio-user',
        )

    def send(self, contract, **kwargs):
        result = self.orchestrator.send_contract(contract.id, 'studio-user', **kwargs)
        return result, token_from_url(result.signing_url)


class StudioTestCase(StudioFixtures, TestCase):
    pass


class StudioTransactionTestCase(StudioFixtures, TransactionTestCase):
    pass


def token_from_url(url):
    return url.rsplit('/', 1)[-1]


def signature_data_url():
    img = Image.new('RGBA', (240, 80), (255, 255, 255, 0))
    ImageDraw.Draw(img).line([(10, 60), (80, 20), (150, 55), (230, 15)], fill=(20, 20, 60, 255), width=4)
    buffer = BytesIO()
    img.save(buffer, format='PNG')
    return 'data:image/png;base64,' + base64.b64encode(buffer.getvalue()).decode('ascii')
