"""
Contract PDF generation and integrity verification.

The artifact is rendered with reportlab, hashed with SHA-256 and stored under a
content-addressed key. Rendering and upload run outside any database
transaction; only the final {path, hash, generated_at} write touches the
contract row. A per-contract lock keeps two generations of the same contract
from interleaving. Signing stamps the client's signature image onto the
stored artifact and writes the result under a new key.
"""
from __future__ import annotations

import base64
import hashlib
import logging
import textwrap
import threading
import weakref
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone
from PIL import Image
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from contracts.exceptions import (
    ArtifactIOError,
    ArtifactNotFound,
    ContractNotFound,
    EmptyContent,
    InvalidSignature,
)
from contracts.models import Contract
from contracts.services.storage import ArtifactStorage, artifact_key, get_artifact_storage

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_contract_locks = weakref.WeakValueDictionary()


def contract_lock(contract_id):
    """Process-local re-entrant lock for one contract.

    Entries disappear once no caller holds a reference to the lock.
    """
    key = str(contract_id)
    with _locks_guard:
        lock = _contract_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _contract_locks[key] = lock
        return lock


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data or b'').hexdigest()


@dataclass(frozen=True)
class PDFArtifact:
    contract_id: object
    path: str
    hash: str
    size: int
    generated_at: datetime


@dataclass(frozen=True)
class IntegrityResult:
    contract_id: object
    is_valid: bool
    expected_hash: str
    actual_hash: Optional[str]
    pdf_path: str

    def as_dict(self):
        return {
            'contract_id': str(self.contract_id),
            'is_valid': self.is_valid,
            'expected_hash': self.expected_hash,
            'actual_hash': self.actual_hash,
            'pdf_path': self.pdf_path,
        }


@dataclass(frozen=True)
class PDFInfo:
    contract_id: object
    path: str
    hash: str
    size: Optional[int]
    page_count: Optional[int]
    generated_at: Optional[datetime]

    def as_dict(self):
        return {
            'contract_id': str(self.contract_id),
            'pdf_path': self.path,
            'pdf_hash': self.hash,
            'file_size': self.size,
            'page_count': self.page_count,
            'generated_at': self.generated_at.isoformat() if self.generated_at else None,
        }


def render_contract_pdf(*, title: str, number: str, content: str) -> bytes:
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=LETTER)
    c.setTitle(f"{number} {title}".strip())
    width, height = LETTER
    left = 0.75 * inch
    top = height - 0.75 * inch
    bottom = 0.75 * inch

    c.setFont('Times-Bold', 14)
    c.drawString(left, top, (title or 'Contract')[:90])
    c.setFont('Times-Roman', 9)
    c.drawString(left, top - 16, number or '')

    text_obj = c.beginText(left, top - 40)
    text_obj.setFont('Times-Roman', 11)

    max_chars = 110
    for line in (content or '').splitlines():
        wrapped_lines = (
            textwrap.wrap(
                line,
                width=max_chars,
                replace_whitespace=False,
                drop_whitespace=False,
            )
            or ['']
        )
        for wl in wrapped_lines:
            if text_obj.getY() <= bottom:
                c.drawText(text_obj)
                c.showPage()
                text_obj = c.beginText(left, top)
                text_obj.setFont('Times-Roman', 11)
            text_obj.textLine(wl)

    c.drawText(text_obj)
    c.save()
    buffer.seek(0)
    return buffer.read()


def parse_signature_data_url(data_url: str) -> bytes:
    """Decode a ``data:image/...;base64,`` signature and normalize it to PNG."""
    raw = str(data_url or '').strip()
    if not raw.startswith('data:image'):
        raise InvalidSignature()
    header, _, b64 = raw.partition(',')
    if 'base64' not in header.lower() or not b64:
        raise InvalidSignature()
    try:
        img = Image.open(BytesIO(base64.b64decode(b64)))
        out = BytesIO()
        img.save(out, format='PNG')
    except (ValueError, OSError):
        raise InvalidSignature()
    return out.getvalue()


def stamp_signature_on_pdf(base_pdf: bytes, *, signature_png: bytes, caption: str) -> bytes:
    # Signature box sits near the bottom-left corner of the last page.
    reader = PdfReader(BytesIO(base_pdf))
    writer = PdfWriter()
    last = len(reader.pages) - 1

    for idx, page in enumerate(reader.pages):
        if idx == last:
            page_w = float(page.mediabox.width)
            page_h = float(page.mediabox.height)
            box_x = page_w * 0.12
            box_w = page_w * 0.35
            box_h = page_h * 0.08
            box_y = page_h * 0.06

            img = Image.open(BytesIO(signature_png))
            iw, ih = img.size
            if iw <= 0 or ih <= 0:
                raise InvalidSignature()

            scale = min(box_w / float(iw), box_h / float(ih))
            draw_w = float(iw) * scale
            draw_h = float(ih) * scale

            overlay_buf = BytesIO()
            c = canvas.Canvas(overlay_buf, pagesize=(page_w, page_h))
            c.drawImage(ImageReader(img), box_x, box_y, width=draw_w, height=draw_h, mask='auto')
            c.setFont('Times-Roman', 8)
            c.drawString(box_x, box_y - 10, caption[:120])
            c.save()
            overlay_buf.seek(0)

            page.merge_page(PdfReader(overlay_buf).pages[0])

        writer.add_page(page)

    out = BytesIO()
    writer.write(out)
    return out.getvalue()


class PDFIntegrityService:
    def __init__(self, storage: Optional[ArtifactStorage] = None):
        self.storage = storage or get_artifact_storage()

    @staticmethod
    def _load(contract_id) -> Contract:
        try:
            return Contract.objects.get(pk=contract_id)
        except (Contract.DoesNotExist, ValueError, DjangoValidationError):
            raise ContractNotFound()

    def _store(self, contract: Contract, data: bytes) -> PDFArtifact:
        digest = sha256_hex(data)
        key = artifact_key(contract.id, digest)
        self.storage.put_bytes(
            key,
            data,
            content_type='application/pdf',
            metadata={'contract_id': str(contract.id), 'sha256': digest},
        )
        return PDFArtifact(
            contract_id=contract.id,
            path=key,
            hash=digest,
            size=len(data),
            generated_at=timezone.now(),
        )

    def _write(self, contract: Contract, content: Optional[str]) -> PDFArtifact:
        text = contract.content if content is None else content
        if not (text or '').strip():
            raise EmptyContent()

        data = render_contract_pdf(title=contract.title, number=contract.number, content=text)
        artifact = self._store(contract, data)
        Contract.objects.filter(pk=contract.pk).update(
            pdf_path=artifact.path,
            pdf_hash=artifact.hash,
            pdf_generated_at=artifact.generated_at,
        )
        logger.info(f"PDF generated for contract {contract.id}: key={artifact.path} sha256={artifact.hash}")
        return artifact

    def generate(self, contract_id, content: Optional[str] = None) -> PDFArtifact:
        """Render, store and record the artifact. ``content`` defaults to the contract text."""
        with contract_lock(contract_id):
            return self._write(self._load(contract_id), content)

    def ensure_generated(self, contract_id) -> Optional[PDFArtifact]:
        """Generate only if the contract has no artifact yet; returns None when one exists."""
        with contract_lock(contract_id):
            contract = self._load(contract_id)
            if contract.pdf_path and contract.pdf_hash:
                return None
            return self._write(contract, None)

    def regenerate(self, contract_id, content: Optional[str] = None) -> PDFArtifact:
        """Replace the artifact.

        The new bytes are stored and recorded before the previous key is
        removed; failing to delete the old one is logged, not raised.
        """
        with contract_lock(contract_id):
            contract = self._load(contract_id)
            previous = contract.pdf_path
            artifact = self._write(contract, content)
            if previous and previous != artifact.path:
                self.delete(previous)
            return artifact

    def stamp_signature(self, contract_id, *, signature_png: bytes, caption: str) -> PDFArtifact:
        """Store a signed copy of the current artifact under its own key.

        The contract row is not touched; the caller records the returned
        path and hash together with the status change. If the stored bytes
        are missing or fail the hash check the document is rendered again
        from the contract text.
        """
        with contract_lock(contract_id):
            contract = self._load(contract_id)
            base = self.storage.get_bytes(contract.pdf_path) if contract.pdf_path else None
            if base is not None and sha256_hex(base) != contract.pdf_hash:
                logger.warning(f"Stored PDF for contract {contract_id} failed the hash check; re-rendering for signature")
                base = None
            if base is None:
                if not (contract.content or '').strip():
                    raise EmptyContent()
                base = render_contract_pdf(title=contract.title, number=contract.number, content=contract.content)
            try:
                data = stamp_signature_on_pdf(base, signature_png=signature_png, caption=caption)
            except PdfReadError as e:
                raise ArtifactIOError(f'Stored PDF could not be read for signing: {e}')
            artifact = self._store(contract, data)
        logger.info(f"Signed PDF stored for contract {contract_id}: key={artifact.path} sha256={artifact.hash}")
        return artifact

    def verify(self, contract_id) -> IntegrityResult:
        """Recompute the stored artifact's hash and compare. Never raises on mismatch."""
        contract = self._load(contract_id)
        if not contract.pdf_path or not contract.pdf_hash:
            raise ArtifactNotFound('Contract has no PDF to verify')

        data = self.storage.get_bytes(contract.pdf_path)
        actual = sha256_hex(data) if data is not None else None
        is_valid = actual is not None and actual == contract.pdf_hash
        if not is_valid:
            logger.warning(
                f"PDF integrity mismatch for contract {contract_id}: expected={contract.pdf_hash} actual={actual}"
            )
        return IntegrityResult(
            contract_id=contract.id,
            is_valid=is_valid,
            expected_hash=contract.pdf_hash,
            actual_hash=actual,
            pdf_path=contract.pdf_path,
        )

    def info(self, contract_id) -> PDFInfo:
        contract = self._load(contract_id)
        if not contract.pdf_path:
            raise ArtifactNotFound()

        size = self.storage.size(contract.pdf_path)
        page_count = None
        if size:
            data = self.storage.get_bytes(contract.pdf_path)
            if data:
                try:
                    page_count = len(PdfReader(BytesIO(data)).pages)
                except PdfReadError as e:
                    logger.warning(f"Could not read page count for contract {contract_id}: {e}")

        return PDFInfo(
            contract_id=contract.id,
            path=contract.pdf_path,
            hash=contract.pdf_hash,
            size=size,
            page_count=page_count,
            generated_at=contract.pdf_generated_at,
        )

    def delete(self, pdf_path: str) -> bool:
        """Best-effort removal of an artifact; returns False if it could not be deleted."""
        if not pdf_path:
            return False
        try:
            self.storage.delete(pdf_path)
            return True
        except ArtifactIOError as e:
            logger.warning(f"Could not delete PDF {pdf_path}: {e}")
            return False
