"""
Artifact storage for generated contract PDFs.

Keys are content addressed (``contracts/<contract_id>/<sha256>.pdf``) and never
derived from filesystem paths, so the same key works for the local backend and
for Cloudflare R2.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from contracts.exceptions import ArtifactIOError

logger = logging.getLogger(__name__)


def artifact_key(contract_id, sha256_hex: str) -> str:
    return f"contracts/{contract_id}/{sha256_hex}.pdf"


class ArtifactStorage(Protocol):
    def put_bytes(self, key: str, body: bytes, *, content_type: str = ..., metadata: Optional[Dict[str, str]] = ...) -> str: ...

    def get_bytes(self, key: str) -> Optional[bytes]: ...

    def delete(self, key: str) -> None: ...

    def size(self, key: str) -> Optional[int]: ...


class LocalArtifactStorage:
    """Stores artifacts below ``CONTRACT_ARTIFACT_ROOT`` on the local disk."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.CONTRACT_ARTIFACT_ROOT)

    def _path(self, key: str) -> Path:
        parts = [p for p in str(key).split('/') if p and p not in ('.', '..')]
        if not parts:
            raise ArtifactIOError('Artifact key is required')
        return self.root.joinpath(*parts)

    def put_bytes(self, key, body, *, content_type='application/pdf', metadata=None):
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + '.tmp')
            tmp.write_bytes(body or b'')
            tmp.replace(path)
        except OSError as e:
            raise ArtifactIOError(f"Failed to write artifact {key}: {e}")
        return str(key)

    def get_bytes(self, key):
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ArtifactIOError(f"Failed to read artifact {key}: {e}")

    def delete(self, key):
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise ArtifactIOError(f"Failed to delete artifact {key}: {e}")

    def size(self, key):
        try:
            return self._path(key).stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ArtifactIOError(f"Failed to stat artifact {key}: {e}")


class R2ArtifactStorage:
    """
    Stores artifacts in a Cloudflare R2 bucket (S3 compatible API)
    """

    def __init__(self):
        required = {
            'R2_ENDPOINT_URL': getattr(settings, 'R2_ENDPOINT_URL', ''),
            'R2_ACCESS_KEY_ID': getattr(settings, 'R2_ACCESS_KEY_ID', ''),
            'R2_SECRET_ACCESS_KEY': getattr(settings, 'R2_SECRET_ACCESS_KEY', ''),
            'R2_BUCKET_NAME': getattr(settings, 'R2_BUCKET_NAME', ''),
        }
        missing = [k for k, v in required.items() if not str(v or '').strip()]
        if missing:
            raise ArtifactIOError('Cloudflare R2 is not configured. Missing: ' + ', '.join(missing))

        self.client = boto3.client(
            's3',
            endpoint_url=settings.R2_ENDPOINT_URL,
            aws_access_key_id=settings.R2_ACCESS_KEY_ID,
            aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
            config=Config(
                signature_version='s3v4',
                connect_timeout=int(getattr(settings, 'R2_CONNECT_TIMEOUT', 5) or 5),
                read_timeout=int(getattr(settings, 'R2_READ_TIMEOUT', 30) or 30),
                retries={'max_attempts': 3, 'mode': 'standard'},
            ),
            region_name='auto'
        )
        self.bucket_name = settings.R2_BUCKET_NAME

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        code = str(error.response.get('Error', {}).get('Code', ''))
        return code in ('404', 'NoSuchKey', 'NotFound')

    def put_bytes(self, key, body, *, content_type='application/pdf', metadata=None):
        md = {str(k): str(v) for k, v in (metadata or {}).items() if k and v is not None}
        try:
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=str(key),
                Body=body or b'',
                ContentType=content_type,
                Metadata=md,
            )
            return str(key)
        except (ClientError, BotoCoreError) as e:
            raise ArtifactIOError(f"Failed to upload artifact to R2: {str(e)}")

    def get_bytes(self, key):
        try:
            resp = self.client.get_object(Bucket=self.bucket_name, Key=str(key))
            body = resp.get('Body')
            return body.read() if body else b''
        except ClientError as e:
            if self._is_missing(e):
                return None
            raise ArtifactIOError(f"Failed to download artifact from R2: {str(e)}")
        except BotoCoreError as e:
            raise ArtifactIOError(f"Failed to download artifact from R2: {str(e)}")

    def delete(self, key):
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=str(key))
        except (ClientError, BotoCoreError) as e:
            raise ArtifactIOError(f"Failed to delete artifact from R2: {str(e)}")

    def size(self, key):
        try:
            resp = self.client.head_object(Bucket=self.bucket_name, Key=str(key))
            return int(resp.get('ContentLength') or 0)
        except ClientError as e:
            if self._is_missing(e):
                return None
            raise ArtifactIOError(f"Failed to stat artifact in R2: {str(e)}")


def get_artifact_storage() -> ArtifactStorage:
    backend = (getattr(settings, 'CONTRACT_ARTIFACT_BACKEND', 'local') or 'local').strip().lower()
    if backend == 'r2':
        return R2ArtifactStorage()
    if backend != 'local':
        logger.warning(f"Unknown CONTRACT_ARTIFACT_BACKEND={backend!r}; using local storage")
    return LocalArtifactStorage()
