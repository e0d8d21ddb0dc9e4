"""
Single-use magic link tokens for contract signing, with an optional OTP.

Raw tokens and OTP codes are returned to the caller once and never stored;
the database only holds their SHA-256 digests.
"""
from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from contracts.exceptions import (
    ContractNotFound,
    OTPMismatch,
    OTPRequired,
    TokenAlreadyUsed,
    TokenExpired,
    TokenNotFound,
)
from contracts.models import Contract, SigningToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    token_id: object
    contract_id: object
    token: str
    url: str
    expires_at: datetime
    otp: Optional[str] = None


def hash_secret(value: str) -> str:
    return hashlib.sha256((value or '').encode('utf-8')).hexdigest()


class SigningTokenService:
    """Issues, validates, consumes and revokes signing tokens."""

    TOKEN_BYTES = 32
    OTP_LENGTH = 6

    def __init__(
        self,
        *,
        ttl_hours: Optional[int] = None,
        require_otp: Optional[bool] = None,
        max_otp_attempts: Optional[int] = None,
        base_url: Optional[str] = None,
    ):
        self.ttl_hours = int(ttl_hours if ttl_hours is not None else getattr(settings, 'SIGNING_TOKEN_TTL_HOURS', 72))
        self.require_otp = bool(require_otp if require_otp is not None else getattr(settings, 'SIGNING_REQUIRE_OTP', False))
        self.max_otp_attempts = int(
            max_otp_attempts if max_otp_attempts is not None else getattr(settings, 'SIGNING_OTP_MAX_ATTEMPTS', 5)
        )
        self.base_url = (base_url or getattr(settings, 'SIGNING_BASE_URL', '') or 'http://localhost:3000').rstrip('/')

    @classmethod
    def generate_token(cls) -> str:
        return secrets.token_urlsafe(cls.TOKEN_BYTES)

    @classmethod
    def generate_otp(cls) -> str:
        return ''.join(secrets.choice('0123456789') for _ in range(cls.OTP_LENGTH))

    def build_signing_url(self, token: str) -> str:
        return f"{self.base_url}/contract/sign/{token}"

    def issue(self, contract_id, *, ttl_hours: Optional[int] = None, require_otp: Optional[bool] = None) -> IssuedToken:
        """Persist a new ISSUED token.

        Fails with IntegrityError if the contract already has an ISSUED token;
        use ``rotate`` to replace one.
        """
        ttl = int(ttl_hours if ttl_hours is not None else self.ttl_hours)
        needs_otp = self.require_otp if require_otp is None else bool(require_otp)

        token = self.generate_token()
        otp = self.generate_otp() if needs_otp else None
        expires_at = timezone.now() + timedelta(hours=ttl)

        row = SigningToken.objects.create(
            contract_id=contract_id,
            token_hash=hash_secret(token),
            expires_at=expires_at,
            require_otp=needs_otp,
            otp_hash=hash_secret(otp) if otp else '',
        )
        logger.info(f"Signing token {row.id} issued for contract {contract_id} (otp={needs_otp}, ttl={ttl}h)")
        return IssuedToken(
            token_id=row.id,
            contract_id=contract_id,
            token=token,
            url=self.build_signing_url(token),
            expires_at=expires_at,
            otp=otp,
        )

    def revoke_all_active(self, contract_id) -> int:
        revoked = SigningToken.objects.filter(
            contract_id=contract_id,
            state=SigningToken.STATE_ISSUED,
        ).update(state=SigningToken.STATE_REVOKED, revoked_at=timezone.now())
        if revoked:
            logger.info(f"Revoked {revoked} active signing token(s) for contract {contract_id}")
        return revoked

    def rotate(self, contract_id, *, ttl_hours: Optional[int] = None, require_otp: Optional[bool] = None) -> IssuedToken:
        """Revoke whatever is active and issue a replacement as one unit."""
        with transaction.atomic():
            # Serializes concurrent rotations for the same contract.
            locked = Contract.objects.select_for_update().filter(pk=contract_id).values_list('pk', flat=True).first()
            if locked is None:
                raise ContractNotFound()
            self.revoke_all_active(contract_id)
            return self.issue(contract_id, ttl_hours=ttl_hours, require_otp=require_otp)

    def _check_usable(self, row: Optional[SigningToken]) -> SigningToken:
        if row is None:
            raise TokenNotFound()
        if row.is_expired:
            raise TokenExpired()
        if row.state != SigningToken.STATE_ISSUED:
            raise TokenAlreadyUsed()
        return row

    def validate(self, token: str) -> SigningToken:
        """Check a token without consuming it."""
        row = SigningToken.objects.filter(token_hash=hash_secret(token)).first()
        return self._check_usable(row)

    def verify_and_consume(self, token: str, otp: Optional[str] = None):
        """Move the token ISSUED -> CONSUMED and return its contract id.

        Run this inside the caller's transaction so consumption commits or
        rolls back together with the status change it authorizes. On
        OTPMismatch the caller must call ``register_failed_otp`` after its
        transaction has rolled back.
        """
        with transaction.atomic():
            row = self._check_usable(
                SigningToken.objects.select_for_update().filter(token_hash=hash_secret(token)).first()
            )

            if row.require_otp:
                if not otp:
                    raise OTPRequired()
                if not secrets.compare_digest(hash_secret(str(otp).strip()), row.otp_hash):
                    raise OTPMismatch(
                        token_id=row.id,
                        attempts_left=max(0, self.max_otp_attempts - row.failed_otp_attempts - 1),
                    )

            consumed = SigningToken.objects.filter(
                pk=row.pk,
                state=SigningToken.STATE_ISSUED,
            ).update(state=SigningToken.STATE_CONSUMED, consumed_at=timezone.now())
            if consumed != 1:
                raise TokenAlreadyUsed()

        logger.info(f"Signing token {row.id} consumed for contract {row.contract_id}")
        return row.contract_id

    def register_failed_otp(self, token_id) -> int:
        """Count a wrong OTP; revoke the token once the limit is reached.

        Returns the number of attempts left.
        """
        with transaction.atomic():
            qs = SigningToken.objects.select_for_update().filter(pk=token_id, state=SigningToken.STATE_ISSUED)
            qs.update(failed_otp_attempts=F('failed_otp_attempts') + 1)
            attempts = qs.values_list('failed_otp_attempts', flat=True).first()
            if attempts is None:
                return 0
            if attempts >= self.max_otp_attempts:
                qs.update(state=SigningToken.STATE_REVOKED, revoked_at=timezone.now())
                logger.warning(f"Signing token {token_id} revoked after {attempts} failed OTP attempts")
                return 0
        return self.max_otp_attempts - attempts
