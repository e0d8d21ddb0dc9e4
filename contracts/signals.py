"""
Lifecycle signals, sent only after the transition's transaction has committed.

Keyword arguments are plain JSON-friendly values so receivers can hand them
straight to Celery.
"""
from django.dispatch import Signal

# contract_id, signing_url, expires_at, otp, actor
contract_sent = Signal()

# contract_id, signing_url, expires_at, otp, actor
contract_resent = Signal()

# contract_id, signer_email
contract_signed = Signal()

# contract_id, reason
contract_declined = Signal()
