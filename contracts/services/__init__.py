from contracts.services.audit_trail import AuditTrail, RequestContext
from contracts.services.orchestrator import ContractOrchestrator, SendResult
from contracts.services.pdf_integrity import IntegrityResult, PDFArtifact, PDFInfo, PDFIntegrityService
from contracts.services.signing_tokens import IssuedToken, SigningTokenService

__all__ = [
    'AuditTrail',
    'ContractOrchestrator',
    'IntegrityResult',
    'IssuedToken',
    'PDFArtifact',
    'PDFInfo',
    'PDFIntegrityService',
    'RequestContext',
    'SendResult',
    'SigningTokenService',
]
