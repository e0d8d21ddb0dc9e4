"""
Typed failures raised by the contract lifecycle services.

All of them are DRF ``APIException`` subclasses, so a view can let them
propagate and the route layer renders ``status_code`` + ``default_code``.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class ContractError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Contract operation failed.'
    default_code = 'contract_error'
    kind = 'Error'


# NotFound

class NotFoundError(ContractError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'
    kind = 'NotFound'


class ContractNotFound(NotFoundError):
    default_detail = 'Contract not found'
    default_code = 'contract_not_found'


class TemplateNotFound(NotFoundError):
    default_detail = 'Template not found'
    default_code = 'template_not_found'


class ArtifactNotFound(NotFoundError):
    default_detail = 'Contract has no PDF'
    default_code = 'artifact_not_found'


# InvalidTransition

class InvalidTransition(ContractError):
    default_detail = 'Transition not allowed for the current status'
    default_code = 'invalid_transition'
    kind = 'InvalidTransition'

    def __init__(self, detail=None, *, current_status=None, action=None):
        super().__init__(detail)
        self.current_status = current_status
        self.action = action


# ValidationError

class ContractValidationError(ContractError):
    default_detail = 'Invalid contract data'
    default_code = 'validation_error'
    kind = 'ValidationError'


class MissingClientContact(ContractValidationError):
    default_detail = 'Contract must have a client with valid email'
    default_code = 'missing_client_contact'


class TemplateInactive(ContractValidationError):
    default_detail = 'Template is not active'
    default_code = 'template_inactive'


class EmptyTemplateContent(ContractValidationError):
    default_detail = 'Template has no content. Please add content to the template before generating a contract.'
    default_code = 'empty_template_content'


class EmptyContent(ContractValidationError):
    default_detail = 'Contract has no content to render'
    default_code = 'empty_content'


class DeletionNotAllowed(ContractValidationError):
    default_detail = 'Signed contracts cannot be deleted'
    default_code = 'deletion_not_allowed'


class InvalidSignature(ContractValidationError):
    default_detail = 'Invalid signature data'
    default_code = 'invalid_signature'


class TermsNotAccepted(ContractValidationError):
    default_detail = 'Must agree to terms to sign'
    default_code = 'terms_not_accepted'


class SignerMismatch(ContractValidationError):
    default_detail = 'Signer email does not match contract client'
    default_code = 'signer_email_mismatch'


# TokenError

class TokenError(ContractError):
    default_detail = 'Invalid signing link'
    default_code = 'token_error'
    kind = 'TokenError'


class TokenNotFound(TokenError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Signing link not found'
    default_code = 'token_not_found'


class TokenExpired(TokenError):
    status_code = status.HTTP_410_GONE
    default_detail = 'Signing link has expired'
    default_code = 'token_expired'


class TokenAlreadyUsed(TokenError):
    default_detail = 'Signing link has already been used or revoked'
    default_code = 'token_already_used'


class OTPRequired(TokenError):
    default_detail = 'A verification code is required'
    default_code = 'otp_required'


class OTPMismatch(TokenError):
    default_detail = 'Invalid verification code'
    default_code = 'otp_mismatch'

    def __init__(self, detail=None, *, token_id=None, attempts_left=None):
        super().__init__(detail)
        self.token_id = token_id
        self.attempts_left = attempts_left


# IOError

class ArtifactIOError(ContractError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Failed to read or write the contract artifact'
    default_code = 'artifact_io_error'
    kind = 'IOError'
