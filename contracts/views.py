"""
HTTP endpoints for the contract lifecycle.

Studio endpoints require an authenticated user. Signer endpoints are public;
the magic link token is the credential.
"""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle

from .exceptions import ContractError
from .models import Contract, ContractTemplate
from .serializers import (
    ContractListSerializer,
    ContractSerializer,
    ContractTemplateListSerializer,
    DeclineContractSerializer,
    GenerateContractSerializer,
    ReasonSerializer,
    SendContractSerializer,
    SignContractSerializer,
    SignerContractSerializer,
)
from .services import ContractOrchestrator, RequestContext

logger = logging.getLogger(__name__)


def _orchestrator() -> ContractOrchestrator:
    return ContractOrchestrator()


def _actor(request) -> str | None:
    user = getattr(request, 'user', None)
    if user is None or not getattr(user, 'is_authenticated', False):
        return None
    return str(getattr(user, 'pk', '') or '') or None


def _error(exc: ContractError) -> Response:
    if exc.status_code >= 500:
        logger.error(f"Contract operation failed: {exc.detail}")
    return Response(
        {'error': str(exc.detail), 'code': exc.default_code},
        status=exc.status_code,
    )


def _invalid(serializer) -> Response:
    return Response({'error': 'Invalid request', 'details': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)


class SigningRateThrottle(AnonRateThrottle):
    """Per-IP limit on the public signing endpoints."""

    scope = 'signing'


# ---------------------------------------------------------------------------
# Studio endpoints
# ---------------------------------------------------------------------------

@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def contracts_collection(request):
    if request.method == 'GET':
        qs = Contract.objects.select_related('client').all()
        status_filter = (request.query_params.get('status') or '').strip().lower()
        if status_filter:
            qs = qs.filter(status=status_filter)
        return Response(
            {'success': True, 'results': ContractListSerializer(qs[:200], many=True).data},
            status=status.HTTP_200_OK,
        )

    serializer = GenerateContractSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    data = serializer.validated_data
    try:
        contract = _orchestrator().generate_contract(
            data['template_id'],
            data.get('title') or '',
            data.get('variables') or {},
            client_id=data.get('client_id'),
            proposal_id=data.get('proposal_id'),
            actor=_actor(request),
            context=RequestContext.from_request(request),
        )
    except ContractError as e:
        return _error(e)
    return Response({'success': True, 'contract': ContractSerializer(contract).data}, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def templates_list(request):
    qs = ContractTemplate.objects.all()
    if (request.query_params.get('active') or '').strip().lower() in ('1', 'true', 'yes'):
        qs = qs.filter(is_active=True)
    return Response(
        {'success': True, 'results': ContractTemplateListSerializer(qs, many=True).data},
        status=status.HTTP_200_OK,
    )


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def contract_stats(request):
    return Response({'success': True, 'stats': _orchestrator().get_contract_stats()}, status=status.HTTP_200_OK)


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated])
def contract_detail(request, contract_id):
    orchestrator = _orchestrator()
    try:
        if request.method == 'DELETE':
            orchestrator.delete_contract(contract_id, _actor(request), context=RequestContext.from_request(request))
            return Response({'success': True}, status=status.HTTP_200_OK)
        contract = orchestrator.get_contract(contract_id)
    except ContractError as e:
        return _error(e)
    return Response({'success': True, 'contract': ContractSerializer(contract).data}, status=status.HTTP_200_OK)


def _send(request, contract_id, *, resend: bool):
    serializer = SendContractSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    opts = serializer.validated_data
    orchestrator = _orchestrator()
    operation = orchestrator.resend_contract if resend else orchestrator.send_contract
    try:
        result = operation(
            contract_id,
            _actor(request),
            require_otp=opts.get('require_otp'),
            ttl_hours=opts.get('ttl_hours'),
            context=RequestContext.from_request(request),
        )
    except ContractError as e:
        return _error(e)
    return Response({'success': True, **result.as_dict()}, status=status.HTTP_200_OK)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def contract_send(request, contract_id):
    return _send(request, contract_id, resend=False)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def contract_resend(request, contract_id):
    return _send(request, contract_id, resend=True)


def _terminate(request, contract_id, *, void: bool):
    serializer = ReasonSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    orchestrator = _orchestrator()
    operation = orchestrator.void_contract if void else orchestrator.cancel_contract
    try:
        contract = operation(
            contract_id,
            serializer.validated_data.get('reason') or '',
            _actor(request),
            context=RequestContext.from_request(request),
        )
    except ContractError as e:
        return _error(e)
    return Response({'success': True, 'contract': ContractSerializer(contract).data}, status=status.HTTP_200_OK)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def contract_void(request, contract_id):
    return _terminate(request, contract_id, void=True)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def contract_cancel(request, contract_id):
    return _terminate(request, contract_id, void=False)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def contract_generate_pdf(request, contract_id):
    try:
        artifact = _orchestrator().generate_pdf(contract_id, _actor(request), context=RequestContext.from_request(request))
    except ContractError as e:
        return _error(e)
    return Response(
        {
            'success': True,
            'pdf_path': artifact.path,
            'pdf_hash': artifact.hash,
            'file_size': artifact.size,
            'generated_at': artifact.generated_at.isoformat(),
        },
        status=status.HTTP_200_OK,
    )


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def contract_regenerate_pdf(request, contract_id):
    try:
        artifact = _orchestrator().regenerate_pdf(contract_id, _actor(request), context=RequestContext.from_request(request))
    except ContractError as e:
        return _error(e)
    return Response(
        {
            'success': True,
            'pdf_path': artifact.path,
            'pdf_hash': artifact.hash,
            'file_size': artifact.size,
            'generated_at': artifact.generated_at.isoformat(),
        },
        status=status.HTTP_200_OK,
    )


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def contract_verify_pdf(request, contract_id):
    # A mismatch is a normal answer, not an error.
    try:
        result = _orchestrator().verify_pdf(contract_id)
    except ContractError as e:
        return _error(e)
    return Response({'success': True, **result.as_dict()}, status=status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def contract_pdf_info(request, contract_id):
    try:
        info = _orchestrator().get_pdf_info(contract_id)
    except ContractError as e:
        return _error(e)
    return Response({'success': True, **info.as_dict()}, status=status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def contract_events(request, contract_id):
    payload = _orchestrator().get_contract_events(contract_id)
    return Response({'success': True, 'contract_id': str(contract_id), **payload}, status=status.HTTP_200_OK)


# ---------------------------------------------------------------------------
# Signer endpoints
# ---------------------------------------------------------------------------

@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([SigningRateThrottle])
def signing_session(request, token: str):
    try:
        contract = _orchestrator().record_view(token, context=RequestContext.from_request(request))
    except ContractError as e:
        return _error(e)
    return Response(
        {
            'success': True,
            'contract': SignerContractSerializer(contract).data,
            'requires_otp': bool(getattr(contract, 'requires_otp', False)),
        },
        status=status.HTTP_200_OK,
    )


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([SigningRateThrottle])
def signing_sign(request, token: str):
    serializer = SignContractSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    data = serializer.validated_data
    try:
        contract = _orchestrator().record_signature(
            token,
            otp=data.get('otp') or None,
            signer_name=data.get('signer_name') or '',
            signer_email=data.get('signer_email') or '',
            signature_data_url=data['signature_data_url'],
            agreed_to_terms=data['agreed_to_terms'],
            context=RequestContext.from_request(request),
        )
    except ContractError as e:
        return _error(e)
    return Response(
        {'success': True, 'contract_id': str(contract.id), 'status': contract.status,
         'signed_at': contract.signed_at.isoformat() if contract.signed_at else None,
         'pdf_hash': contract.pdf_hash},
        status=status.HTTP_200_OK,
    )


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([SigningRateThrottle])
def signing_decline(request, token: str):
    serializer = DeclineContractSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    data = serializer.validated_data
    try:
        contract = _orchestrator().record_decline(
            token,
            otp=data.get('otp') or None,
            reason=data.get('reason') or '',
            signer_name=data.get('signer_name') or '',
            signer_email=data.get('signer_email') or '',
            context=RequestContext.from_request(request),
        )
    except ContractError as e:
        return _error(e)
    return Response(
        {'success': True, 'contract_id': str(contract.id), 'status': contract.status},
        status=status.HTTP_200_OK,
    )
