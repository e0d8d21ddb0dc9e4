"""
Append-only contract event stream and generic audit log.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from contracts.models import AuditLog, ContractEvent

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('audit')


@dataclass(frozen=True)
class RequestContext:
    """Caller details captured at the HTTP edge."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request) -> 'RequestContext':
        if request is None:
            return cls()
        ip = None
        xff = request.META.get('HTTP_X_FORWARDED_FOR')
        if xff:
            parts = [p.strip() for p in str(xff).split(',') if p.strip()]
            if parts:
                ip = parts[0]
        if not ip:
            ip = request.META.get('REMOTE_ADDR') or None
        ua = request.META.get('HTTP_USER_AGENT')
        return cls(ip_address=ip, user_agent=str(ua).strip() if ua else None)

    def hashed(self) -> Dict[str, Optional[str]]:
        """SHA-256 of IP and user agent, for signer-facing event metadata."""
        return {
            'ip_hash': _sha256(self.ip_address),
            'user_agent_hash': _sha256(self.user_agent),
        }


def _sha256(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


class AuditTrail:
    """
    Writes to the two append-only streams and reads them back as one history.
    """

    def record_event(self, contract_id, event_type: str, metadata: Optional[Dict[str, Any]] = None) -> ContractEvent:
        event = ContractEvent.objects.create(
            contract_id=contract_id,
            type=event_type,
            metadata=metadata or {},
        )
        logger.info(f"Contract event {event_type} recorded for {contract_id}")
        return event

    def record_audit(
        self,
        action: str,
        entity_type: str,
        entity_id,
        actor=None,
        *,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> AuditLog:
        context = context or RequestContext()
        entry = AuditLog.objects.create(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=str(actor) if actor is not None else '',
            changes=changes or {},
            metadata=metadata or {},
            ip_address=context.ip_address,
            user_agent=context.user_agent or '',
        )
        audit_logger.info(
            f"AUDIT|action={action}|entity={entity_type}:{entity_id}|actor={entry.actor_id or '-'}"
        )
        return entry

    def events_for(self, contract_id) -> List[ContractEvent]:
        return list(ContractEvent.objects.filter(contract_id=contract_id).order_by('-created_at'))

    def audits_for(self, contract_id, entity_type: str = 'contract') -> List[AuditLog]:
        return list(
            AuditLog.objects.filter(entity_type=entity_type, entity_id=contract_id).order_by('-created_at')
        )

    def history(self, contract_id) -> List[Dict[str, Any]]:
        """Both streams merged, newest first."""
        items: List[Dict[str, Any]] = []
        for event in self.events_for(contract_id):
            items.append({
                'id': str(event.id),
                'source': 'event',
                'type': event.type,
                'actor_id': None,
                'metadata': event.metadata,
                'created_at': event.created_at,
            })
        for entry in self.audits_for(contract_id):
            items.append({
                'id': str(entry.id),
                'source': 'audit',
                'type': entry.action,
                'actor_id': entry.actor_id or None,
                'metadata': {**(entry.metadata or {}), **({'changes': entry.changes} if entry.changes else {})},
                'created_at': entry.created_at,
            })
        items.sort(key=lambda item: item['created_at'], reverse=True)
        return items
