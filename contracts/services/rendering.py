"""
Template lookup and {{placeholder}} rendering used at contract generation
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone

from contracts.exceptions import TemplateNotFound
from contracts.models import ContractTemplate

PLACEHOLDER_RE = re.compile(r'\{\{\s*([\w.]+)\s*\}\}')


@dataclass(frozen=True)
class TemplateSnapshot:
    id: Any
    name: str
    content: str
    version: int
    is_active: bool


class TemplateStore(Protocol):
    def get_active_template(self, template_id) -> TemplateSnapshot: ...


class ContentRenderer(Protocol):
    def render(self, template_content: str, variables: Dict[str, Any]) -> str: ...


class DatabaseTemplateStore:
    """Reads templates from the contract_templates table."""

    def get_active_template(self, template_id) -> TemplateSnapshot:
        try:
            tpl = ContractTemplate.objects.get(pk=template_id)
        except (ContractTemplate.DoesNotExist, ValueError, DjangoValidationError):
            raise TemplateNotFound()
        return TemplateSnapshot(
            id=tpl.id,
            name=tpl.name,
            content=tpl.content or '',
            version=tpl.version,
            is_active=tpl.is_active,
        )


def _lookup(variables: Dict[str, Any], path: str) -> Optional[Any]:
    value: Any = variables
    for part in path.split('.'):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return None
    return value


def date_helpers(now=None) -> Dict[str, str]:
    now = timezone.localtime(now or timezone.now())
    return {
        'date': now.strftime('%B %d, %Y').replace(' 0', ' '),
        'today': now.date().isoformat(),
        'datetime': now.strftime('%Y-%m-%d %H:%M'),
        'year': str(now.year),
    }


class PlaceholderRenderer:
    """
    Replace {{dotted.path}} placeholders with values from the variable map.

    Unknown paths are rendered as ``[path]`` so missing data is visible in the
    document instead of silently disappearing.
    """

    def render(self, template_content: str, variables: Dict[str, Any]) -> str:
        context = {**date_helpers(), **(variables or {})}

        def _replace(match):
            path = match.group(1)
            value = _lookup(context, path)
            if value is None or isinstance(value, (dict, list)):
                return f'[{path}]'
            return str(value)

        return PLACEHOLDER_RE.sub(_replace, template_content or '')
