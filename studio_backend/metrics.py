from __future__ import annotations

import secrets

from django.conf import settings
from django.http import HttpRequest, HttpResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest


def _is_authorized(request: HttpRequest) -> bool:
    token = (getattr(settings, 'METRICS_TOKEN', '') or '').strip()
    if not token:
        return True

    header = (request.headers.get('X-Metrics-Token') or '').strip()
    return secrets.compare_digest(header, token)


def metrics_view(request: HttpRequest) -> HttpResponse:
    """Prometheus scrape endpoint (lifecycle transitions, integrity checks, API latency).

    Set `METRICS_TOKEN` to require the `X-Metrics-Token` header.
    """

    if not _is_authorized(request):
        return HttpResponse('unauthorized', status=401, content_type='text/plain; version=0.0.4')

    return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)
