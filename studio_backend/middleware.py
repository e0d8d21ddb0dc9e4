"""
Request correlation, API audit logging and Prometheus request metrics
"""
import logging
import uuid

from django.utils import timezone
from django.utils.deprecation import MiddlewareMixin
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('audit')


API_REQUEST_COUNT = Counter(
    'studio_api_requests_total',
    'Total API requests',
    ['method', 'route', 'status'],
)
API_REQUEST_LATENCY = Histogram(
    'studio_api_request_latency_seconds',
    'API request latency (seconds)',
    ['method', 'route'],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)


class RequestIdMiddleware(MiddlewareMixin):
    """Attach a request id for correlation across logs."""

    HEADER = 'X-Request-ID'

    def process_request(self, request):
        rid = request.META.get('HTTP_X_REQUEST_ID')
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        return None

    def process_response(self, request, response):
        rid = getattr(request, 'request_id', None)
        if rid:
            response.headers.setdefault(self.HEADER, rid)
        return response


def _route(request) -> str:
    # Route pattern instead of the raw path keeps tokens and ids out of labels and logs.
    match = getattr(request, 'resolver_match', None)
    if match is not None and match.route:
        return '/' + match.route.lstrip('/')
    return 'unmatched'


class AuditLoggingMiddleware(MiddlewareMixin):
    """
    Log every /api/ call to the audit logger
    """

    def process_response(self, request, response):
        if not request.path.startswith('/api/'):
            return response
        try:
            user = getattr(request, 'user', None)
            user_id = user.pk if user is not None and user.is_authenticated else None
            audit_logger.info(
                f"API_CALL|method={request.method}|route={_route(request)}|"
                f"status={response.status_code}|user_id={user_id}|"
                f"request_id={getattr(request, 'request_id', None)}"
            )
            if response.status_code >= 500:
                logger.warning(
                    f"API Error: {request.method} {_route(request)} - Status: {response.status_code}"
                )
        except Exception as e:
            logger.error(f"Failed to log API call: {str(e)}")
        return response


class MetricsMiddleware(MiddlewareMixin):
    """Prometheus request metrics for /api/* routes."""

    def process_request(self, request):
        request._metrics_start_ts = timezone.now()
        return None

    def process_response(self, request, response):
        if not getattr(request, 'path', '').startswith('/api/'):
            return response

        start = getattr(request, '_metrics_start_ts', None)
        if start is None:
            return response
        duration = (timezone.now() - start).total_seconds()
        route = _route(request)
        method = getattr(request, 'method', 'GET')

        API_REQUEST_COUNT.labels(method=method, route=route, status=str(response.status_code)).inc()
        API_REQUEST_LATENCY.labels(method=method, route=route).observe(duration)
        return response
