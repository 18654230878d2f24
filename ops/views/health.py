import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _database_ok() -> bool:
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
            return cursor.fetchone() == (1,)
    except DatabaseError:
        logger.exception('health check: database unavailable')
        return False


def _cache_ok() -> bool:
    try:
        cache.set('healthz', '1', 5)
        return cache.get('healthz') == '1'
    except Exception:
        logger.exception('health check: cache unavailable')
        return False


def healthz(request):
    """Liveness probe for load balancers; reports database and cache reachability."""
    checks = {'db': _database_ok(), 'cache': _cache_ok()}
    ok = all(checks.values())
    return JsonResponse({'ok': ok, **checks}, status=200 if ok else 503)
