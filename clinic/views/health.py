"""Liveness check: database and cache round trips."""
import logging

from django.core.cache import cache
from django.db import DatabaseError, connections
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _database_ok() -> bool:
    with connections['default'].cursor() as cursor:
        cursor.execute('SELECT 1')
        row = cursor.fetchone()
    return bool(row and row[0] == 1)


def _cache_ok() -> bool:
    cache.set('clinic:healthz', 'ok', 5)
    return cache.get('clinic:healthz') == 'ok'


def healthz(request):
    checks = {}
    try:
        checks['db'] = _database_ok()
    except DatabaseError as exc:
        logger.error('Health check: database unavailable: %s', exc)
        checks['db'] = False
    try:
        checks['cache'] = _cache_ok()
    except Exception as exc:  # backend specific connection errors
        logger.error('Health check: cache unavailable: %s', exc)
        checks['cache'] = False
    if not all(checks.values()):
        return JsonResponse({'success': False, 'error': 'Service unavailable', 'data': checks}, status=503)
    return JsonResponse({'success': True, 'data': checks})
