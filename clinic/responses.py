"""
Helpers that build the ``{success, data|error}`` JSON envelope.

Every endpoint answers through :func:`ok` or :func:`fail` so that the
dashboards can branch on ``success`` without inspecting status codes.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from rest_framework import status as http
from rest_framework.response import Response

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def ok(data: Any = None, *, message: Optional[str] = None, status: int = http.HTTP_200_OK, **extra: Any) -> Response:
    body: dict[str, Any] = {'success': True, 'data': data}
    if message:
        body['message'] = message
    body.update(extra)
    return Response(body, status=status)


def fail(error: str, *, status: int = http.HTTP_400_BAD_REQUEST, code: Optional[str] = None, **extra: Any) -> Response:
    body: dict[str, Any] = {'success': False, 'error': error}
    if code:
        body['code'] = code
    body.update(extra)
    return Response(body, status=status)


def paginated(qs, serialize: Callable[[Any], dict], *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Response:
    """Slice ``qs`` and return one page with a ``pagination`` block."""
    limit = max(1, min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))
    page = max(1, page or 1)
    total = qs.count()
    start = (page - 1) * limit
    rows: Iterable = qs[start:start + limit]
    return ok(
        [serialize(obj) for obj in rows],
        pagination={
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    )
