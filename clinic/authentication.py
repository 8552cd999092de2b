"""
Custom authentication backend for token-based auth.

This module defines a subclass of Django REST framework's
``TokenAuthentication`` that pins the ``Authorization`` keyword.  It
lives apart from the views so that DRF can import the authentication
classes during initialisation without pulling in the view modules.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """Token authentication using the ``Token`` keyword.

    Being first in ``DEFAULT_AUTHENTICATION_CLASSES`` also makes DRF
    answer unauthenticated requests with 401 instead of 403.
    """

    keyword = 'Token'
