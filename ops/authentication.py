"""
Token authentication with a stable import path.

Kept apart from any view module so DRF can import the authentication
classes from settings without pulling views in.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """DRF token auth using the ``Token`` keyword."""

    keyword = 'Token'
