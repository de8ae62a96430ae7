"""
API Key Authentication for the Strategy Control API
"""

import secrets
from typing import Optional

from fastapi import HTTPException, Request, status


class APIKeyAuth:
    """
    Static API key check.

    The key may be sent as ``Authorization: Bearer <key>`` or ``X-API-Key``.
    With no key configured every request is accepted.
    """

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or None

    @property
    def enabled(self) -> bool:
        return self.api_key is not None

    async def __call__(self, request: Request) -> None:
        if not self.enabled:
            return

        # Try Authorization header first (Bearer token)
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            provided = auth_header[7:]
        else:
            provided = request.headers.get("X-API-Key")

        if not provided:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing API key. Provide 'X-API-Key' header or 'Authorization: Bearer <key>'"
            )

        if not secrets.compare_digest(provided, self.api_key):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid API key"
            )
