"""Host API key authentication for the lifecycle endpoints.

The host runtime presents a shared key in the `x-api-key` header. Keys are
compared as SHA256 digests with a constant-time comparison.
"""
import hashlib
import hmac
from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from typing import Optional

from shield_study.config import get_settings

# API key header
api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key using SHA256.

    Args:
        api_key: Plain text API key

    Returns:
        SHA256 hex digest of the API key
    """
    return hashlib.sha256(api_key.encode()).hexdigest()


def verify_api_key(api_key: Optional[str], expected_key: str) -> bool:
    """Check a presented key against the expected key."""
    if not api_key:
        return False
    return hmac.compare_digest(hash_api_key(api_key), hash_api_key(expected_key))


async def require_host_key(
    api_key: Optional[str] = Security(api_key_header)
) -> str:
    """
    Dependency that rejects lifecycle calls without a valid host key.

    Usage:
        @router.post("/addon/startup")
        async def startup(host: str = Depends(require_host_key)):
            ...

    Raises:
        HTTPException: 401 if the key is missing or does not match
    """
    settings = get_settings()

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Include 'x-api-key' header."
        )

    if not verify_api_key(api_key, settings.host_api_key):
        raise HTTPException(
            status_code=401,
            detail="Invalid API key"
        )

    return api_key
