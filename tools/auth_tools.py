"""
Auth Tools - Verify requests that claim to come from Shopify

1. Session tokens sent by the embedded admin (Bearer JWT, HS256)
2. Webhook HMAC signatures (X-Shopify-Hmac-Sha256)
"""

import base64
import hashlib
import hmac
from typing import Optional
from urllib.parse import urlparse

import jwt

from config import SHOPIFY_API_KEY, SHOPIFY_API_SECRET
from tools.errors import Unauthorized


# Clock skew allowed between Shopify and this server, in seconds
SESSION_TOKEN_LEEWAY = 10


def shop_from_session_token(
    token: str,
    api_key: Optional[str] = None,
    api_secret: Optional[str] = None,
) -> str:
    """
    Decode a Shopify session token and return the shop domain.

    Raises:
        Unauthorized: bad signature, wrong audience, expired or no shop
    """
    api_key = api_key or SHOPIFY_API_KEY
    api_secret = api_secret or SHOPIFY_API_SECRET

    if not token:
        raise Unauthorized("Missing session token")

    try:
        payload = jwt.decode(
            token,
            api_secret,
            algorithms=["HS256"],
            audience=api_key,
            leeway=SESSION_TOKEN_LEEWAY,
        )
    except jwt.PyJWTError as e:
        raise Unauthorized(f"Invalid session token: {e}") from e

    shop = urlparse(payload.get("dest", "")).netloc
    if not shop:
        raise Unauthorized("Session token has no shop")
    return shop


def get_bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        return ""
    return authorization[7:].strip()


def verify_webhook_hmac(body: bytes, signature: Optional[str], api_secret: Optional[str] = None) -> bool:
    """Check a webhook body against its base64 HMAC-SHA256 header."""
    api_secret = api_secret or SHOPIFY_API_SECRET
    if not signature or not api_secret:
        return False

    digest = hmac.new(api_secret.encode(), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest)
    return hmac.compare_digest(expected, signature.encode())
