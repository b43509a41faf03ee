import hashlib
import hmac
from datetime import datetime, timezone
from typing import Optional, Any

from jose import JWTError, jwt

from storefront.config import settings


def compute_payment_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    """
    Compute the gateway callback signature.

    HMAC-SHA256 over ``"<gateway_order_id>|<gateway_payment_id>"`` keyed
    with the gateway secret, hex encoded.
    """
    payload = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(
        secret.encode(),
        payload.encode(),
        hashlib.sha256
    ).hexdigest()


def verify_payment_signature(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    secret: Optional[str] = None,
) -> bool:
    """
    Verify a gateway callback signature in constant time.

    Returns False when no secret is configured.
    """
    key_secret = settings.RAZORPAY_KEY_SECRET if secret is None else secret
    if not key_secret or not signature:
        return False

    expected_signature = compute_payment_signature(gateway_order_id, gateway_payment_id, key_secret)
    return hmac.compare_digest(expected_signature.encode(), signature.encode())


def create_referral_token(
    code: str,
    affiliate_id: str,
    captured_at: datetime,
    expires_at: datetime,
) -> str:
    """
    Encode a referral attribution record as a signed token.

    Expiry is carried as a plain claim rather than ``exp`` so an expired
    record can still be read back and cleared.
    """
    to_encode = {
        "sub": affiliate_id,
        "code": code,
        "cap": int(captured_at.timestamp() * 1000),
        "xat": int(expires_at.timestamp() * 1000),
        "type": "referral",
    }
    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_referral_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode a referral token.

    Returns:
        ``{"code", "affiliate_id", "captured_at", "expires_at"}`` or None if
        the token is malformed, tampered with, or not a referral token.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None

    if payload.get("type") != "referral":
        return None

    try:
        return {
            "code": payload["code"],
            "affiliate_id": payload["sub"],
            "captured_at": datetime.fromtimestamp(payload["cap"] / 1000, tz=timezone.utc),
            "expires_at": datetime.fromtimestamp(payload["xat"] / 1000, tz=timezone.utc),
        }
    except (KeyError, TypeError, ValueError):
        return None
