"""Security utilities for identity header verification."""

import hashlib
import hmac

from structlog import get_logger

logger = get_logger()


def sign_identity(secret: str, actor_id: str, email: str, role: str) -> str:
    """
    Compute the identity signature the upstream layer attaches.

    Format: "sha256=<hex digest of HMAC-SHA256 over 'id:email:role'>"
    """
    message = f"{actor_id}:{email}:{role}"
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_identity_signature(
    secret: str,
    actor_id: str,
    email: str,
    role: str,
    provided_signature: str | None,
) -> bool:
    """
    Verify the X-Actor-Signature header using HMAC-SHA256.

    Uses constant-time comparison to prevent timing attacks.

    Args:
        secret: IDENTITY_SIGNING_SECRET shared with the identity layer
        actor_id: X-Actor-Id header
        email: X-Actor-Email header, as sent
        role: X-Actor-Role header
        provided_signature: X-Actor-Signature header (format: "sha256=...")

    Returns:
        True if signature valid, False otherwise
    """
    if not provided_signature:
        logger.warning("identity_signature_missing", actor_id=actor_id)
        return False

    expected_signature = sign_identity(secret, actor_id, email, role)

    # Constant-time comparison
    is_valid = hmac.compare_digest(expected_signature, provided_signature)

    if not is_valid:
        logger.warning(
            "identity_signature_invalid",
            actor_id=actor_id,
            provided_prefix=provided_signature[:15],
        )

    return is_valid
