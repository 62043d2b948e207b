"""
Signed tokens for professional-facing links and WebSocket connections.

Offers are answered through links sent by email or WhatsApp; each link
carries a signature binding the attribution to the professional it was
sent to, so a link cannot be replayed for another professional.
"""

from typing import Dict, Optional

from django.conf import settings
from django.core import signing

RESPONSE_SALT = "attribution.response"
PROFESSIONAL_SALT = "attribution.professional"


def make_response_token(attribution_id: int, professional_id: int) -> str:
    return signing.dumps({"a": int(attribution_id), "p": int(professional_id)}, salt=RESPONSE_SALT)


def verify_response_token(
    token: Optional[str],
    attribution_id: int,
    professional_id: int,
    max_age: Optional[int] = None,
) -> bool:
    """Check a response token against the attribution and professional it claims."""
    if not token:
        return False
    if max_age is None:
        max_age = settings.ATTRIBUTION_RESPONSE_TOKEN_MAX_AGE
    try:
        data = signing.loads(token, salt=RESPONSE_SALT, max_age=max_age)
    except signing.BadSignature:
        return False
    return data.get("a") == int(attribution_id) and data.get("p") == int(professional_id)


def build_response_urls(attribution_id: int, professional_id: int) -> Dict[str, str]:
    """Accept/refuse links embedded in an offer."""
    token = make_response_token(attribution_id, professional_id)
    base = f"{settings.APP_BASE_URL}/api/attribution/{attribution_id}"
    query = f"?professional_id={professional_id}&token={token}"
    return {
        "accept_url": f"{base}/accept/{query}",
        "refuse_url": f"{base}/refuse/{query}",
        "token": token,
    }


def make_professional_token(professional_id: int) -> str:
    return signing.dumps({"p": int(professional_id)}, salt=PROFESSIONAL_SALT)


def read_professional_token(token: Optional[str], max_age: Optional[int] = None) -> Optional[int]:
    """Return the professional id carried by a connection token, or None if invalid."""
    if not token:
        return None
    if max_age is None:
        max_age = settings.ATTRIBUTION_RESPONSE_TOKEN_MAX_AGE
    try:
        data = signing.loads(token, salt=PROFESSIONAL_SALT, max_age=max_age)
    except signing.BadSignature:
        return None
    return data.get("p")
