"""
Webhook signature verification.
HMAC-SHA256 over the raw request body, accepted as hex or base64.
"""

import base64
import hashlib
import hmac
import logging
from typing import List, Union

logger = logging.getLogger(__name__)

_HEX_DIGITS = set("0123456789abcdefABCDEF")


def extract_signature_candidates(signature_header: str) -> List[str]:
    """
    Split a signature header into candidate values.

    Accepts "sig", "v1=sig" and "t=123,v1=sig" forms: every comma-separated
    token contributes the part after its first '=' (or the whole token).
    """
    if not signature_header:
        return []

    candidates = []
    for token in signature_header.split(","):
        token = token.strip()
        if not token:
            continue
        _, sep, value = token.partition("=")
        value = value.strip()
        if sep and value and value.strip("="):
            candidates.append(value)
        # Bare base64 carries '=' only as trailing padding
        if not sep or "=" not in token.rstrip("="):
            candidates.append(token)
    return candidates


def compute_signatures(raw_body: Union[bytes, str], secret: str) -> tuple:
    """Return the (hex, base64) renderings of HMAC-SHA256(secret, raw_body)."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return digest.hex(), base64.b64encode(digest).decode("ascii")


def _constant_time_equals(expected: str, candidate: str) -> bool:
    expected_bytes = expected.encode("utf-8")
    candidate_bytes = candidate.encode("utf-8")
    if len(expected_bytes) != len(candidate_bytes):
        return False
    return hmac.compare_digest(expected_bytes, candidate_bytes)


def verify_signature(raw_body: Union[bytes, str], signature_header: str, secret: str) -> bool:
    """
    Check a webhook signature header against the raw body.

    Fails closed: no secret or no candidates means False.
    """
    if not secret:
        return False

    candidates = extract_signature_candidates(signature_header)
    if not candidates:
        return False

    expected_hex, expected_b64 = compute_signatures(raw_body, secret)

    matched = False
    for candidate in candidates:
        hex_candidate = candidate.lower() if set(candidate) <= _HEX_DIGITS else candidate
        # Evaluate both so timing does not reveal which encoding matched
        hex_match = _constant_time_equals(expected_hex, hex_candidate)
        b64_match = _constant_time_equals(expected_b64, candidate)
        matched = matched or hex_match or b64_match

    return matched
