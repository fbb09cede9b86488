"""Signature verification for inbound provider webhooks.

Every verifier works on the raw request body exactly as received. Parsing and
re-serialising JSON changes whitespace and key order, which breaks byte-level
HMACs, so callers must hand over ``await request.body()`` untouched.

Three schemes are supported:

* media provider: ``mux-signature: t=<unix>,v1=<hex hmac-sha256("{t}.{body}")>``
* identity provider: svix headers, ``v1,<base64 hmac-sha256("{id}.{ts}.{body}")>``
* workflow queue callbacks: HS256 JWT whose ``body`` claim is the url-safe
  base64 SHA-256 of the raw body
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Union

import jwt

MEDIA_SIGNATURE_HEADER = "mux-signature"
IDENTITY_ID_HEADER = "svix-id"
IDENTITY_TIMESTAMP_HEADER = "svix-timestamp"
IDENTITY_SIGNATURE_HEADER = "svix-signature"
WORKFLOW_SIGNATURE_HEADER = "upstash-signature"
WORKFLOW_ISSUER = "Upstash"


@dataclass(frozen=True)
class Verified:
    provider: str
    delivery_id: Optional[str] = None


@dataclass(frozen=True)
class Rejected:
    provider: str
    reason: str


VerificationResult = Union[Verified, Rejected]


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _matches(expected: str, candidate: str) -> bool:
    # header values may carry non-ASCII text, which compare_digest refuses for str
    return hmac.compare_digest(expected.encode("ascii"), candidate.encode("utf-8", "surrogateescape"))


def _within_tolerance(timestamp: int, tolerance_s: int, now: Optional[float]) -> bool:
    current = time.time() if now is None else now
    return abs(current - timestamp) <= tolerance_s


def verify_media_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str,
    *,
    tolerance_s: int = 300,
    now: Optional[float] = None,
) -> VerificationResult:
    provider = "media"
    if not secret:
        return Rejected(provider, "secret_not_configured")
    header = _header(headers, MEDIA_SIGNATURE_HEADER)
    if not header:
        return Rejected(provider, "missing_signature")

    timestamp: Optional[str] = None
    candidates: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            candidates.append(value)
    if not timestamp or not candidates:
        return Rejected(provider, "malformed_signature")
    if not timestamp.isascii():
        return Rejected(provider, "malformed_timestamp")
    try:
        ts = int(timestamp)
    except ValueError:
        return Rejected(provider, "malformed_timestamp")
    if not _within_tolerance(ts, tolerance_s, now):
        return Rejected(provider, "timestamp_out_of_tolerance")

    expected = hmac.new(secret.encode("utf-8"), timestamp.encode("ascii") + b"." + raw_body, hashlib.sha256).hexdigest()
    if any(_matches(expected, candidate) for candidate in candidates):
        return Verified(provider)
    return Rejected(provider, "signature_mismatch")


def _identity_key(secret: str) -> bytes:
    raw = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
    return base64.b64decode(raw)


def verify_identity_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str,
    *,
    tolerance_s: int = 300,
    now: Optional[float] = None,
) -> VerificationResult:
    provider = "identity"
    msg_id = _header(headers, IDENTITY_ID_HEADER)
    timestamp = _header(headers, IDENTITY_TIMESTAMP_HEADER)
    header = _header(headers, IDENTITY_SIGNATURE_HEADER)
    if not msg_id or not timestamp or not header:
        return Rejected(provider, "missing_signature")
    try:
        ts = int(timestamp)
        key = _identity_key(secret)
    except ValueError:
        return Rejected(provider, "malformed_signature")
    if not key:
        return Rejected(provider, "secret_not_configured")
    if not _within_tolerance(ts, tolerance_s, now):
        return Rejected(provider, "timestamp_out_of_tolerance")

    signed = f"{msg_id}.{timestamp}.".encode("utf-8") + raw_body
    expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode("ascii")
    for entry in header.split():
        version, _, signature = entry.partition(",")
        if version == "v1" and _matches(expected, signature):
            return Verified(provider, delivery_id=msg_id)
    return Rejected(provider, "signature_mismatch")


def body_digest(raw_body: bytes) -> str:
    return base64.urlsafe_b64encode(hashlib.sha256(raw_body).digest()).decode("ascii").rstrip("=")


def verify_workflow_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    current_key: str,
    next_key: str = "",
    *,
    tolerance_s: int = 300,
) -> VerificationResult:
    provider = "workflow"
    token = _header(headers, WORKFLOW_SIGNATURE_HEADER)
    if not token:
        return Rejected(provider, "missing_signature")

    reason = "secret_not_configured"
    for key in (current_key, next_key):
        if not key:
            continue
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=["HS256"],
                issuer=WORKFLOW_ISSUER,
                leeway=tolerance_s,
                options={"require": ["exp", "nbf", "iss"], "verify_aud": False},
            )
        except jwt.InvalidSignatureError:
            reason = "signature_mismatch"
            continue
        except jwt.PyJWTError as exc:
            return Rejected(provider, f"invalid_token:{type(exc).__name__}")
        claimed = str(claims.get("body") or "").rstrip("=")
        if not _matches(body_digest(raw_body), claimed):
            return Rejected(provider, "body_digest_mismatch")
        return Verified(provider, delivery_id=claims.get("jti"))
    return Rejected(provider, reason)


def sign_media_payload(raw_body: bytes, secret: str, *, timestamp: Optional[int] = None) -> dict[str, str]:
    ts = str(int(time.time()) if timestamp is None else timestamp)
    digest = hmac.new(secret.encode("utf-8"), ts.encode("ascii") + b"." + raw_body, hashlib.sha256).hexdigest()
    return {MEDIA_SIGNATURE_HEADER: f"t={ts},v1={digest}"}


def sign_identity_payload(
    raw_body: bytes,
    secret: str,
    *,
    msg_id: str,
    timestamp: Optional[int] = None,
) -> dict[str, str]:
    ts = str(int(time.time()) if timestamp is None else timestamp)
    signed = f"{msg_id}.{ts}.".encode("utf-8") + raw_body
    signature = base64.b64encode(hmac.new(_identity_key(secret), signed, hashlib.sha256).digest()).decode("ascii")
    return {
        IDENTITY_ID_HEADER: msg_id,
        IDENTITY_TIMESTAMP_HEADER: ts,
        IDENTITY_SIGNATURE_HEADER: f"v1,{signature}",
    }


def sign_workflow_payload(
    raw_body: bytes,
    key: str,
    *,
    subject: str,
    ttl_s: int = 300,
    jti: Optional[str] = None,
) -> dict[str, str]:
    issued = int(time.time())
    claims: dict[str, object] = {
        "iss": WORKFLOW_ISSUER,
        "sub": subject,
        "iat": issued,
        "nbf": issued,
        "exp": issued + ttl_s,
        "body": body_digest(raw_body),
    }
    if jti:
        claims["jti"] = jti
    token = jwt.encode(claims, key, algorithm="HS256")
    return {WORKFLOW_SIGNATURE_HEADER: token}


__all__ = [
    "Verified",
    "Rejected",
    "VerificationResult",
    "verify_media_signature",
    "verify_identity_signature",
    "verify_workflow_signature",
    "sign_media_payload",
    "sign_identity_payload",
    "sign_workflow_payload",
    "body_digest",
]
