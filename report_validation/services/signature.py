from __future__ import annotations

import hashlib
import hmac
from datetime import datetime
from typing import Any, Callable

from report_validation.config import settings
from report_validation.core.enums import SignatureMethod
from report_validation.core.errors import AuthenticationError, CollaboratorError, UnsupportedMethodError
from report_validation.core.schemas import ActorContext, DigitalSignature
from report_validation.services.audit import AuditSink, emit_audit
from report_validation.services.collaborators import CredentialValidator, PresenceOnlyCredentialValidator
from report_validation.utils.time import as_utc, now_utc

# Credential field that must be non-empty for each method; biometric is delegated entirely.
REQUIRED_CREDENTIAL: dict[SignatureMethod, str | None] = {
    SignatureMethod.password: "password",
    SignatureMethod.token: "token",
    SignatureMethod.certificate: "certificate",
    SignatureMethod.biometric: None,
}


def parse_method(method: str | SignatureMethod) -> SignatureMethod:
    try:
        return SignatureMethod(method)
    except ValueError:
        raise UnsupportedMethodError(f"unsupported signature method: {method}") from None


def check_credentials(method: SignatureMethod, credentials: dict[str, Any] | None) -> None:
    field = REQUIRED_CREDENTIAL[method]
    if field is None:
        return
    value = (credentials or {}).get(field)
    if not value or (isinstance(value, str) and not value.strip()):
        raise AuthenticationError(f"{field.capitalize()} required for signature")


def compute_signature_hash(report_id: str, signer_id: str, method: str, timestamp: datetime) -> str:
    """Content commitment over the signing facts.

    This is not a non-repudiable signature; binding proof needs an external PKI layer.
    """
    material = "|".join([report_id, signer_id, method, as_utc(timestamp).isoformat(timespec="microseconds")])
    if settings.signature_secret:
        return hmac.new(settings.signature_secret.encode("utf-8"), material.encode("utf-8"), hashlib.sha256).hexdigest()
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def verify_signature(report_id: str, signature: DigitalSignature) -> bool:
    expected = compute_signature_hash(report_id, signature.signer_id, signature.method.value, signature.timestamp)
    return hmac.compare_digest(expected, signature.signature_hash)


def create_signature(
    report_id: str,
    method: str | SignatureMethod,
    credentials: dict[str, Any] | None,
    actor: ActorContext | None,
    *,
    validator: CredentialValidator | None = None,
    audit_sink: AuditSink | None = None,
    clock: Callable[[], datetime] = now_utc,
) -> DigitalSignature:
    if actor is None:
        raise AuthenticationError("User not authenticated")

    signature_method = parse_method(method)
    check_credentials(signature_method, credentials)

    validator = validator or PresenceOnlyCredentialValidator()
    try:
        verified = validator.verify(actor, signature_method.value, credentials or {})
    except Exception as exc:
        raise CollaboratorError(f"credential validator failed: {exc}") from exc
    if not verified:
        raise AuthenticationError("credential verification failed")

    timestamp = clock()
    signature = DigitalSignature(
        signer_id=actor.actor_id,
        signer_name=actor.display_name or "Unknown",
        timestamp=timestamp,
        method=signature_method,
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
        signature_hash=compute_signature_hash(report_id, actor.actor_id, signature_method.value, timestamp),
    )

    emit_audit(
        audit_sink,
        "digital-signature",
        "DiagnosticReport",
        report_id,
        {
            "signature_method": signature_method.value,
            "signer_id": actor.actor_id,
            "timestamp": timestamp.isoformat(),
        },
    )
    return signature
