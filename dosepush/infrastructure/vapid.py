"""
VAPID (RFC 8292) token signing for Web Push requests.

Push services only accept ES256 signatures in the JWS form: the raw 64-byte
R || S concatenation. The `cryptography` backend produces ASN.1 DER, so the
signature is unpacked here by hand.
"""

import base64
import json
import logging
import time
from functools import lru_cache
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from dosepush.config.settings import Settings
from dosepush.domain.subscription import decode_base64url

logger = logging.getLogger(__name__)

JWT_HEADER = {"typ": "JWT", "alg": "ES256"}
TOKEN_LIFETIME_SECONDS = 12 * 60 * 60
SIGNATURE_LENGTH = 64
VALID_SUBJECT_PREFIXES = ("mailto:", "https://")

DER_SEQUENCE = 0x30
DER_INTEGER = 0x02


def base64url_encode(value: bytes) -> str:
    """Base64url without padding."""
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode("ascii")


def is_valid_subject(subject: str) -> bool:
    """The VAPID subject must be a mailto: or https: contact URI."""
    return bool(subject) and subject.startswith(VALID_SUBJECT_PREFIXES)


def normalize_private_key_pem(value: str) -> str:
    """Env files usually carry the PEM on one line with literal \\n separators."""
    return value.replace("\\n", "\n").strip()


def audience_from_endpoint(endpoint: str) -> Optional[str]:
    """
    Build the JWT audience (scheme://host[:port]) for a push endpoint.

    Returns:
        The audience, or None if the endpoint cannot be parsed
    """
    try:
        parts = urlsplit(endpoint)
        port = parts.port
    except ValueError:
        return None

    scheme = (parts.scheme or "").lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        return None

    if ":" in host:
        host = f"[{host}]"

    if port:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def _read_length(der: bytes, offset: int) -> Tuple[Optional[int], int]:
    if offset >= len(der):
        return None, offset

    first = der[offset]
    if first < 0x80:
        return first, offset + 1
    if first == 0x81 and offset + 1 < len(der):
        return der[offset + 1], offset + 2
    return None, offset


def _read_integer(der: bytes, offset: int) -> Tuple[Optional[bytes], int]:
    if offset >= len(der) or der[offset] != DER_INTEGER:
        return None, offset

    length, offset = _read_length(der, offset + 1)
    if not length or offset + length > len(der):
        return None, offset
    return der[offset:offset + length], offset + length


def der_signature_to_raw(der: bytes, target_length: int = SIGNATURE_LENGTH) -> Optional[bytes]:
    """
    Convert an ECDSA DER signature to the fixed-width R || S form.

    DER integers are minimal and signed, so R and S may be shorter than the
    curve size or carry one leading 0x00 when their high bit is set. Each is
    stripped of leading zeros and left-padded to half the target length.

    Args:
        der: DER SEQUENCE { INTEGER r, INTEGER s }
        target_length: Raw signature length (64 for P-256)

    Returns:
        The raw signature, or None if the DER is malformed or an integer does
        not fit after stripping
    """
    if len(der) < 8 or der[0] != DER_SEQUENCE:
        return None

    sequence_length, offset = _read_length(der, 1)
    if sequence_length is None or offset + sequence_length != len(der):
        return None

    r, offset = _read_integer(der, offset)
    if r is None:
        return None
    s, offset = _read_integer(der, offset)
    if s is None or offset != len(der):
        return None

    part_length = target_length // 2
    r = r.lstrip(b"\x00")
    s = s.lstrip(b"\x00")
    if len(r) > part_length or len(s) > part_length:
        return None

    return r.rjust(part_length, b"\x00") + s.rjust(part_length, b"\x00")


@lru_cache(maxsize=4)
def _load_private_key(pem: str) -> Optional[ec.EllipticCurvePrivateKey]:
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.error(f"Unable to load VAPID private key: {e}")
        return None

    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
        logger.error("VAPID private key is not a P-256 EC key")
        return None
    return key


def sign_vapid_jwt(
    audience: str,
    subject: str,
    private_key_pem: str,
    now: Optional[float] = None,
) -> Optional[str]:
    """
    Sign a VAPID JWT for one push-service audience.

    Args:
        audience: scheme://host[:port] of the push service
        subject: mailto: or https: contact for the sender
        private_key_pem: P-256 private key in PEM form
        now: Unix time used for the expiry claim (defaults to the clock)

    Returns:
        header.claims.signature, or None when the token cannot be produced
    """
    if not audience or not private_key_pem or not is_valid_subject(subject):
        return None

    key = _load_private_key(normalize_private_key_pem(private_key_pem))
    if key is None:
        return None

    issued_at = int(time.time() if now is None else now)
    claims = {
        "aud": audience,
        "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        "sub": subject,
    }

    header_segment = base64url_encode(json.dumps(JWT_HEADER, separators=(",", ":")).encode("utf-8"))
    claims_segment = base64url_encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    unsigned_token = f"{header_segment}.{claims_segment}"

    der_signature = key.sign(unsigned_token.encode("ascii"), ec.ECDSA(hashes.SHA256()))
    raw_signature = der_signature_to_raw(der_signature)
    if raw_signature is None:
        logger.error("Unable to convert VAPID signature from DER")
        return None

    return f"{unsigned_token}.{base64url_encode(raw_signature)}"


class VapidSigner:
    """Signs push requests with the application's VAPID key pair."""

    def __init__(self, public_key: str, private_key_pem: str, subject: str):
        self.public_key = (public_key or "").strip()
        self.private_key_pem = private_key_pem or ""
        self.subject = (subject or "").strip()

    @classmethod
    def from_settings(cls, settings: Settings) -> "VapidSigner":
        return cls(
            public_key=settings.push_vapid_public_key,
            private_key_pem=settings.push_vapid_private_key,
            subject=settings.push_vapid_subject,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.public_key and self.private_key_pem and self.subject)

    def configuration_error(self) -> Optional[str]:
        """Describe why pushes cannot be signed, or None when ready."""
        if not self.is_configured:
            return "Push credentials are not configured."
        if not is_valid_subject(self.subject):
            return 'PUSH_VAPID_SUBJECT must start with "mailto:" or "https://".'
        try:
            point = decode_base64url(self.public_key)
        except ValueError:
            point = b""
        if len(point) != 65 or point[0] != 0x04:
            return "PUSH_VAPID_PUBLIC_KEY must be a base64url uncompressed P-256 point."
        return None

    def sign(self, audience: str, now: Optional[float] = None) -> Optional[str]:
        if not self.is_configured:
            return None
        return sign_vapid_jwt(audience, self.subject, self.private_key_pem, now=now)

    def request_headers(self, token: str, ttl: int) -> Dict[str, str]:
        """Web Push headers for an empty-body notification."""
        return {
            "TTL": str(ttl),
            "Authorization": f"vapid t={token}, k={self.public_key}",
            "Crypto-Key": f"p256ecdsa={self.public_key}",
        }


def generate_vapid_keys() -> Tuple[str, str]:
    """
    Create a fresh P-256 key pair.

    Returns:
        (base64url raw public point, PKCS#8 PEM private key)
    """
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return base64url_encode(public_raw), private_pem
