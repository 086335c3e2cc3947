"""Self-signed TLS certificate used when the server is given none."""

from __future__ import annotations

import datetime
import functools
import logging
import time

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

log = logging.getLogger(__name__)


def _date(year: int, month: int, day: int) -> datetime.datetime:
    return datetime.datetime(year, month, day, tzinfo=datetime.timezone.utc)


def generate_self_signed_certificate() -> tuple[list[bytes], bytes]:
    """Generate a fresh self-signed certificate.

    Returns the DER certificate chain (a single certificate) and the
    PKCS#8 DER private key. Validity dates are slightly randomised.
    """
    log.info("Generating self-signed tls certificate")

    start = time.perf_counter_ns()
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COUNTRY_NAME, "FR")])

    elapsed = time.perf_counter_ns() - start
    not_before = _date(2024 - elapsed % 2, 1 + elapsed % 12, 1 + elapsed % 28)

    elapsed = time.perf_counter_ns() - start
    not_after = _date(2025 + elapsed % 50, 1 + elapsed % 12, 1 + elapsed % 28)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )

    cert_der = cert.public_bytes(serialization.Encoding.DER)
    key_der = key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return [cert_der], key_der


@functools.cache
def embedded_certificate() -> tuple[list[bytes], bytes]:
    """The process-wide self-signed certificate, generated on first use."""
    return generate_self_signed_certificate()