"""TLS helpers: PEM loading, certificate inspection and SSL contexts."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import socket
import ssl
import tempfile
from collections.abc import Iterator, Sequence
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from .certificate import embedded_certificate

log = logging.getLogger(__name__)

_BEGIN = b"-----BEGIN "
_DASHES = b"-----"
_KEY_LABELS = frozenset({b"PRIVATE KEY", b"RSA PRIVATE KEY", b"EC PRIVATE KEY"})

PathLike = str | os.PathLike[str]


def _pem_blocks(data: bytes) -> Iterator[tuple[bytes, bytes | None]]:
    """Yield ``(label, der)`` for each PEM block; ``der`` is None if undecodable."""
    position = 0
    while (start := data.find(_BEGIN, position)) != -1:
        label_start = start + len(_BEGIN)
        label_end = data.find(_DASHES, label_start)
        if label_end == -1:
            return
        label = data[label_start:label_end]
        body_start = label_end + len(_DASHES)
        end_marker = b"-----END " + label + _DASHES
        body_end = data.find(end_marker, body_start)
        if body_end == -1:
            return
        position = body_end + len(end_marker)
        body = b"".join(data[body_start:body_end].split())
        try:
            yield label, base64.b64decode(body, validate=True)
        except binascii.Error:
            yield label, None


def load_certificates_from_pem(path: PathLike) -> list[bytes]:
    """Read every certificate of a PEM file as DER, skipping broken blocks."""
    log.info("Loading tls certificate from %s", path)
    data = Path(path).read_bytes()

    certificates = []
    for label, der in _pem_blocks(data):
        if label != b"CERTIFICATE":
            continue
        if der is None:
            log.warning("Error while parsing tls certificate: invalid base64 content")
            continue
        certificates.append(der)
    return certificates


def load_private_key_from_file(path: PathLike) -> bytes:
    """Read the first PKCS#8, PKCS#1 or SEC1 private key of a PEM file as DER."""
    log.info("Loading tls private key from %s", path)
    data = Path(path).read_bytes()

    for label, der in _pem_blocks(data):
        if label not in _KEY_LABELS:
            continue
        if der is None:
            raise ValueError(f"invalid private key encoding in {path}")
        return der
    raise ValueError(f"No private key found in {path}")


def _is_ca(certificate: x509.Certificate) -> bool:
    try:
        constraints = certificate.extensions.get_extension_for_class(x509.BasicConstraints)
    except (x509.ExtensionNotFound, ValueError):
        return False
    return constraints.value.ca


def find_leaf_certificate(certificates: Sequence[bytes]) -> x509.Certificate | None:
    """Return the first parseable DER certificate that is not a CA."""
    for der in certificates:
        try:
            certificate = x509.load_der_x509_certificate(der)
        except ValueError:
            continue
        if not _is_ca(certificate):
            return certificate
    return None


def cn_from_certificate(certificate: x509.Certificate) -> str | None:
    """Return the subject's first common name, if any."""
    for attribute in certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME):
        if isinstance(attribute.value, str):
            return attribute.value
    return None


def _key_to_pem(key_der: bytes) -> bytes:
    key = serialization.load_der_private_key(key_der, password=None)
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def _load_chain(context: ssl.SSLContext, certificates: Sequence[bytes], key_der: bytes) -> None:
    chain_pem = "".join(ssl.DER_cert_to_PEM_cert(der) for der in certificates)
    key_pem = _key_to_pem(key_der)
    with tempfile.TemporaryDirectory() as directory:
        cert_file = Path(directory, "cert.pem")
        key_file = Path(directory, "key.pem")
        cert_file.write_text(chain_pem, encoding="ascii")
        key_file.write_bytes(key_pem)
        key_file.chmod(0o600)
        context.load_cert_chain(cert_file, key_file)


def _alpn(protocols: Sequence[bytes | str]) -> list[str]:
    return [p.decode("ascii") if isinstance(p, bytes) else p for p in protocols]


def _enable_keylog(context: ssl.SSLContext) -> None:
    keylog = os.environ.get("SSLKEYLOGFILE")
    if keylog:
        context.keylog_filename = keylog


def tls_client_context(
    verify_certificate: bool,
    alpn_protocols: Sequence[bytes | str] = (),
    certificate_path: PathLike | None = None,
    key_path: PathLike | None = None,
) -> ssl.SSLContext:
    """Build a client context; without verification any server certificate is accepted."""
    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    if not verify_certificate:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if alpn_protocols:
        context.set_alpn_protocols(_alpn(alpn_protocols))

    if certificate_path is not None and key_path is not None:
        certificates = load_certificates_from_pem(certificate_path)
        key_der = load_private_key_from_file(key_path)
        try:
            _load_chain(context, certificates, key_der)
        except (ssl.SSLError, ValueError) as err:
            raise ValueError("Error setting up mTLS") from err
    _enable_keylog(context)
    return context


def tls_server_context(
    certificate_path: PathLike | None = None,
    key_path: PathLike | None = None,
    client_ca_path: PathLike | None = None,
    alpn_protocols: Sequence[bytes | str] | None = None,
) -> ssl.SSLContext:
    """Build a server context, falling back to the embedded self-signed certificate.

    With ``client_ca_path`` clients must present a certificate signed by one
    of the CAs in that file.
    """
    if certificate_path is not None:
        certificates = load_certificates_from_pem(certificate_path)
    else:
        certificates = embedded_certificate()[0]
    if key_path is not None:
        key_der = load_private_key_from_file(key_path)
    else:
        key_der = embedded_certificate()[1]

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)

    if client_ca_path is not None:
        ca_certificates = load_certificates_from_pem(client_ca_path)
        if not ca_certificates:
            raise ValueError("Failed to build mTLS client verifier: no CA certificate")
        try:
            context.load_verify_locations(cadata=b"".join(ca_certificates))
        except ssl.SSLError as err:
            raise ValueError("Failed to add mTLS client CA certificate") from err
        context.verify_mode = ssl.CERT_REQUIRED
    else:
        context.verify_mode = ssl.CERT_NONE

    try:
        _load_chain(context, certificates, key_der)
    except (ssl.SSLError, ValueError) as err:
        raise ValueError("invalid tls certificate or private key") from err

    _enable_keylog(context)
    if alpn_protocols is not None:
        context.set_alpn_protocols(_alpn(alpn_protocols))
    return context


async def tls_connect(
    sock: socket.socket,
    context: ssl.SSLContext,
    server_hostname: str | None = None,
    timeout: float | None = 10.0,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Run a TLS handshake over a connected socket.

    ``server_hostname`` is sent as SNI; ``None`` sends no SNI.
    """
    peer = sock.getpeername()
    if server_hostname:
        log.info("Doing TLS handshake using SNI %r with the server %s", server_hostname, peer)
    else:
        log.info("Doing TLS handshake without SNI with the server %s", peer)

    return await asyncio.open_connection(
        sock=sock,
        ssl=context,
        server_hostname=server_hostname or "",
        ssl_handshake_timeout=timeout,
    )