import asyncio
import datetime
import socket
import ssl

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from wsbridge.certificate import embedded_certificate
from wsbridge.tls import (
    cn_from_certificate,
    find_leaf_certificate,
    load_certificates_from_pem,
    load_private_key_from_file,
    tls_client_context,
    tls_connect,
    tls_server_context,
)


def _make_cert(common_name, *, is_ca, issuer=None):
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer_cert, issuer_key = issuer if issuer else (None, key)
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_cert.subject if issuer_cert else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
    )
    if is_ca:
        builder = builder.add_extension(
            x509.BasicConstraints(ca=True, path_length=None), critical=True
        )
    return builder.sign(issuer_key, hashes.SHA256()), key


def _der(cert):
    return cert.public_bytes(serialization.Encoding.DER)


def _cert_pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM)


def _key_pem(key, fmt=serialization.PrivateFormat.PKCS8):
    return key.private_bytes(
        serialization.Encoding.PEM, fmt, serialization.NoEncryption()
    )


def test_load_certificates_round_trip(tmp_path):
    first, _ = _make_cert("one", is_ca=True)
    second, _ = _make_cert("two", is_ca=False)
    path = tmp_path / "chain.pem"
    path.write_bytes(_cert_pem(first) + _cert_pem(second))

    assert load_certificates_from_pem(path) == [_der(first), _der(second)]


def test_load_certificates_skips_broken_block(tmp_path):
    good, _ = _make_cert("good", is_ca=False)
    path = tmp_path / "chain.pem"
    broken = b"-----BEGIN CERTIFICATE-----\n!!!!\n-----END CERTIFICATE-----\n"
    path.write_bytes(broken + _cert_pem(good))

    assert load_certificates_from_pem(path) == [_der(good)]


def test_load_certificates_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_certificates_from_pem(tmp_path / "missing.pem")


@pytest.mark.parametrize(
    "fmt",
    [serialization.PrivateFormat.PKCS8, serialization.PrivateFormat.TraditionalOpenSSL],
)
def test_load_private_key_round_trip(tmp_path, fmt):
    _, key = _make_cert("k", is_ca=False)
    path = tmp_path / "key.pem"
    path.write_bytes(_key_pem(key, fmt))

    der = load_private_key_from_file(path)
    loaded = serialization.load_der_private_key(der, password=None)
    assert loaded.private_numbers().private_value == key.private_numbers().private_value


def test_load_private_key_ignores_certificates(tmp_path):
    cert, key = _make_cert("k", is_ca=False)
    path = tmp_path / "both.pem"
    path.write_bytes(_cert_pem(cert) + _key_pem(key))

    der = load_private_key_from_file(path)
    loaded = serialization.load_der_private_key(der, password=None)
    assert loaded.private_numbers().private_value == key.private_numbers().private_value


def test_load_private_key_missing_key(tmp_path):
    cert, _ = _make_cert("k", is_ca=False)
    path = tmp_path / "cert.pem"
    path.write_bytes(_cert_pem(cert))

    with pytest.raises(ValueError, match="No private key found"):
        load_private_key_from_file(path)


def test_find_leaf_certificate_skips_ca_and_garbage():
    ca, ca_key = _make_cert("authority", is_ca=True)
    leaf, _ = _make_cert("client-name", is_ca=False, issuer=(ca, ca_key))

    found = find_leaf_certificate([b"garbage", _der(ca), _der(leaf)])

    assert found is not None
    assert found.serial_number == leaf.serial_number
    assert cn_from_certificate(found) == "client-name"


def test_find_leaf_certificate_none_when_only_ca():
    ca, _ = _make_cert("authority", is_ca=True)
    assert find_leaf_certificate([_der(ca)]) is None


def test_cn_missing_on_embedded_certificate():
    certificates, _ = embedded_certificate()
    leaf = find_leaf_certificate(certificates)
    assert leaf is not None
    assert cn_from_certificate(leaf) is None


def test_server_context_rejects_mismatched_key(tmp_path):
    cert, _ = _make_cert("server", is_ca=False)
    _, other_key = _make_cert("other", is_ca=False)
    cert_path = tmp_path / "cert.pem"
    key_path = tmp_path / "key.pem"
    cert_path.write_bytes(_cert_pem(cert))
    key_path.write_bytes(_key_pem(other_key))

    with pytest.raises(ValueError, match="invalid tls certificate or private key"):
        tls_server_context(cert_path, key_path)


def test_server_context_requires_client_ca_certificates(tmp_path):
    empty = tmp_path / "empty.pem"
    empty.write_bytes(b"")
    with pytest.raises(ValueError, match="mTLS"):
        tls_server_context(client_ca_path=empty)


def test_server_context_with_client_ca_requires_certificates(tmp_path):
    ca, _ = _make_cert("authority", is_ca=True)
    ca_path = tmp_path / "ca.pem"
    ca_path.write_bytes(_cert_pem(ca))

    context = tls_server_context(client_ca_path=ca_path)
    assert context.verify_mode == ssl.CERT_REQUIRED


async def _echo_upper(reader, writer):
    data = await reader.readexactly(4)
    writer.write(data.upper())
    await writer.drain()
    writer.close()


@pytest.mark.asyncio
async def test_handshake_with_embedded_certificate():
    server_ctx = tls_server_context(alpn_protocols=["h2", "http/1.1"])
    server = await asyncio.start_server(_echo_upper, "127.0.0.1", 0, ssl=server_ctx)
    port = server.sockets[0].getsockname()[1]
    try:
        client_ctx = tls_client_context(False, [b"http/1.1"])
        sock = socket.create_connection(("127.0.0.1", port))
        reader, writer = await tls_connect(sock, client_ctx, "localhost", 5)
        ssl_object = writer.get_extra_info("ssl_object")

        assert ssl_object.selected_alpn_protocol() == "http/1.1"
        assert ssl_object.getpeercert(binary_form=True) == embedded_certificate()[0][0]

        writer.write(b"ping")
        assert await reader.readexactly(4) == b"PING"
        writer.close()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_verification_rejects_self_signed_server():
    server_ctx = tls_server_context()
    server = await asyncio.start_server(_echo_upper, "127.0.0.1", 0, ssl=server_ctx)
    port = server.sockets[0].getsockname()[1]
    try:
        client_ctx = tls_client_context(True)
        sock = socket.create_connection(("127.0.0.1", port))
        with pytest.raises(ssl.SSLCertVerificationError):
            await tls_connect(sock, client_ctx, "localhost", 5)
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_mutual_tls_handshake(tmp_path):
    ca, ca_key = _make_cert("authority", is_ca=True)
    leaf, leaf_key = _make_cert("client-name", is_ca=False, issuer=(ca, ca_key))
    ca_path = tmp_path / "ca.pem"
    cert_path = tmp_path / "client.pem"
    key_path = tmp_path / "client.key"
    ca_path.write_bytes(_cert_pem(ca))
    cert_path.write_bytes(_cert_pem(leaf))
    key_path.write_bytes(_key_pem(leaf_key))

    server_ctx = tls_server_context(client_ca_path=ca_path)
    server = await asyncio.start_server(_echo_upper, "127.0.0.1", 0, ssl=server_ctx)
    port = server.sockets[0].getsockname()[1]
    try:
        client_ctx = tls_client_context(False, (), cert_path, key_path)
        sock = socket.create_connection(("127.0.0.1", port))
        reader, writer = await tls_connect(sock, client_ctx, "localhost", 5)
        writer.write(b"mtls")
        assert await reader.readexactly(4) == b"MTLS"
        writer.close()
    finally:
        server.close()
        await server.wait_closed()