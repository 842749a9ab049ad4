from __future__ import annotations

import asyncio
import datetime
import ipaddress
import os
import re
import socket
import ssl
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID
from cryptography.x509.oid import NameOID

skip_windows = pytest.mark.skipif(os.name == "nt", reason="Skipping due to Windows")

CERT_EXPIRY = datetime.timedelta(days=30)


def _cert_builder(subject: x509.Name, issuer: x509.Name, public_key) -> x509.CertificateBuilder:
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = x509.CertificateBuilder()
    builder = builder.serial_number(x509.random_serial_number())
    builder = builder.subject_name(subject)
    builder = builder.issuer_name(issuer)
    builder = builder.not_valid_before(now - datetime.timedelta(days=2))
    builder = builder.not_valid_after(now + CERT_EXPIRY)
    builder = builder.public_key(public_key)
    builder = builder.add_extension(
        x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False
    )
    return builder


@dataclass
class CertAuthority:
    """A throwaway CA and leaf certificates signed by it."""

    directory: Path
    ca_key: ec.EllipticCurvePrivateKey
    ca_cert: x509.Certificate

    @classmethod
    def create(cls, directory: Path) -> CertAuthority:
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, "proxyagent test CA"),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "proxyagent"),
            ]
        )
        builder = _cert_builder(name, name, key.public_key())
        builder = builder.add_extension(
            x509.BasicConstraints(ca=True, path_length=None), critical=True
        )
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=False,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        cert = builder.sign(private_key=key, algorithm=hashes.SHA256())
        return cls(directory, key, cert)

    @property
    def ca_pem(self) -> str:
        return self.ca_cert.public_bytes(serialization.Encoding.PEM).decode()

    def leaf(self, *sans: str) -> tuple[Path, Path]:
        """Issue a server certificate for the given names, returns (certfile, keyfile)."""
        key = ec.generate_private_key(ec.SECP256R1())
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, sans[0])])
        names: list[x509.GeneralName] = []
        for x in sans:
            try:
                names.append(x509.IPAddress(ipaddress.ip_address(x)))
            except ValueError:
                names.append(x509.DNSName(x))

        builder = _cert_builder(subject, self.ca_cert.subject, key.public_key())
        builder = builder.add_extension(
            x509.BasicConstraints(ca=False, path_length=None), critical=True
        )
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(self.ca_key.public_key()),
            critical=False,
        )
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)
        cert = builder.sign(private_key=self.ca_key, algorithm=hashes.SHA256())

        certfile = self.directory / f"{sans[0]}.crt"
        keyfile = self.directory / f"{sans[0]}.key"
        certfile.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        keyfile.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        return certfile, keyfile

    def server_context(self, *sans: str, sni_log: list | None = None) -> ssl.SSLContext:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.load_cert_chain(*self.leaf(*sans))
        if sni_log is not None:

            def record_sni(ssl_object, server_name, context):
                sni_log.append(server_name)

            ctx.sni_callback = record_sni
        return ctx


@pytest.fixture(scope="session")
def tcerts(tmp_path_factory) -> CertAuthority:
    return CertAuthority.create(tmp_path_factory.mktemp("certs"))


CONNECTION_ESTABLISHED = b"HTTP/1.1 200 Connection established\r\n\r\n"


@dataclass
class FakeProxy:
    """
    A scripted forward proxy.

    It records every CONNECT request head it receives and answers with `response`.
    After a 200 it becomes the destination itself: it echoes everything back,
    optionally after a server-side TLS handshake with `destination_tls`.
    """

    response: bytes | None = CONNECTION_ESTABLISHED
    """None means never answer."""
    destination_tls: ssl.SSLContext | None = None
    heads: list[bytes] = field(default_factory=list)
    disconnected: asyncio.Event = field(default_factory=asyncio.Event)
    address: tuple[str, int] = ("127.0.0.1", 0)

    @property
    def establishes_tunnel(self) -> bool:
        assert self.response is not None
        final_head = self.response.split(b"\r\n\r\n")[-2]
        return bool(re.match(rb"HTTP/1\.[01] 200 ", final_head))

    @property
    def request_lines(self) -> list[str]:
        return [head.split(b"\r\n")[0].decode() for head in self.heads]

    def headers(self, i: int = -1) -> list[tuple[str, str]]:
        lines = self.heads[i].decode().split("\r\n")[1:]
        ret = []
        for line in lines:
            if line:
                name, value = line.split(":", 1)
                ret.append((name, value.strip()))
        return ret

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            try:
                head = await reader.readuntil(b"\r\n\r\n")
            except asyncio.IncompleteReadError:
                return
            self.heads.append(head)
            if self.response is None:
                await reader.read()
                return
            writer.write(self.response)
            await writer.drain()
            if not self.establishes_tunnel:
                await reader.read()
                return
            if self.destination_tls is not None:
                await writer.start_tls(self.destination_tls)
            while data := await reader.read(65535):
                writer.write(data)
                await writer.drain()
        except (ConnectionError, ssl.SSLError):
            pass
        finally:
            self.disconnected.set()
            writer.close()


@pytest.fixture
async def fake_proxy() -> Callable[..., Awaitable[FakeProxy]]:
    servers: list[asyncio.Server] = []

    async def start(ssl_context: ssl.SSLContext | None = None, **kwargs) -> FakeProxy:
        proxy = FakeProxy(**kwargs)
        server = await asyncio.start_server(proxy.handle, "127.0.0.1", 0, ssl=ssl_context)
        await server.start_serving()
        servers.append(server)
        proxy.address = server.sockets[0].getsockname()[:2]
        return proxy

    yield start

    for server in servers:
        server.close()


@pytest.fixture
def unused_address() -> tuple[str, int]:
    """An address nobody listens on."""
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()
