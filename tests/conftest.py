"""
Shared fixtures: real keys, certificates and CSRs generated with cryptography.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from certaudit.logger import setup_logger


@pytest.fixture(autouse=True, scope="session")
def quiet_logger():
    """Plain, uncolored logger for the whole test session."""
    return setup_logger(verbose=True, use_colors=False)


class PKIFactory:
    """Builds and writes test PKI material."""

    def __init__(self):
        # RSA generation is slow, so a small pool is reused across a test
        self._rsa_keys: List[rsa.RSAPrivateKey] = []

    def rsa_key(self, index: int = 0) -> rsa.RSAPrivateKey:
        while len(self._rsa_keys) <= index:
            self._rsa_keys.append(rsa.generate_private_key(public_exponent=65537, key_size=2048))
        return self._rsa_keys[index]

    @staticmethod
    def ec_key() -> ec.EllipticCurvePrivateKey:
        return ec.generate_private_key(ec.SECP256R1())

    @staticmethod
    def name(common_name: str, organization: Optional[str] = None) -> x509.Name:
        attributes = []
        if organization:
            attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
        return x509.Name(attributes)

    def certificate(
        self,
        subject: str,
        issuer: str,
        key,
        signing_key=None,
        days: int = 365,
        san: Optional[List[str]] = None,
        organization: Optional[str] = None,
        ca: bool = False,
    ) -> x509.Certificate:
        now = datetime.now(timezone.utc)
        builder = (
            x509.CertificateBuilder()
            .subject_name(self.name(subject, organization))
            .issuer_name(self.name(issuer, organization))
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=days))
        )
        if san:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(n) for n in san]),
                critical=False,
            )
        if ca:
            builder = builder.add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        return builder.sign(signing_key or key, hashes.SHA256())

    def csr(self, common_name: str, key, san: Optional[List[str]] = None) -> x509.CertificateSigningRequest:
        builder = x509.CertificateSigningRequestBuilder().subject_name(self.name(common_name))
        if san:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(n) for n in san]),
                critical=False,
            )
        return builder.sign(key, hashes.SHA256())

    @staticmethod
    def cert_pem(cert: x509.Certificate) -> bytes:
        return cert.public_bytes(serialization.Encoding.PEM)

    @staticmethod
    def write_certs(path: Path, *certs: x509.Certificate) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs))
        return path

    @staticmethod
    def write_der_cert(path: Path, cert: x509.Certificate) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(cert.public_bytes(serialization.Encoding.DER))
        return path

    @staticmethod
    def write_key(path: Path, key, passphrase: Optional[str] = None, traditional: bool = False) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        encryption = (
            serialization.BestAvailableEncryption(passphrase.encode())
            if passphrase
            else serialization.NoEncryption()
        )
        fmt = (
            serialization.PrivateFormat.TraditionalOpenSSL
            if traditional
            else serialization.PrivateFormat.PKCS8
        )
        path.write_bytes(key.private_bytes(serialization.Encoding.PEM, fmt, encryption))
        return path

    @staticmethod
    def write_csr(path: Path, csr: x509.CertificateSigningRequest) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(csr.public_bytes(serialization.Encoding.PEM))
        return path


@pytest.fixture(scope="session")
def pki() -> PKIFactory:
    """Session-wide PKI factory (RSA keys are cached)."""
    return PKIFactory()


@pytest.fixture
def server_set(tmp_path, pki):
    """
    A matching cert/key/CSR set issued by "Intermediate-X", plus the
    intermediate itself, in ``tmp_path/acme/www``.
    """
    ca_key = pki.rsa_key(1)
    server_key = pki.rsa_key(0)
    server_dir = tmp_path / "acme" / "www"

    intermediate = pki.certificate("Intermediate-X", "Root-R", ca_key, ca=True)
    leaf = pki.certificate("www.example.com", "Intermediate-X", server_key, ca_key, san=["www.example.com"])

    return {
        "dir": server_dir,
        "cert": pki.write_certs(server_dir / "server.crt", leaf),
        "key": pki.write_key(server_dir / "server.key", server_key),
        "csr": pki.write_csr(server_dir / "server.csr", pki.csr("www.example.com", server_key)),
        "intermediate": pki.write_certs(server_dir / "intermediate.crt", intermediate),
        "leaf_cert": leaf,
        "intermediate_cert": intermediate,
        "server_key": server_key,
    }
