"""
Crypto engine boundary.

Everything the audit needs from X.509 parsing goes through ``CryptoEngine``:
certificate, CSR and private-key introspection. Two implementations ship:

- CryptographyEngine: native parsing with the ``cryptography`` package
- OpenSSLEngine: shells out to the ``openssl`` binary for decoding and
  decryption, the way operators check key material by hand

Both produce the same public-key fingerprints, so results are comparable
regardless of the engine in use.
"""

import hashlib
import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, List, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa

from .logger import get_logger
from .names import DistinguishedName


PEM_MARKER = b"-----BEGIN"


class CryptoEngineError(Exception):
    """Raised when the crypto engine cannot process its input."""
    pass


class MalformedInputError(CryptoEngineError):
    """Raised when input bytes are not a parseable certificate, CSR or key."""
    pass


class DecryptError(CryptoEngineError):
    """Raised when a private key cannot be decrypted with the given passphrase."""
    pass


class EngineUnavailableError(CryptoEngineError):
    """Raised when the engine's backing tool cannot be used at all."""
    pass


@dataclass
class CertificateDetails:
    """Attributes extracted from a single certificate."""
    subject: DistinguishedName
    issuer: DistinguishedName
    not_after: Optional[datetime]
    fingerprint: Optional[str]
    san: List[str] = field(default_factory=list)
    is_ca: bool = False


@dataclass
class CsrDetails:
    """Attributes extracted from a certificate signing request."""
    subject: DistinguishedName
    fingerprint: Optional[str]
    san: List[str] = field(default_factory=list)


@dataclass
class KeyDetails:
    """Attributes extracted from a decoded private key."""
    fingerprint: str
    key_type: str


def public_key_fingerprint(public_key) -> str:
    """
    Compute a comparable fingerprint for a public key.

    RSA keys use the modulus in upper-case hex (the value printed by
    ``openssl x509 -noout -modulus``). Every other algorithm uses the
    SHA-256 digest of the DER SubjectPublicKeyInfo.

    Args:
        public_key: cryptography public key object

    Returns:
        Fingerprint string prefixed with its scheme
    """
    if isinstance(public_key, rsa.RSAPublicKey):
        return "rsa:" + format(public_key.public_numbers().n, "X")

    der = public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return "spki-sha256:" + hashlib.sha256(der).hexdigest()


def describe_key_type(public_key) -> str:
    """Short human-readable key type, e.g. ``RSA-2048`` or ``EC-secp256r1``."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return f"RSA-{public_key.key_size}"
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return f"EC-{public_key.curve.name}"
    if isinstance(public_key, dsa.DSAPublicKey):
        return f"DSA-{public_key.key_size}"
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return "Ed25519"
    if isinstance(public_key, ed448.Ed448PublicKey):
        return "Ed448"
    return type(public_key).__name__


def _subject_alt_names(extensions: x509.Extensions) -> List[str]:
    try:
        ext = extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []

    names = list(ext.value.get_values_for_type(x509.DNSName))
    names.extend(str(ip) for ip in ext.value.get_values_for_type(x509.IPAddress))
    return names


def _fingerprint_or_none(subject_obj) -> Optional[str]:
    try:
        return public_key_fingerprint(subject_obj.public_key())
    except (UnsupportedAlgorithm, ValueError) as e:
        get_logger().debug(f"Public key not extractable: {e}")
        return None


def _is_ca(extensions: x509.Extensions) -> bool:
    try:
        ext = extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return False
    return ext.value.ca


# Extension parsing is lazy and can fail on certificates that otherwise load
EXTENSION_ERRORS = (ValueError, x509.DuplicateExtension, x509.UnsupportedGeneralNameType)


def _certificate_details(cert: x509.Certificate, fingerprint: Optional[str]) -> CertificateDetails:
    try:
        extensions = cert.extensions
        san = _subject_alt_names(extensions)
        is_ca = _is_ca(extensions)
    except EXTENSION_ERRORS as e:
        get_logger().debug(f"Certificate extensions not readable: {e}")
        san = []
        is_ca = False

    return CertificateDetails(
        subject=DistinguishedName.from_x509(cert.subject),
        issuer=DistinguishedName.from_x509(cert.issuer),
        not_after=cert.not_valid_after_utc,
        fingerprint=fingerprint,
        san=san,
        is_ca=is_ca,
    )


def _csr_details(csr: x509.CertificateSigningRequest, fingerprint: Optional[str]) -> CsrDetails:
    try:
        san = _subject_alt_names(csr.extensions)
    except EXTENSION_ERRORS:
        san = []

    return CsrDetails(
        subject=DistinguishedName.from_x509(csr.subject),
        fingerprint=fingerprint,
        san=san,
    )


class CryptoEngine(ABC):
    """Capability interface for certificate, CSR and key introspection."""

    name = "abstract"

    @abstractmethod
    def parse_certificate(self, data: bytes) -> CertificateDetails:
        """
        Parse a single certificate (PEM or DER).

        Raises:
            MalformedInputError: If the bytes are not a certificate
        """
        pass

    @abstractmethod
    def parse_csr(self, data: bytes) -> CsrDetails:
        """
        Parse a certificate signing request (PEM or DER).

        Raises:
            MalformedInputError: If the bytes are not a CSR
        """
        pass

    @abstractmethod
    def parse_private_key(self, data: bytes, passphrase: Optional[str] = None) -> KeyDetails:
        """
        Decode a private key, decrypting it with ``passphrase`` if needed.

        Raises:
            DecryptError: If the key is encrypted and the passphrase is wrong or missing
            MalformedInputError: If the bytes are not a private key
        """
        pass


class CryptographyEngine(CryptoEngine):
    """Engine backed by the ``cryptography`` package."""

    name = "cryptography"

    def parse_certificate(self, data: bytes) -> CertificateDetails:
        try:
            if PEM_MARKER in data:
                cert = x509.load_pem_x509_certificate(data)
            else:
                cert = x509.load_der_x509_certificate(data)
        except ValueError as e:
            raise MalformedInputError(f"Not a valid certificate: {e}")

        return _certificate_details(cert, _fingerprint_or_none(cert))

    def parse_csr(self, data: bytes) -> CsrDetails:
        try:
            if PEM_MARKER in data:
                csr = x509.load_pem_x509_csr(data)
            else:
                csr = x509.load_der_x509_csr(data)
        except ValueError as e:
            raise MalformedInputError(f"Not a valid CSR: {e}")

        return _csr_details(csr, _fingerprint_or_none(csr))

    def parse_private_key(self, data: bytes, passphrase: Optional[str] = None) -> KeyDetails:
        loader = (
            serialization.load_pem_private_key
            if PEM_MARKER in data
            else serialization.load_der_private_key
        )
        password = passphrase.encode("utf-8") if passphrase is not None else None

        try:
            key = loader(data, password=password)
        except TypeError as e:
            if password is None:
                # Encrypted key and no passphrase
                raise DecryptError(str(e))
            # Passphrase supplied for an unencrypted key
            try:
                key = loader(data, password=None)
            except (TypeError, ValueError) as inner:
                raise MalformedInputError(f"Not a valid private key: {inner}")
        except ValueError as e:
            if password is not None:
                raise DecryptError(f"Could not decrypt private key: {e}")
            raise MalformedInputError(f"Not a valid private key: {e}")
        except UnsupportedAlgorithm as e:
            raise MalformedInputError(f"Unsupported private key algorithm: {e}")

        public_key = key.public_key()
        return KeyDetails(
            fingerprint=public_key_fingerprint(public_key),
            key_type=describe_key_type(public_key),
        )


@contextmanager
def passphrase_file(passphrase: str) -> Iterator[str]:
    """
    Write a passphrase to a private temporary file for ``-passin file:``.

    The file is created 0600, overwritten and deleted on exit, including
    when the body raises.

    Args:
        passphrase: Passphrase text

    Yields:
        Path to the temporary file
    """
    secret = passphrase.encode("utf-8")
    fd, path = tempfile.mkstemp(prefix="certaudit_pass_", suffix=".txt")
    try:
        os.chmod(path, 0o600)
        os.write(fd, secret)
        os.close(fd)
        fd = None
        yield path
    finally:
        if fd is not None:
            os.close(fd)
        if os.path.exists(path):
            with open(path, "r+b") as f:
                f.write(b"\0" * len(secret))
            os.unlink(path)


class OpenSSLEngine(CryptoEngine):
    """
    Engine that delegates decoding and decryption to the ``openssl`` binary.

    Input is passed on stdin and passphrases through a temporary file, so
    nothing sensitive appears on the command line and openssl never
    prompts. The PEM that openssl emits is read back with ``cryptography``
    for name and extension parsing.
    """

    name = "openssl"

    def __init__(self, openssl_path: Optional[str] = None, timeout: int = 30):
        """
        Initialize the engine.

        Args:
            openssl_path: Path to the openssl binary (default: looked up on PATH)
            timeout: Per-invocation timeout in seconds

        Raises:
            EngineUnavailableError: If openssl cannot be found
        """
        path = openssl_path or shutil.which("openssl")
        if not path or not os.path.exists(path):
            raise EngineUnavailableError(
                "OpenSSL not found. Install openssl or use the 'cryptography' engine"
            )
        self.openssl_path = path
        self.timeout = timeout
        self.logger = get_logger()

    def _run(self, args: List[str], data: bytes) -> bytes:
        cmd = [self.openssl_path] + args
        self.logger.debug(f"Running: openssl {' '.join(args)}")

        try:
            result = subprocess.run(
                cmd,
                input=data,
                capture_output=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise EngineUnavailableError(f"OpenSSL could not be executed: {e}")
        except subprocess.TimeoutExpired:
            raise CryptoEngineError(f"openssl {args[0]} timed out after {self.timeout}s")

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise CryptoEngineError(stderr or f"openssl {args[0]} exited with {result.returncode}")

        return result.stdout

    @staticmethod
    def _inform(data: bytes) -> str:
        return "PEM" if PEM_MARKER in data else "DER"

    def _public_key_fingerprint(self, pubkey_pem: bytes) -> str:
        return public_key_fingerprint(serialization.load_pem_public_key(pubkey_pem))

    def parse_certificate(self, data: bytes) -> CertificateDetails:
        try:
            pem = self._run(["x509", "-inform", self._inform(data), "-outform", "PEM"], data)
            pubkey = self._run(["x509", "-noout", "-pubkey"], pem)
        except EngineUnavailableError:
            raise
        except CryptoEngineError as e:
            raise MalformedInputError(f"Not a valid certificate: {e}")

        cert = x509.load_pem_x509_certificate(pem)
        return _certificate_details(cert, self._public_key_fingerprint(pubkey))

    def parse_csr(self, data: bytes) -> CsrDetails:
        try:
            pem = self._run(["req", "-inform", self._inform(data), "-outform", "PEM"], data)
            pubkey = self._run(["req", "-noout", "-pubkey"], pem)
        except EngineUnavailableError:
            raise
        except CryptoEngineError as e:
            raise MalformedInputError(f"Not a valid CSR: {e}")

        csr = x509.load_pem_x509_csr(pem)
        return _csr_details(csr, self._public_key_fingerprint(pubkey))

    def parse_private_key(self, data: bytes, passphrase: Optional[str] = None) -> KeyDetails:
        args = ["pkey", "-inform", self._inform(data), "-pubout"]

        try:
            if passphrase is None:
                # Empty passphrase keeps openssl from opening the terminal
                pubkey = self._run(args + ["-passin", "pass:"], data)
            else:
                with passphrase_file(passphrase) as pass_path:
                    pubkey = self._run(args + ["-passin", f"file:{pass_path}"], data)
        except EngineUnavailableError:
            raise
        except CryptoEngineError as e:
            message = str(e).lower()
            encrypted = b"ENCRYPTED" in data
            if passphrase is not None or encrypted or "decrypt" in message or "pass" in message:
                raise DecryptError(f"Could not decrypt private key: {e}")
            raise MalformedInputError(f"Not a valid private key: {e}")

        public_key = serialization.load_pem_public_key(pubkey)
        return KeyDetails(
            fingerprint=public_key_fingerprint(public_key),
            key_type=describe_key_type(public_key),
        )


ENGINES = ("cryptography", "openssl")


def create_engine(
    name: str = "cryptography",
    openssl_path: Optional[str] = None,
    timeout: int = 30,
) -> CryptoEngine:
    """
    Create a crypto engine by name.

    Args:
        name: "cryptography" or "openssl"
        openssl_path: Optional path to the openssl binary
        timeout: openssl invocation timeout in seconds

    Returns:
        CryptoEngine instance

    Raises:
        ValueError: If the engine name is unknown
        EngineUnavailableError: If the openssl engine is requested but unusable
    """
    if name == "cryptography":
        return CryptographyEngine()
    if name == "openssl":
        return OpenSSLEngine(openssl_path=openssl_path, timeout=timeout)
    raise ValueError(f"Unknown crypto engine '{name}'. Must be one of: {', '.join(ENGINES)}")
