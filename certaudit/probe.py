"""
Certificate, key and CSR introspection.

CryptoProbe reads one file at a time and turns it into an immutable
artifact record. The ``*_safe`` variants are the per-artifact error
boundary used by the audit: they never raise ProbeError, returning an
artifact with ``error`` set and no fingerprint instead.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

from .engine import (
    PEM_MARKER,
    CryptoEngine,
    CryptographyEngine,
    DecryptError,
    MalformedInputError,
)
from .helpers import CERTIFICATE_LABEL, count_certificate_blocks, read_head, split_pem_blocks
from .logger import get_logger
from .names import DistinguishedName


PathLike = Union[str, Path]

# Encryption detection looks at this many leading lines
ENCRYPTION_HEADER_LINES = 40

ENCRYPTION_MARKERS = (
    "ENCRYPTED PRIVATE KEY",
    "Proc-Type: 4,ENCRYPTED",
)

_ENCRYPTED_TOKEN_RE = re.compile(r"\bENCRYPTED\b")


class ProbeError(Exception):
    """Base class for per-artifact probe failures."""
    pass


class UnreadableFileError(ProbeError):
    """Raised when a file cannot be read from disk."""
    pass


class UnsupportedFormatError(ProbeError):
    """Raised when file contents are not a recognizable container."""
    pass


class NoUsablePassphraseError(ProbeError):
    """Raised when no candidate passphrase decrypts an encrypted key."""

    def __init__(self, path: PathLike, attempts: int):
        self.path = Path(path)
        self.attempts = attempts
        super().__init__(
            f"No usable passphrase for {self.path.name} "
            f"({attempts} candidate{'s' if attempts != 1 else ''} tried)"
        )


class CertFormat(Enum):
    """Container format of a certificate file."""
    PEM = "PEM"
    DER = "DER"
    PKCS7 = "PKCS7"


@dataclass(frozen=True)
class CertificateArtifact:
    """Probed certificate file. The first certificate block is the leaf."""
    path: Path
    format: Optional[CertFormat]
    block_count: int = 0
    subject: Optional[DistinguishedName] = None
    issuer: Optional[DistinguishedName] = None
    not_after: Optional[datetime] = None
    fingerprint: Optional[str] = None
    has_embedded_private_key: bool = False
    san: Tuple[str, ...] = ()
    is_ca: bool = False
    error: Optional[str] = None

    @property
    def subject_normalized(self) -> Optional[str]:
        return self.subject.normalized if self.subject else None

    @property
    def issuer_normalized(self) -> Optional[str]:
        return self.issuer.normalized if self.issuer else None

    @property
    def has_fingerprint(self) -> bool:
        return self.fingerprint is not None


@dataclass(frozen=True)
class KeyArtifact:
    """Probed private key file. Passphrases are never stored here."""
    path: Path
    is_encrypted: bool = False
    fingerprint: Optional[str] = None
    key_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def has_fingerprint(self) -> bool:
        return self.fingerprint is not None


@dataclass(frozen=True)
class CsrArtifact:
    """Probed certificate signing request."""
    path: Path
    subject: Optional[DistinguishedName] = None
    fingerprint: Optional[str] = None
    san: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def has_fingerprint(self) -> bool:
        return self.fingerprint is not None


def detect_encryption(header_text: str) -> bool:
    """
    Textual check for an encrypted private key.

    Args:
        header_text: Leading lines of the key file

    Returns:
        True if an encryption marker or the ENCRYPTED token is present
    """
    if any(marker in header_text for marker in ENCRYPTION_MARKERS):
        return True
    return bool(_ENCRYPTED_TOKEN_RE.search(header_text))


def _read_bytes(path: Path) -> bytes:
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise UnreadableFileError(f"Cannot read {path}: {e}")

    if not data.strip():
        raise UnsupportedFormatError(f"{path.name} is empty")
    return data


class CryptoProbe:
    """
    Extracts artifact records from certificate, key and CSR files.

    All parsing goes through the injected CryptoEngine.
    """

    def __init__(self, engine: Optional[CryptoEngine] = None):
        self.engine = engine or CryptographyEngine()
        self.logger = get_logger()

    def probe_certificate(self, path: PathLike) -> CertificateArtifact:
        """
        Probe a certificate file.

        PEM files are recognised by their BEGIN marker and their
        certificate blocks are counted; PKCS7 bundles are recorded without
        being decomposed; anything else is read as DER.

        Args:
            path: Certificate file

        Returns:
            CertificateArtifact

        Raises:
            UnreadableFileError: If the file cannot be read
            UnsupportedFormatError: If no certificate can be parsed
        """
        path = Path(path)
        data = _read_bytes(path)

        if PEM_MARKER not in data:
            details = self._parse_certificate(path, data)
            return CertificateArtifact(
                path=path,
                format=CertFormat.DER,
                block_count=1,
                subject=details.subject,
                issuer=details.issuer,
                not_after=details.not_after,
                fingerprint=details.fingerprint,
                san=tuple(details.san),
                is_ca=details.is_ca,
            )

        text = data.decode("utf-8", errors="ignore")
        has_private_key = "PRIVATE KEY-----" in text

        if "-----BEGIN PKCS7-----" in text:
            self.logger.debug(f"{path.name}: PKCS7 bundle, chain status unknown")
            return CertificateArtifact(
                path=path,
                format=CertFormat.PKCS7,
                block_count=count_certificate_blocks(text),
                has_embedded_private_key=has_private_key,
            )

        block_count = count_certificate_blocks(text)
        blocks = split_pem_blocks(text, CERTIFICATE_LABEL)
        if block_count == 0 or not blocks:
            raise UnsupportedFormatError(f"{path.name} contains no certificate block")

        details = self._parse_certificate(path, blocks[0].encode("ascii", errors="ignore"))
        self.logger.debug(
            f"{path.name}: PEM, {block_count} certificate block(s), subject {details.subject}"
        )

        return CertificateArtifact(
            path=path,
            format=CertFormat.PEM,
            block_count=block_count,
            subject=details.subject,
            issuer=details.issuer,
            not_after=details.not_after,
            fingerprint=details.fingerprint,
            has_embedded_private_key=has_private_key,
            san=tuple(details.san),
            is_ca=details.is_ca,
        )

    def _parse_certificate(self, path: Path, data: bytes):
        try:
            return self.engine.parse_certificate(data)
        except MalformedInputError as e:
            raise UnsupportedFormatError(f"{path.name}: {e}")

    def probe_key(
        self,
        path: PathLike,
        candidate_passphrases: Sequence[str] = (),
    ) -> KeyArtifact:
        """
        Probe a private key file.

        Unencrypted keys are decoded directly. Encrypted keys are tried
        against each candidate passphrase in order until one works.
        Nothing is ever prompted for.

        Args:
            path: Key file
            candidate_passphrases: Passphrases to try, in order

        Returns:
            KeyArtifact

        Raises:
            UnreadableFileError: If the file cannot be read
            UnsupportedFormatError: If the file is not a private key
            NoUsablePassphraseError: If the key is encrypted and no candidate decrypts it
        """
        path = Path(path)
        data = _read_bytes(path)
        is_encrypted = detect_encryption(read_head(path, ENCRYPTION_HEADER_LINES))

        if not is_encrypted:
            try:
                details = self.engine.parse_private_key(data, None)
                return KeyArtifact(
                    path=path,
                    is_encrypted=False,
                    fingerprint=details.fingerprint,
                    key_type=details.key_type,
                )
            except DecryptError:
                # Binary (DER) encrypted keys carry no textual marker
                is_encrypted = True
            except MalformedInputError as e:
                raise UnsupportedFormatError(f"{path.name}: {e}")

        for index, passphrase in enumerate(candidate_passphrases, start=1):
            try:
                details = self.engine.parse_private_key(data, passphrase)
            except DecryptError:
                continue
            except MalformedInputError as e:
                raise UnsupportedFormatError(f"{path.name}: {e}")

            self.logger.debug(f"{path.name}: decrypted with passphrase candidate #{index}")
            return KeyArtifact(
                path=path,
                is_encrypted=True,
                fingerprint=details.fingerprint,
                key_type=details.key_type,
            )

        raise NoUsablePassphraseError(path, len(candidate_passphrases))

    def probe_csr(self, path: PathLike) -> CsrArtifact:
        """
        Probe a CSR file (PEM or DER).

        Raises:
            UnreadableFileError: If the file cannot be read
            UnsupportedFormatError: If the file is not a CSR
        """
        path = Path(path)
        data = _read_bytes(path)

        try:
            details = self.engine.parse_csr(data)
        except MalformedInputError as e:
            raise UnsupportedFormatError(f"{path.name}: {e}")

        return CsrArtifact(
            path=path,
            subject=details.subject,
            fingerprint=details.fingerprint,
            san=tuple(details.san),
        )

    def probe_certificate_safe(self, path: PathLike) -> CertificateArtifact:
        """Probe a certificate, converting ProbeError into an error artifact."""
        try:
            return self.probe_certificate(path)
        except ProbeError as e:
            self.logger.warning(f"Certificate probe failed: {e}")
            return CertificateArtifact(path=Path(path), format=None, error=str(e))

    def probe_key_safe(
        self,
        path: PathLike,
        candidate_passphrases: Sequence[str] = (),
    ) -> KeyArtifact:
        """Probe a key, converting ProbeError into an error artifact."""
        try:
            return self.probe_key(path, candidate_passphrases)
        except ProbeError as e:
            self.logger.warning(f"Key probe failed: {e}")
            return KeyArtifact(
                path=Path(path),
                is_encrypted=isinstance(e, NoUsablePassphraseError),
                error=str(e),
            )

    def probe_csr_safe(self, path: PathLike) -> CsrArtifact:
        """Probe a CSR, converting ProbeError into an error artifact."""
        try:
            return self.probe_csr(path)
        except ProbeError as e:
            self.logger.warning(f"CSR probe failed: {e}")
            return CsrArtifact(path=Path(path), error=str(e))
