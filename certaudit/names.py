"""
Distinguished name handling.

Subjects and issuers are parsed once from cryptography's ``x509.Name``
into a tagged record. Matching always uses the RFC 4514 string that
cryptography produces, never a hand-split text form.
"""

from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from cryptography.x509.oid import NameOID


def _first_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> Optional[str]:
    attributes = name.get_attributes_for_oid(oid)
    if not attributes:
        return None
    value = attributes[0].value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


@dataclass(frozen=True)
class DistinguishedName:
    """
    Parsed X.509 distinguished name.

    ``rfc4514`` is the canonical encoding used for equality checks;
    the named fields are conveniences for display.
    """
    rfc4514: str
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    common_name: Optional[str] = None

    @classmethod
    def from_x509(cls, name: x509.Name) -> "DistinguishedName":
        """
        Build a DistinguishedName from a cryptography Name object.

        Args:
            name: Parsed x509.Name

        Returns:
            DistinguishedName with canonical encoding and named fields
        """
        return cls(
            rfc4514=name.rfc4514_string(),
            country=_first_attribute(name, NameOID.COUNTRY_NAME),
            state=_first_attribute(name, NameOID.STATE_OR_PROVINCE_NAME),
            locality=_first_attribute(name, NameOID.LOCALITY_NAME),
            organization=_first_attribute(name, NameOID.ORGANIZATION_NAME),
            organizational_unit=_first_attribute(name, NameOID.ORGANIZATIONAL_UNIT_NAME),
            common_name=_first_attribute(name, NameOID.COMMON_NAME),
        )

    @classmethod
    def from_rfc4514(cls, text: str) -> "DistinguishedName":
        """
        Parse an RFC 4514 string such as ``CN=Intermediate-X,O=Example``.

        The string is round-tripped through cryptography so that the
        stored encoding is canonical.

        Args:
            text: RFC 4514 distinguished name

        Returns:
            DistinguishedName
        """
        return cls.from_x509(x509.Name.from_rfc4514_string(text))

    @property
    def normalized(self) -> str:
        """Canonical form used for issuer/subject matching."""
        return self.rfc4514

    def __str__(self) -> str:
        return self.rfc4514
