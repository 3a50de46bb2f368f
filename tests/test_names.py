"""Tests for DistinguishedName parsing."""

from cryptography import x509
from cryptography.x509.oid import NameOID

from certaudit.names import DistinguishedName


def test_from_x509_extracts_named_fields():
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "JP"),
        x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "Tokyo"),
        x509.NameAttribute(NameOID.LOCALITY_NAME, "Chiyoda"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Corp"),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Infra"),
        x509.NameAttribute(NameOID.COMMON_NAME, "www.example.com"),
    ])

    dn = DistinguishedName.from_x509(name)

    assert dn.country == "JP"
    assert dn.state == "Tokyo"
    assert dn.locality == "Chiyoda"
    assert dn.organization == "Example Corp"
    assert dn.organizational_unit == "Infra"
    assert dn.common_name == "www.example.com"
    assert dn.rfc4514 == name.rfc4514_string()


def test_missing_fields_are_none():
    dn = DistinguishedName.from_rfc4514("CN=Intermediate-X")

    assert dn.common_name == "Intermediate-X"
    assert dn.organization is None
    assert dn.country is None


def test_rfc4514_round_trip_is_canonical():
    dn = DistinguishedName.from_rfc4514("CN=Intermediate-X,O=Example")

    assert dn.normalized == "CN=Intermediate-X,O=Example"
    assert str(dn) == dn.normalized


def test_escaped_comma_survives_parsing():
    dn = DistinguishedName.from_rfc4514("CN=Example\\, Inc. CA")

    assert dn.common_name == "Example, Inc. CA"
    assert dn == DistinguishedName.from_rfc4514(dn.rfc4514)


def test_equal_names_compare_equal():
    a = DistinguishedName.from_rfc4514("CN=Intermediate-X")
    b = DistinguishedName.from_x509(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Intermediate-X")])
    )

    assert a == b
    assert hash(a) == hash(b)
