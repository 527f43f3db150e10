# In-memory certificate authority for development webhook endpoints.
#
# A CA is a self-signed root (valid 10 years) plus its key pair. issue() mints
# leaf server certificates (valid 1 year) for localhost, the loopback addresses
# and whatever extra names the caller needs, each with a fresh key.

from __future__ import annotations
import ipaddress
import secrets
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Callable, Iterable, List, NamedTuple, Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from webhook_tools.certs.errors import EncodingError, SerialNumberError, SigningError
from webhook_tools.certs.keys import DEFAULT_KEY_BITS, KeyPair, new_key_pair

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# CA software rejects serials wider than 159 bits; 0 is not a legal serial
SERIAL_NUMBER_BITS = 159
SERIAL_NUMBER_LIMIT = 1 << SERIAL_NUMBER_BITS

CA_VALIDITY_YEARS = 10
LEAF_VALIDITY_YEARS = 1

DEFAULT_DNS_NAMES = ("localhost",)
DEFAULT_IP_ADDRESSES = (ipaddress.ip_address("127.0.0.1"), ipaddress.ip_address("::1"))

LEAF_SUBJECT_KEY_ID = bytes([1, 2, 3, 4, 6])

# Placeholder location for leaf subjects. Country must be a 2 letter code, ZZ is user-assigned
LEAF_LOCATION = (
    (NameOID.COUNTRY_NAME, "ZZ"),
    (NameOID.STATE_OR_PROVINCE_NAME, "Some Province"),
    (NameOID.LOCALITY_NAME, "Some Locality"),
    (NameOID.STREET_ADDRESS, "Some StreetAddress"),
    (NameOID.POSTAL_CODE, "Some PostalCode"),
)

_EXTENDED_KEY_USAGE = x509.ExtendedKeyUsage([
    ExtendedKeyUsageOID.CLIENT_AUTH,
    ExtendedKeyUsageOID.SERVER_AUTH,
])

# os.urandom backed, safe to share between threads
_system_random = secrets.SystemRandom()


def _utc_now() -> datetime:
    return datetime.now(UTC)


def add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year rolls over to Mar 1
        return moment.replace(year=moment.year + years, month=3, day=1)


def new_serial_number(rng=None) -> int:
    """Draw a serial uniformly from [1, 2**159).

    ``rng`` is anything with ``randrange``; the default is the OS CSPRNG.
    """
    source = rng if rng is not None else _system_random
    try:
        return source.randrange(1, SERIAL_NUMBER_LIMIT)
    except (OSError, ValueError, NotImplementedError) as e:
        raise SerialNumberError(f"Unable to draw a certificate serial number: {e}") from e


@dataclass
class SubjectAlternativeNames:
    dns_names: List[str] = field(default_factory=list)
    ip_addresses: List[IPAddress] = field(default_factory=list)

    def to_extension(self) -> x509.SubjectAlternativeName:
        names: List[x509.GeneralName] = [x509.DNSName(n) for n in self.dns_names]
        names += [x509.IPAddress(ip) for ip in self.ip_addresses]
        return x509.SubjectAlternativeName(names)


def _parse_ip(name: str) -> Optional[IPAddress]:
    # zoned IPv6 literals ("fe80::1%eth0") have no certificate encoding, treat them as names
    if "%" in name:
        return None
    try:
        return ipaddress.ip_address(name)
    except ValueError:
        return None


def normalize_sans(extra_sans: Iterable[str]) -> SubjectAlternativeNames:
    """Merge caller names into the default SAN set.

    Order is preserved, duplicates (against the defaults and each other) are
    dropped, and anything that parses as an IP literal becomes an IP SAN.
    Everything else is a DNS name.
    """
    sans = SubjectAlternativeNames(list(DEFAULT_DNS_NAMES), list(DEFAULT_IP_ADDRESSES))
    known = set(DEFAULT_DNS_NAMES) | {str(ip) for ip in DEFAULT_IP_ADDRESSES}

    for name in extra_sans:
        if not name or name in known:
            continue
        ip = _parse_ip(name)
        if ip is None:
            sans.dns_names.append(name)
        else:
            sans.ip_addresses.append(ip)
        known.add(name)
    return sans


def _name(common_name: str, organizations: Iterable[str] = (), location=()) -> x509.Name:
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    attributes += [x509.NameAttribute(NameOID.ORGANIZATION_NAME, org) for org in organizations]
    attributes += [x509.NameAttribute(oid, value) for oid, value in location]
    return x509.Name(attributes)


def _encode_certificate(certificate: x509.Certificate) -> str:
    try:
        return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")
    except ValueError as e:
        raise EncodingError(f"Unable to encode certificate: {e}") from e


def load_certificate(pem: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(pem.encode("ascii"))
    except ValueError as e:
        raise EncodingError(f"Unable to decode certificate: {e}") from e


def verify_issued_by(certificate_pem: str, ca_certificate_pem: str) -> bool:
    """True when the certificate's issuer and signature match the CA."""
    certificate = load_certificate(certificate_pem)
    ca_certificate = load_certificate(ca_certificate_pem)
    try:
        certificate.verify_directly_issued_by(ca_certificate)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


class IssuedCertificate(NamedTuple):
    certificate: str  # PEM
    private_key: str  # PEM, PKCS#1


class CertificateAuthority:
    """A self-signed root kept in memory, able to sign any number of leaves.

    issue() only reads the root certificate and key, so one authority can be
    used from several threads at once.
    """

    def __init__(
        self,
        certificate: x509.Certificate,
        key_pair: KeyPair,
        *,
        key_bits: int = DEFAULT_KEY_BITS,
        rng=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.certificate = certificate
        self.certificate_pem = _encode_certificate(certificate)
        self.key_bits = key_bits
        self._key_pair = key_pair
        self._rng = rng
        self._clock = clock or _utc_now

    @property
    def private_key_pem(self) -> str:
        return self._key_pair.private_key

    def issue(
        self,
        common_name: str,
        organizations: Iterable[str] = (),
        extra_sans: Iterable[str] = (),
    ) -> IssuedCertificate:
        serial = new_serial_number(self._rng)
        sans = normalize_sans(extra_sans or ())
        leaf = new_key_pair(self.key_bits)
        now = self._clock().replace(microsecond=0)

        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(_name(common_name, organizations or (), LEAF_LOCATION))
                .issuer_name(self.certificate.subject)
                .public_key(leaf.key.public_key())
                .serial_number(serial)
                .not_valid_before(now)
                .not_valid_after(add_years(now, LEAF_VALIDITY_YEARS))
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(sans.to_extension(), critical=False)
                .add_extension(x509.SubjectKeyIdentifier(LEAF_SUBJECT_KEY_ID), critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(self._key_pair.key.public_key()),
                    critical=False,
                )
                .add_extension(_EXTENDED_KEY_USAGE, critical=False)
                .add_extension(_key_usage(cert_sign=False), critical=True)
            )
            certificate = builder.sign(private_key=self._key_pair.key, algorithm=hashes.SHA256())
        except (ValueError, TypeError) as e:
            raise SigningError(f"Unable to sign certificate for {common_name!r}: {e}") from e

        return IssuedCertificate(_encode_certificate(certificate), leaf.private_key)


def _key_usage(*, cert_sign: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=cert_sign,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )


def new_certificate_authority(
    name: str,
    *,
    key_bits: int = DEFAULT_KEY_BITS,
    rng=None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CertificateAuthority:
    """Create a self-signed root CA named ``name``.

    Either a complete authority comes back or one of the CertificateError
    subclasses is raised.
    """
    key_pair = new_key_pair(key_bits)
    serial = new_serial_number(rng)
    now = (clock or _utc_now)().replace(microsecond=0)

    public_key = key_pair.key.public_key()
    try:
        subject = issuer = _name(name)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(public_key)
            .serial_number(serial)
            .not_valid_before(now)
            .not_valid_after(add_years(now, CA_VALIDITY_YEARS))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
            .add_extension(_EXTENDED_KEY_USAGE, critical=False)
            .add_extension(_key_usage(cert_sign=True), critical=True)
            .sign(private_key=key_pair.key, algorithm=hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise SigningError(f"Unable to self-sign certificate authority {name!r}: {e}") from e

    return CertificateAuthority(certificate, key_pair, key_bits=key_bits, rng=rng, clock=clock)
