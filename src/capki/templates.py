"""
Template di certificati e richieste di firma.

I template descrivono un certificato o una CSR ancora da creare: i campi
non valorizzati vengono completati dal motore di firma
(capki.certificate_authority).
"""

import datetime
import ipaddress
from dataclasses import dataclass, field
from typing import List, Optional, Union

from cryptography import x509
from cryptography.x509 import ObjectIdentifier
from cryptography.x509.oid import NameOID
from pydantic import BaseModel, Field, IPvAnyAddress, field_validator


IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

DEFAULT_VALIDITY_DAYS = 30


def _empty_name() -> x509.Name:
    return x509.Name([])


@dataclass
class SubjectIdentity:
    """Campi di identità comuni a certificati e richieste."""
    subject: x509.Name = field(default_factory=_empty_name)
    dns_names: List[str] = field(default_factory=list)
    email_addresses: List[str] = field(default_factory=list)
    ip_addresses: List[IPAddress] = field(default_factory=list)

    def __post_init__(self):
        """Normalizza gli indirizzi IP forniti come stringhe."""
        self.ip_addresses = [
            ipaddress.ip_address(address) if isinstance(address, str) else address
            for address in self.ip_addresses
        ]

    def subject_alternative_names(self) -> List[x509.GeneralName]:
        names: List[x509.GeneralName] = [x509.DNSName(name) for name in self.dns_names]
        names.extend(x509.RFC822Name(email) for email in self.email_addresses)
        names.extend(x509.IPAddress(address) for address in self.ip_addresses)
        return names

    @classmethod
    def from_x509(cls, obj: Union[x509.Certificate, x509.CertificateSigningRequest]) -> "SubjectIdentity":
        """
        Estrae subject e Subject Alternative Names da un certificato o da una CSR.

        Args:
            obj: Certificato o richiesta già decodificati

        Returns:
            Identità dichiarata nell'oggetto
        """
        try:
            san = obj.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            return cls(subject=obj.subject)

        return cls(
            subject=obj.subject,
            dns_names=san.get_values_for_type(x509.DNSName),
            email_addresses=san.get_values_for_type(x509.RFC822Name),
            ip_addresses=san.get_values_for_type(x509.IPAddress)
        )


@dataclass
class CertificateRequestTemplate(SubjectIdentity):
    """Template di una richiesta di firma (CSR)."""


@dataclass
class CertificateTemplate(SubjectIdentity):
    """
    Template di un certificato da firmare.

    serial_number, subject_key_id e la finestra di validità, se assenti,
    vengono generati al momento della firma. max_path_len a None indica
    nessun vincolo sulla lunghezza della catena.
    """
    not_before: Optional[datetime.datetime] = None
    not_after: Optional[datetime.datetime] = None
    validity_days: int = DEFAULT_VALIDITY_DAYS
    is_ca: bool = False
    max_path_len: Optional[int] = None
    basic_constraints_valid: bool = True
    serial_number: Optional[int] = None
    subject_key_id: Optional[bytes] = None
    key_usage: Optional[x509.KeyUsage] = None
    extended_key_usage: List[ObjectIdentifier] = field(default_factory=list)


class SubjectInfo(BaseModel):
    """Parametri del soggetto forniti dalla linea di comando o da configurazione."""
    common_name: Optional[str] = Field(None, description="Common Name")
    organization: List[str] = Field(default=[], description="Organizzazioni")
    organizational_unit: List[str] = Field(default=[], description="Unità organizzative")
    country: List[str] = Field(default=[], description="Codici paese ISO a due lettere")
    province: List[str] = Field(default=[], description="Province o stati")
    locality: List[str] = Field(default=[], description="Località")
    dns_names: List[str] = Field(default=[], description="Nomi DNS alternativi")
    email_addresses: List[str] = Field(default=[], description="Indirizzi email alternativi")
    ip_addresses: List[IPvAnyAddress] = Field(default=[], description="Indirizzi IP alternativi")

    @field_validator('country')
    @classmethod
    def validate_country(cls, v: List[str]) -> List[str]:
        """Valida i codici paese."""
        for code in v:
            if len(code) != 2 or not code.isalpha():
                raise ValueError('Il codice paese deve essere di 2 lettere')
        return [code.upper() for code in v]

    @field_validator('common_name')
    @classmethod
    def validate_common_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    def to_name(self) -> x509.Name:
        """Costruisce il Distinguished Name nell'ordine C, ST, L, O, OU, CN."""
        attributes = []
        for oid, values in (
            (NameOID.COUNTRY_NAME, self.country),
            (NameOID.STATE_OR_PROVINCE_NAME, self.province),
            (NameOID.LOCALITY_NAME, self.locality),
            (NameOID.ORGANIZATION_NAME, self.organization),
            (NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
        ):
            attributes.extend(x509.NameAttribute(oid, value) for value in values)
        if self.common_name:
            attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, self.common_name))
        return x509.Name(attributes)

    def apply_to(self, template: SubjectIdentity) -> SubjectIdentity:
        """Imposta subject e nomi alternativi sul template e lo restituisce."""
        template.subject = self.to_name()
        template.dns_names = list(self.dns_names)
        template.email_addresses = list(self.email_addresses)
        template.ip_addresses = list(self.ip_addresses)
        return template
