"""
Motore di firma della Certificate Authority.

Completa i campi obbligatori non valorizzati di un template (numero di
serie, Subject Key Identifier, finestra di validità), unisce l'identità
dichiarata nella CSR quando il template non la specifica e produce
certificati e richieste firmati. Ogni chiamata lavora su una copia del
template: il template del chiamante non viene mai modificato.
"""

import dataclasses
import datetime
import hashlib
import logging
import os
from typing import Any, Optional, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from cacrypto.exceptions import EncodingInvariantError, SigningError
from cacrypto.keys import Signer, read_key_file, signature_hash_for
from cacrypto.passphrase import PassphraseSource

from capki.certificate_manager import read_certificate_file, verify_request_signature
from capki.templates import CertificateRequestTemplate, CertificateTemplate, SubjectIdentity


logger = logging.getLogger(__name__)

_PRIMITIVE_ERRORS = (ValueError, TypeError, UnsupportedAlgorithm)


# 1. VALORI PREDEFINITI DEL TEMPLATE

def compute_subject_key_id(public_key: Any) -> Optional[bytes]:
    """
    Calcola il Subject Key Identifier come SHA-1 della SubjectPublicKeyInfo DER.

    Args:
        public_key: Chiave pubblica del soggetto

    Returns:
        Digest SHA-1, oppure None se la chiave non è serializzabile
    """
    try:
        der = public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )
    except (AttributeError,) + _PRIMITIVE_ERRORS as e:
        logger.debug(f"Subject Key Identifier non calcolato: {e}")
        return None
    return hashlib.sha1(der).digest()


def _random_serial_number() -> int:
    # Intero positivo casuale di al più 159 bit, entro i 20 ottetti DER
    serial = 0
    while not serial:
        serial = x509.random_serial_number()
    return serial


def generate_certificate_values(template: CertificateTemplate, public_key: Any) -> None:
    """
    Completa in place i campi obbligatori non valorizzati del template.

    Args:
        template: Template da completare
        public_key: Chiave pubblica del soggetto
    """
    if template.serial_number is None:
        template.serial_number = _random_serial_number()
        logger.debug(f"Numero di serie generato: {template.serial_number:x}")
    if template.subject_key_id is None:
        template.subject_key_id = compute_subject_key_id(public_key)
    if template.not_before is None:
        template.not_before = datetime.datetime.now(datetime.timezone.utc)
    if template.not_after is None:
        template.not_after = template.not_before + datetime.timedelta(days=template.validity_days)


def merge_request_identity(template: CertificateTemplate, csr: x509.CertificateSigningRequest) -> None:
    """
    Copia nel template i campi di identità della CSR che il template non specifica.

    Il confronto avviene campo per campo: un valore non vuoto del template
    ha sempre la precedenza su quello richiesto.
    """
    requested = SubjectIdentity.from_x509(csr)
    if len(template.subject) == 0:
        template.subject = requested.subject
    if not template.dns_names:
        template.dns_names = requested.dns_names
    if not template.email_addresses:
        template.email_addresses = requested.email_addresses
    if not template.ip_addresses:
        template.ip_addresses = requested.ip_addresses


def _copy_template(template: CertificateTemplate) -> CertificateTemplate:
    return dataclasses.replace(
        template,
        dns_names=list(template.dns_names),
        email_addresses=list(template.email_addresses),
        ip_addresses=list(template.ip_addresses),
        extended_key_usage=list(template.extended_key_usage)
    )


# 2. FIRMA

def _check_signer(key: Any) -> None:
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise SigningError(f"tipo di chiave di firma non supportato {type(key).__name__}")


def _public_key_der(public_key: Any) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )


def _subject_key_id_of(certificate: x509.Certificate) -> Optional[bytes]:
    try:
        return certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value.digest
    except x509.ExtensionNotFound:
        return None


def _build_certificate(template: CertificateTemplate, issuer_name: x509.Name, public_key: Any,
                       signing_key: Signer, authority_key_id: Optional[bytes] = None) -> x509.Certificate:
    try:
        builder = (x509.CertificateBuilder()
                   .subject_name(template.subject)
                   .issuer_name(issuer_name)
                   .public_key(public_key)
                   .serial_number(template.serial_number)
                   .not_valid_before(template.not_before)
                   .not_valid_after(template.not_after))

        if template.basic_constraints_valid:
            builder = builder.add_extension(
                x509.BasicConstraints(ca=template.is_ca, path_length=template.max_path_len),
                critical=True
            )
        if template.key_usage is not None:
            builder = builder.add_extension(template.key_usage, critical=True)
        if template.extended_key_usage:
            builder = builder.add_extension(x509.ExtendedKeyUsage(template.extended_key_usage), critical=False)
        if template.subject_key_id:
            builder = builder.add_extension(x509.SubjectKeyIdentifier(template.subject_key_id), critical=False)
        if authority_key_id:
            builder = builder.add_extension(
                x509.AuthorityKeyIdentifier(
                    key_identifier=authority_key_id,
                    authority_cert_issuer=None,
                    authority_cert_serial_number=None
                ),
                critical=False
            )
        alt_names = template.subject_alternative_names()
        if alt_names:
            # Con subject vuoto l'estensione SAN deve essere critica
            builder = builder.add_extension(
                x509.SubjectAlternativeName(alt_names),
                critical=len(template.subject) == 0
            )

        certificate = builder.sign(signing_key, signature_hash_for(signing_key))
    except _PRIMITIVE_ERRORS as e:
        raise SigningError(f"impossibile creare il certificato: {e}") from e

    der = certificate.public_bytes(serialization.Encoding.DER)
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise EncodingInvariantError(f"il certificato appena creato non è decodificabile: {e}") from e


def self_sign_certificate(template: CertificateTemplate, key: Signer) -> x509.Certificate:
    """
    Crea un certificato self-signed.

    Args:
        template: Template del certificato (non viene modificato)
        key: Chiave di firma, la cui chiave pubblica diventa quella del soggetto

    Returns:
        Certificato firmato e decodificato
    """
    _check_signer(key)
    template = _copy_template(template)
    public_key = key.public_key()
    generate_certificate_values(template, public_key)

    certificate = _build_certificate(template, template.subject, public_key, key)
    logger.info(f"Certificato self-signed creato: {certificate.subject.rfc4514_string()} "
                f"(serial {certificate.serial_number:x})")
    return certificate


def sign_certificate(csr: x509.CertificateSigningRequest, template: CertificateTemplate,
                     parent: x509.Certificate, key: Signer) -> x509.Certificate:
    """
    Firma con il certificato padre un certificato per la chiave della CSR.

    Args:
        csr: Richiesta di firma del soggetto
        template: Template imposto dalla CA; i campi di identità vuoti vengono presi dalla CSR
        parent: Certificato dell'emittente
        key: Chiave privata corrispondente a parent

    Returns:
        Certificato firmato e decodificato
    """
    _check_signer(key)
    try:
        matches = _public_key_der(parent.public_key()) == _public_key_der(key.public_key())
        public_key = csr.public_key()
    except _PRIMITIVE_ERRORS as e:
        raise SigningError(f"chiave pubblica non utilizzabile: {e}") from e
    if not matches:
        raise SigningError("la chiave di firma non corrisponde al certificato padre")

    template = _copy_template(template)
    merge_request_identity(template, csr)
    generate_certificate_values(template, public_key)

    certificate = _build_certificate(template, parent.subject, public_key, key,
                                     authority_key_id=_subject_key_id_of(parent))
    logger.info(f"Certificato emesso: {certificate.subject.rfc4514_string()} "
                f"(serial {certificate.serial_number:x}, emittente {parent.subject.rfc4514_string()})")
    return certificate


def sign_certificate_request(template: CertificateRequestTemplate, key: Signer) -> x509.CertificateSigningRequest:
    """
    Crea una richiesta di firma firmata con la chiave del richiedente.

    Args:
        template: Identità da dichiarare nella richiesta
        key: Chiave del richiedente

    Returns:
        Richiesta di firma decodificata
    """
    _check_signer(key)
    try:
        builder = x509.CertificateSigningRequestBuilder().subject_name(template.subject)
        alt_names = template.subject_alternative_names()
        if alt_names:
            builder = builder.add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        csr = builder.sign(key, signature_hash_for(key))
    except _PRIMITIVE_ERRORS as e:
        raise SigningError(f"impossibile creare la richiesta di firma: {e}") from e

    der = csr.public_bytes(serialization.Encoding.DER)
    try:
        parsed = x509.load_der_x509_csr(der)
    except ValueError as e:
        raise EncodingInvariantError(f"la richiesta di firma appena creata non è decodificabile: {e}") from e
    logger.info(f"Richiesta di firma creata: {parsed.subject.rfc4514_string()}")
    return parsed


# 3. CERTIFICATE AUTHORITY

class CertificateAuthority:
    """Coppia certificato/chiave di una CA usata per emettere certificati."""

    def __init__(self, certificate: x509.Certificate, private_key: Signer):
        self.certificate = certificate
        self.private_key = private_key

    @classmethod
    def from_files(cls, cert_path: Union[str, os.PathLike], key_path: Union[str, os.PathLike],
                   source: Optional[PassphraseSource], context: Any = None) -> "CertificateAuthority":
        """
        Carica la CA da file.

        Args:
            cert_path: Certificato della CA in PEM
            key_path: Chiave privata della CA, eventualmente cifrata
            source: Sorgente della passphrase della chiave
            context: Handle di annullamento

        Returns:
            Certificate Authority pronta a firmare
        """
        certificate = read_certificate_file(cert_path)
        private_key = read_key_file(key_path, source, context)
        logger.info(f"CA caricata: {certificate.subject.rfc4514_string()}")
        return cls(certificate, private_key)

    @classmethod
    def create_self_signed(cls, template: CertificateTemplate, private_key: Signer) -> "CertificateAuthority":
        """Crea una root CA self-signed; il template viene forzato a is_ca=True."""
        template = dataclasses.replace(template, is_ca=True, basic_constraints_valid=True)
        return cls(self_sign_certificate(template, private_key), private_key)

    def sign(self, csr: x509.CertificateSigningRequest, template: Optional[CertificateTemplate] = None,
             verify_request: bool = True) -> x509.Certificate:
        """
        Emette un certificato per la CSR.

        Args:
            csr: Richiesta di firma
            template: Parametri imposti dalla CA (predefinito: template vuoto)
            verify_request: Verifica la prova di possesso prima di firmare

        Returns:
            Certificato emesso
        """
        if verify_request:
            verify_request_signature(csr)
        return sign_certificate(csr, template or CertificateTemplate(), self.certificate, self.private_key)
