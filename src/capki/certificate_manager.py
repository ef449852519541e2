"""Codifica e decodifica PEM di certificati X.509 e richieste di firma."""

import logging
import os
from typing import BinaryIO, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from cacrypto.exceptions import DecodeError, EncodeError, SigningError, annotate
from cacrypto.pem import PEMBlock, read_pem, read_pem_file, write_pem


logger = logging.getLogger(__name__)

CERTIFICATE = "CERTIFICATE"
CERTIFICATE_REQUEST = "CERTIFICATE REQUEST"


# 1. CERTIFICATI

def marshal_certificate(certificate: x509.Certificate) -> PEMBlock:
    """
    Converte un certificato firmato nel blocco PEM "CERTIFICATE".

    Un template non ancora firmato non ha una codifica DER e non può
    essere serializzato.

    Args:
        certificate: Certificato X.509 decodificato

    Returns:
        Blocco PEM con la codifica DER originale
    """
    if not isinstance(certificate, x509.Certificate):
        raise EncodeError("certificato non valido: manca la codifica DER")
    return PEMBlock(CERTIFICATE, certificate.public_bytes(serialization.Encoding.DER))


def unmarshal_certificate(block: PEMBlock) -> x509.Certificate:
    """
    Decodifica un certificato dal blocco PEM.

    Args:
        block: Blocco di tipo "CERTIFICATE"

    Returns:
        Certificato X.509
    """
    if block.type != CERTIFICATE:
        raise DecodeError(f"tipo di certificato non supportato {block.type!r}")
    try:
        return x509.load_der_x509_certificate(block.data)
    except ValueError as e:
        raise DecodeError(f"certificato non valido: {e}") from e


def read_certificate(stream: BinaryIO) -> x509.Certificate:
    return unmarshal_certificate(read_pem(stream))


def read_certificate_file(path: Union[str, os.PathLike]) -> x509.Certificate:
    """
    Carica un certificato da file PEM.

    Args:
        path: Percorso del file certificato

    Returns:
        Certificato X.509
    """
    block = read_pem_file(path)
    try:
        return unmarshal_certificate(block)
    except DecodeError as e:
        raise annotate(e, f"impossibile leggere il certificato da {path}") from e


def write_certificate(stream: BinaryIO, certificate: x509.Certificate) -> None:
    write_pem(stream, marshal_certificate(certificate))


# 2. RICHIESTE DI FIRMA

def marshal_certificate_request(csr: x509.CertificateSigningRequest) -> PEMBlock:
    """Converte una CSR firmata nel blocco PEM "CERTIFICATE REQUEST"."""
    if not isinstance(csr, x509.CertificateSigningRequest):
        raise EncodeError("richiesta di firma non valida: manca la codifica DER")
    return PEMBlock(CERTIFICATE_REQUEST, csr.public_bytes(serialization.Encoding.DER))


def unmarshal_certificate_request(block: PEMBlock) -> x509.CertificateSigningRequest:
    if block.type != CERTIFICATE_REQUEST:
        raise DecodeError(f"tipo di richiesta di firma non supportato {block.type!r}")
    try:
        return x509.load_der_x509_csr(block.data)
    except ValueError as e:
        raise DecodeError(f"richiesta di firma non valida: {e}") from e


def read_certificate_request(stream: BinaryIO) -> x509.CertificateSigningRequest:
    return unmarshal_certificate_request(read_pem(stream))


def read_certificate_request_file(path: Union[str, os.PathLike]) -> x509.CertificateSigningRequest:
    """
    Carica una richiesta di firma da file PEM.

    Args:
        path: Percorso del file CSR

    Returns:
        Richiesta di firma decodificata
    """
    block = read_pem_file(path)
    try:
        return unmarshal_certificate_request(block)
    except DecodeError as e:
        raise annotate(e, f"impossibile leggere la richiesta di firma da {path}") from e


def write_certificate_request(stream: BinaryIO, csr: x509.CertificateSigningRequest) -> None:
    write_pem(stream, marshal_certificate_request(csr))


# 3. VERIFICHE

def verify_request_signature(csr: x509.CertificateSigningRequest) -> None:
    """
    Verifica la prova di possesso della chiave contenuta nella CSR.

    Raises:
        SigningError: se la firma della richiesta non è valida
    """
    if not csr.is_signature_valid:
        raise SigningError("la firma della richiesta di firma non è valida")


def verify_certificate_signature(certificate: x509.Certificate, issuer: x509.Certificate) -> bool:
    """
    Verifica che il certificato sia stato emesso e firmato da issuer.

    Args:
        certificate: Certificato da verificare
        issuer: Certificato dell'emittente (lo stesso certificato se self-signed)

    Returns:
        True se la firma è valida
    """
    try:
        certificate.verify_directly_issued_by(issuer)
        return True
    except InvalidSignature:
        logger.debug(f"Firma non valida per {certificate.subject.rfc4514_string()}")
        return False
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.debug(f"Verifica della firma non riuscita: {e}")
        return False
