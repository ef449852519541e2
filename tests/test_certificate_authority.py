import datetime
import hashlib
import ipaddress
import threading

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.x509.oid import ExtendedKeyUsageOID

from cacrypto.exceptions import CAError, EncodingInvariantError, PassphraseError, SigningError
from cacrypto.keys import write_key
from cacrypto.passphrase import ConstantPassphrase, InteractivePassphrase
from capki.certificate_authority import (
    CertificateAuthority,
    compute_subject_key_id,
    generate_certificate_values,
    merge_request_identity,
    self_sign_certificate,
    sign_certificate,
    sign_certificate_request,
)
from capki.certificate_manager import verify_certificate_signature, write_certificate
from capki.templates import CertificateRequestTemplate, CertificateTemplate, SubjectIdentity

from conftest import make_name


def _spki_sha1(public_key):
    return hashlib.sha1(public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )).digest()


def _extension(certificate, extension_class):
    return certificate.extensions.get_extension_for_class(extension_class)


# Valori predefiniti

def test_generate_values_fills_missing_fields(ec_key):
    template = CertificateTemplate(validity_days=10)
    generate_certificate_values(template, ec_key.public_key())

    assert 0 < template.serial_number < 2 ** 160
    assert template.subject_key_id == _spki_sha1(ec_key.public_key())
    assert template.not_before.tzinfo is not None
    assert template.not_after - template.not_before == datetime.timedelta(days=10)


def test_generate_values_keeps_explicit_fields(ec_key, utc_now):
    template = CertificateTemplate(
        serial_number=42,
        subject_key_id=b"\x01" * 20,
        not_before=utc_now,
        not_after=utc_now + datetime.timedelta(hours=1),
    )
    generate_certificate_values(template, ec_key.public_key())

    assert template.serial_number == 42
    assert template.subject_key_id == b"\x01" * 20
    assert template.not_after - template.not_before == datetime.timedelta(hours=1)


def test_subject_key_id_is_skipped_for_unusable_key():
    assert compute_subject_key_id(object()) is None

    template = CertificateTemplate()
    generate_certificate_values(template, object())
    assert template.subject_key_id is None
    assert template.serial_number is not None


# Certificati self-signed

def test_self_signed_certificate(rsa_key):
    template = CertificateTemplate(subject=make_name("self.example", "Example"), dns_names=["self.example"])
    certificate = self_sign_certificate(template, rsa_key)

    assert certificate.issuer == certificate.subject == template.subject
    assert verify_certificate_signature(certificate, certificate)
    assert _extension(certificate, x509.SubjectKeyIdentifier).value.digest == _spki_sha1(rsa_key.public_key())
    assert certificate.not_valid_after_utc - certificate.not_valid_before_utc == datetime.timedelta(days=30)
    constraints = _extension(certificate, x509.BasicConstraints)
    assert constraints.critical
    assert constraints.value.ca is False
    with pytest.raises(x509.ExtensionNotFound):
        _extension(certificate, x509.AuthorityKeyIdentifier)


def test_serials_differ_and_subject_key_id_is_stable(ec_key):
    template = CertificateTemplate(subject=make_name("twice.example"))

    first = self_sign_certificate(template, ec_key)
    second = self_sign_certificate(template, ec_key)

    assert first.serial_number != second.serial_number
    assert first.serial_number > 0
    assert (_extension(first, x509.SubjectKeyIdentifier).value.digest
            == _extension(second, x509.SubjectKeyIdentifier).value.digest)


def test_caller_template_is_not_modified(ec_key):
    template = CertificateTemplate(subject=make_name("untouched.example"))
    self_sign_certificate(template, ec_key)

    assert template.serial_number is None
    assert template.subject_key_id is None
    assert template.not_before is None
    assert template.not_after is None


def test_explicit_values_are_honored(ec_key, utc_now):
    template = CertificateTemplate(
        subject=make_name("fixed.example"),
        serial_number=0x1234,
        not_before=utc_now,
        not_after=utc_now + datetime.timedelta(days=2),
        key_usage=x509.KeyUsage(
            digital_signature=True, content_commitment=False, key_encipherment=False,
            data_encipherment=False, key_agreement=False, key_cert_sign=False,
            crl_sign=False, encipher_only=False, decipher_only=False
        ),
        extended_key_usage=[ExtendedKeyUsageOID.SERVER_AUTH],
    )
    certificate = self_sign_certificate(template, ec_key)

    assert certificate.serial_number == 0x1234
    assert certificate.not_valid_before_utc == utc_now
    assert certificate.not_valid_after_utc == utc_now + datetime.timedelta(days=2)
    assert _extension(certificate, x509.KeyUsage).critical
    assert _extension(certificate, x509.KeyUsage).value.digital_signature
    assert list(_extension(certificate, x509.ExtendedKeyUsage).value) == [ExtendedKeyUsageOID.SERVER_AUTH]


def test_ecdsa_signature_hash_follows_curve():
    key = ec.generate_private_key(ec.SECP384R1())
    certificate = self_sign_certificate(CertificateTemplate(subject=make_name("p384.example")), key)

    assert isinstance(certificate.signature_hash_algorithm, hashes.SHA384)


def test_san_is_critical_with_empty_subject(ec_key):
    certificate = self_sign_certificate(CertificateTemplate(dns_names=["only-san.example"]), ec_key)

    san = _extension(certificate, x509.SubjectAlternativeName)
    assert san.critical
    assert san.value.get_values_for_type(x509.DNSName) == ["only-san.example"]


def test_path_length_constraint(ec_key):
    template = CertificateTemplate(subject=make_name("Intermediate"), is_ca=True, max_path_len=0)
    certificate = self_sign_certificate(template, ec_key)

    constraints = _extension(certificate, x509.BasicConstraints).value
    assert constraints.ca
    assert constraints.path_length == 0


def test_path_length_without_ca_is_rejected(ec_key):
    template = CertificateTemplate(subject=make_name("leaf"), max_path_len=1)

    with pytest.raises(SigningError):
        self_sign_certificate(template, ec_key)


def test_basic_constraints_can_be_omitted(ec_key):
    template = CertificateTemplate(subject=make_name("legacy"), basic_constraints_valid=False)
    certificate = self_sign_certificate(template, ec_key)

    with pytest.raises(x509.ExtensionNotFound):
        _extension(certificate, x509.BasicConstraints)


def test_unsupported_signing_key():
    with pytest.raises(SigningError):
        self_sign_certificate(CertificateTemplate(subject=make_name("ed")), ed25519.Ed25519PrivateKey.generate())


def test_unparsable_output_is_an_internal_defect(ec_key, monkeypatch):
    def refuse(data):
        raise ValueError("truncated")

    monkeypatch.setattr(x509, "load_der_x509_certificate", refuse)

    with pytest.raises(EncodingInvariantError) as excinfo:
        self_sign_certificate(CertificateTemplate(subject=make_name("defect")), ec_key)
    assert not isinstance(excinfo.value, CAError)


# Firma da parte della CA

def test_identity_merge_prefers_template(requester_csr):
    template = CertificateTemplate(dns_names=["forced.example"])
    merge_request_identity(template, requester_csr)

    assert template.dns_names == ["forced.example"]
    assert template.subject == requester_csr.subject
    assert template.email_addresses == ["admin@requested.example"]
    assert template.ip_addresses == [ipaddress.ip_address("192.0.2.10")]


def test_empty_template_takes_requested_identity(ca_certificate, rsa_key, requester_csr):
    certificate = sign_certificate(requester_csr, CertificateTemplate(), ca_certificate, rsa_key)

    assert certificate.subject == requester_csr.subject
    san = _extension(certificate, x509.SubjectAlternativeName).value
    assert san.get_values_for_type(x509.DNSName) == ["requested.example"]
    assert san.get_values_for_type(x509.RFC822Name) == ["admin@requested.example"]
    assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("192.0.2.10")]


def test_sign_certificate_for_request(ca_certificate, rsa_key, requester_csr, ec_key):
    template = CertificateTemplate(dns_names=["forced.example"])
    certificate = sign_certificate(requester_csr, template, ca_certificate, rsa_key)

    assert certificate.issuer == ca_certificate.subject
    assert certificate.subject == requester_csr.subject
    assert verify_certificate_signature(certificate, ca_certificate)
    assert _extension(certificate, x509.SubjectKeyIdentifier).value.digest == _spki_sha1(ec_key.public_key())
    assert (_extension(certificate, x509.AuthorityKeyIdentifier).value.key_identifier
            == _extension(ca_certificate, x509.SubjectKeyIdentifier).value.digest)

    san = _extension(certificate, x509.SubjectAlternativeName)
    assert not san.critical
    assert san.value.get_values_for_type(x509.DNSName) == ["forced.example"]
    assert san.value.get_values_for_type(x509.RFC822Name) == ["admin@requested.example"]
    assert template.dns_names == ["forced.example"]
    assert len(template.subject) == 0


def test_template_subject_overrides_request(ca_certificate, rsa_key, requester_csr):
    subject = make_name("override.example", "CA Policy")
    certificate = sign_certificate(requester_csr, CertificateTemplate(subject=subject), ca_certificate, rsa_key)

    assert certificate.subject == subject


def test_signing_key_must_match_parent(ca_certificate, other_rsa_key, requester_csr):
    with pytest.raises(SigningError):
        sign_certificate(requester_csr, CertificateTemplate(), ca_certificate, other_rsa_key)


def test_sign_certificate_request(ec_key):
    template = CertificateRequestTemplate(
        subject=make_name("csr.example"),
        dns_names=["csr.example", "www.csr.example"],
        ip_addresses=["2001:db8::1"],
    )
    csr = sign_certificate_request(template, ec_key)

    assert csr.is_signature_valid
    assert csr.subject == template.subject
    identity = SubjectIdentity.from_x509(csr)
    assert identity.dns_names == ["csr.example", "www.csr.example"]
    assert identity.ip_addresses == [ipaddress.ip_address("2001:db8::1")]


def test_request_without_alternative_names(rsa_key):
    csr = sign_certificate_request(CertificateRequestTemplate(subject=make_name("plain")), rsa_key)

    with pytest.raises(x509.ExtensionNotFound):
        _extension(csr, x509.SubjectAlternativeName)


# CertificateAuthority

def test_create_self_signed_authority(ec_key):
    authority = CertificateAuthority.create_self_signed(CertificateTemplate(subject=make_name("Root")), ec_key)

    assert _extension(authority.certificate, x509.BasicConstraints).value.ca
    assert authority.private_key is ec_key


def test_authority_from_files_signs_request(tmp_path, ca_certificate, rsa_key, requester_csr):
    cert_path = tmp_path / "ca.pem"
    key_path = tmp_path / "ca.key"
    with open(cert_path, "wb") as f:
        write_certificate(f, ca_certificate)
    with open(key_path, "wb") as f:
        write_key(f, rsa_key, ConstantPassphrase("ca secret"), "aes256")

    authority = CertificateAuthority.from_files(cert_path, key_path, ConstantPassphrase("ca secret"))
    certificate = authority.sign(requester_csr)

    assert verify_certificate_signature(certificate, ca_certificate)
    assert certificate.subject == requester_csr.subject


def test_authority_from_files_honors_cancellation(tmp_path, ca_certificate, rsa_key):
    cert_path = tmp_path / "ca.pem"
    key_path = tmp_path / "ca.key"
    with open(cert_path, "wb") as f:
        write_certificate(f, ca_certificate)
    with open(key_path, "wb") as f:
        write_key(f, rsa_key, ConstantPassphrase("ca secret"), "aes128")

    cancelled = threading.Event()
    cancelled.set()
    with pytest.raises(PassphraseError):
        CertificateAuthority.from_files(cert_path, key_path, InteractivePassphrase(), cancelled)


def test_authority_rejects_forged_request(ca_certificate, rsa_key, requester_csr):
    der = bytearray(requester_csr.public_bytes(serialization.Encoding.DER))
    der[-1] ^= 0x01
    forged = x509.load_der_x509_csr(bytes(der))
    authority = CertificateAuthority(ca_certificate, rsa_key)

    with pytest.raises(SigningError):
        authority.sign(forged)

    certificate = authority.sign(forged, verify_request=False)
    assert certificate.issuer == ca_certificate.subject
