import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from capki.certificate_authority import self_sign_certificate, sign_certificate_request
from capki.templates import CertificateRequestTemplate, CertificateTemplate


def make_name(common_name, organization=None):
    attributes = []
    if organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


class CountingPassphrase:
    """Sorgente di passphrase che conta le invocazioni."""

    def __init__(self, passphrase=b"secret"):
        self.passphrase = passphrase
        self.calls = 0

    def get_passphrase(self, context=None):
        self.calls += 1
        return self.passphrase


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ca_certificate(rsa_key):
    template = CertificateTemplate(
        subject=make_name("Test Root CA", "Test PKI"),
        is_ca=True,
        validity_days=365,
    )
    return self_sign_certificate(template, rsa_key)


@pytest.fixture(scope="session")
def requester_csr(ec_key):
    template = CertificateRequestTemplate(
        subject=make_name("requester.example"),
        dns_names=["requested.example"],
        email_addresses=["admin@requested.example"],
        ip_addresses=["192.0.2.10"],
    )
    return sign_certificate_request(template, ec_key)


@pytest.fixture
def counting_source():
    return CountingPassphrase()


@pytest.fixture
def utc_now():
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
