"""
Modulo PKI della Certificate Authority.
Template, codifica di certificati e CSR, motore di firma.
"""

from .templates import (
    CertificateTemplate,
    CertificateRequestTemplate,
    SubjectIdentity,
    SubjectInfo
)
from .certificate_manager import (
    marshal_certificate,
    unmarshal_certificate,
    read_certificate,
    read_certificate_file,
    write_certificate,
    marshal_certificate_request,
    unmarshal_certificate_request,
    read_certificate_request,
    read_certificate_request_file,
    write_certificate_request,
    verify_request_signature,
    verify_certificate_signature
)
from .certificate_authority import (
    CertificateAuthority,
    generate_certificate_values,
    merge_request_identity,
    self_sign_certificate,
    sign_certificate,
    sign_certificate_request
)
from .config import CAConfiguration, load_config

__version__ = "1.0.0"

__all__ = [
    "CertificateTemplate",
    "CertificateRequestTemplate",
    "SubjectIdentity",
    "SubjectInfo",
    "marshal_certificate",
    "unmarshal_certificate",
    "read_certificate",
    "read_certificate_file",
    "write_certificate",
    "marshal_certificate_request",
    "unmarshal_certificate_request",
    "read_certificate_request",
    "read_certificate_request_file",
    "write_certificate_request",
    "verify_request_signature",
    "verify_certificate_signature",
    "CertificateAuthority",
    "generate_certificate_values",
    "merge_request_identity",
    "self_sign_certificate",
    "sign_certificate",
    "sign_certificate_request",
    "CAConfiguration",
    "load_config",
]
