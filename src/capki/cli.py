"""
Comandi ca-keygen, ca-request, ca-selfsign e ca-sign.

Ogni comando scrive il risultato in PEM su stdout. Gli errori del toolkit
terminano con stato 1, gli errori di utilizzo con stato 2.
"""

import argparse
import datetime
import logging
import sys
from typing import BinaryIO, List, Optional

from pydantic import ValidationError

from cacrypto.exceptions import CAError
from cacrypto.keys import CURVES, KEY_TYPES, KeyManager, read_key_file, write_key
from cacrypto.passphrase import get_passphrase_source
from cacrypto.pem import PEMCipher

from capki.certificate_authority import (
    CertificateAuthority,
    self_sign_certificate,
    sign_certificate_request
)
from capki.certificate_manager import (
    read_certificate_request_file,
    write_certificate,
    write_certificate_request
)
from capki.config import CAConfiguration, load_config
from capki.templates import CertificateRequestTemplate, CertificateTemplate, SubjectInfo


logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "WARNING", verbosity: int = 0) -> None:
    if verbosity >= 2:
        level = "DEBUG"
    elif verbosity == 1:
        level = "INFO"
    logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING),
                        format=LOG_FORMAT, stream=sys.stderr)


def _fatal(err: Exception, message: str) -> int:
    print(f"{message}: {err}", file=sys.stderr)
    return 1


def _parse_time(value: str) -> datetime.datetime:
    """Interpreta un istante RFC 3339."""
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"istante RFC 3339 non valido: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _parse_serial(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"numero di serie non valido: {value!r}")


# 1. ARGOMENTI COMUNI

def _new_parser(prog: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="aumenta il dettaglio del logging (ripetibile)")
    return parser


def _add_passphrase_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--passphrase", default=None, help="passphrase da usare")
    parser.add_argument("--nopass", action="store_true",
                        help="non richiede la passphrase in modo interattivo")


def _add_subject_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("soggetto")
    group.add_argument("--cn", dest="common_name", help="Common Name")
    group.add_argument("--org", dest="organization", action="append", default=[], help="organizzazione")
    group.add_argument("--ou", dest="organizational_unit", action="append", default=[],
                       help="unità organizzativa")
    group.add_argument("--country", action="append", default=[], help="codice paese a due lettere")
    group.add_argument("--province", action="append", default=[], help="provincia o stato")
    group.add_argument("--locality", action="append", default=[], help="località")
    group.add_argument("--dns", dest="dns_names", action="append", default=[], help="nome DNS alternativo")
    group.add_argument("--email", dest="email_addresses", action="append", default=[],
                       help="indirizzo email alternativo")
    group.add_argument("--ip", dest="ip_addresses", action="append", default=[],
                       help="indirizzo IP alternativo")


def _add_params_arguments(parser: argparse.ArgumentParser, config: CAConfiguration) -> None:
    group = parser.add_argument_group("certificato")
    group.add_argument("--days", type=int, default=config.validity_days,
                       help="giorni di validità del certificato")
    group.add_argument("--ca", action="store_true", help="il certificato può firmare altri certificati")
    group.add_argument("--max-path-len", type=int, default=-1,
                       help="lunghezza massima della catena sotto questo certificato, solo con --ca (-1: nessun limite)")
    group.add_argument("--not-before", type=_parse_time, default=None,
                       help="inizio della validità, RFC 3339 (predefinito: ora)")
    group.add_argument("--not-after", type=_parse_time, default=None,
                       help="fine della validità, RFC 3339 (ha precedenza su --days)")
    group.add_argument("--serial", type=_parse_serial, default=None, help="numero di serie del certificato")


def _subject_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> SubjectInfo:
    try:
        return SubjectInfo(
            common_name=args.common_name,
            organization=args.organization,
            organizational_unit=args.organizational_unit,
            country=args.country,
            province=args.province,
            locality=args.locality,
            dns_names=args.dns_names,
            email_addresses=args.email_addresses,
            ip_addresses=args.ip_addresses
        )
    except ValidationError as e:
        parser.error(f"parametri del soggetto non validi: {e}")


def _apply_params(template: CertificateTemplate, args: argparse.Namespace) -> CertificateTemplate:
    template.serial_number = args.serial
    template.not_before = args.not_before
    template.not_after = args.not_after
    template.validity_days = args.days
    template.basic_constraints_valid = True
    template.is_ca = args.ca
    # Come in BasicConstraints, la lunghezza della catena vale solo per una CA
    if args.ca and args.max_path_len >= 0:
        template.max_path_len = args.max_path_len
    return template


def _prepare(argv: Optional[List[str]], build_parser) -> tuple:
    try:
        config = load_config()
    except CAError as e:
        sys.exit(_fatal(e, "errore di configurazione"))
    parser = build_parser(config)
    args = parser.parse_args(argv)
    setup_logging(config.log_level, args.verbose)
    return config, parser, args


# 2. COMANDI

def _keygen_parser(config: CAConfiguration) -> argparse.ArgumentParser:
    parser = _new_parser("ca-keygen", "Genera una chiave privata.")
    parser.add_argument("--type", dest="key_type", choices=KEY_TYPES, default=config.key_type,
                        help="tipo di chiave")
    parser.add_argument("--bits", type=int, default=config.rsa_bits, help="dimensione della chiave, per RSA")
    parser.add_argument("--curve", choices=sorted(CURVES), default=config.curve, help="curva, per ECDSA")
    parser.add_argument("--cipher", choices=[c.label for c in PEMCipher], default=config.cipher,
                        help="cifrario usato per proteggere la chiave")
    _add_passphrase_arguments(parser)
    return parser


def keygen_main(argv: Optional[List[str]] = None, stdout: Optional[BinaryIO] = None) -> int:
    _, _, args = _prepare(argv, _keygen_parser)
    stdout = stdout or sys.stdout.buffer

    try:
        key = KeyManager(args.key_type, args.bits, args.curve).generate_key()
    except CAError as e:
        return _fatal(e, "errore nella generazione della chiave")
    try:
        write_key(stdout, key, get_passphrase_source(args.passphrase, args.nopass), args.cipher)
    except CAError as e:
        return _fatal(e, "errore nella scrittura della chiave")
    return 0


def _request_parser(config: CAConfiguration) -> argparse.ArgumentParser:
    parser = _new_parser("ca-request", "Crea una richiesta di firma (CSR).")
    parser.add_argument("--key", required=True, help="file con la chiave del richiedente")
    _add_subject_arguments(parser)
    _add_passphrase_arguments(parser)
    return parser


def request_main(argv: Optional[List[str]] = None, stdout: Optional[BinaryIO] = None) -> int:
    _, parser, args = _prepare(argv, _request_parser)
    stdout = stdout or sys.stdout.buffer
    subject = _subject_from_args(parser, args)

    try:
        key = read_key_file(args.key, get_passphrase_source(args.passphrase, args.nopass))
    except CAError as e:
        return _fatal(e, "impossibile leggere la chiave")
    template = subject.apply_to(CertificateRequestTemplate())
    try:
        csr = sign_certificate_request(template, key)
    except CAError as e:
        return _fatal(e, "impossibile creare la richiesta di firma")
    try:
        write_certificate_request(stdout, csr)
    except CAError as e:
        return _fatal(e, "impossibile scrivere la richiesta di firma")
    return 0


def _selfsign_parser(config: CAConfiguration) -> argparse.ArgumentParser:
    parser = _new_parser("ca-selfsign", "Crea un certificato self-signed.")
    parser.add_argument("--key", required=True, help="file con la chiave di firma")
    _add_subject_arguments(parser)
    _add_params_arguments(parser, config)
    _add_passphrase_arguments(parser)
    return parser


def selfsign_main(argv: Optional[List[str]] = None, stdout: Optional[BinaryIO] = None) -> int:
    _, parser, args = _prepare(argv, _selfsign_parser)
    stdout = stdout or sys.stdout.buffer
    subject = _subject_from_args(parser, args)

    try:
        key = read_key_file(args.key, get_passphrase_source(args.passphrase, args.nopass))
    except CAError as e:
        return _fatal(e, "impossibile leggere la chiave")
    template = _apply_params(subject.apply_to(CertificateTemplate()), args)
    try:
        certificate = self_sign_certificate(template, key)
    except CAError as e:
        return _fatal(e, "impossibile creare il certificato")
    try:
        write_certificate(stdout, certificate)
    except CAError as e:
        return _fatal(e, "impossibile scrivere il certificato")
    return 0


def _sign_parser(config: CAConfiguration) -> argparse.ArgumentParser:
    parser = _new_parser("ca-sign", "Firma una richiesta di firma con il certificato della CA.")
    parser.add_argument("--cert", required=True, help="file con il certificato della CA")
    parser.add_argument("--key", required=True, help="file con la chiave della CA")
    parser.add_argument("--req", required=True, help="file con la richiesta di firma")
    _add_subject_arguments(parser)
    _add_params_arguments(parser, config)
    _add_passphrase_arguments(parser)
    return parser


def sign_main(argv: Optional[List[str]] = None, stdout: Optional[BinaryIO] = None) -> int:
    _, parser, args = _prepare(argv, _sign_parser)
    stdout = stdout or sys.stdout.buffer
    subject = _subject_from_args(parser, args)

    try:
        authority = CertificateAuthority.from_files(
            args.cert, args.key, get_passphrase_source(args.passphrase, args.nopass)
        )
    except CAError as e:
        return _fatal(e, "impossibile caricare la CA")
    try:
        csr = read_certificate_request_file(args.req)
    except CAError as e:
        return _fatal(e, "impossibile caricare la richiesta di firma")

    template = _apply_params(subject.apply_to(CertificateTemplate()), args)
    try:
        certificate = authority.sign(csr, template)
    except CAError as e:
        return _fatal(e, "impossibile firmare il certificato")
    try:
        write_certificate(stdout, certificate)
    except CAError as e:
        return _fatal(e, "impossibile scrivere il certificato")
    return 0
