# Codec delle Chiavi
# Generazione, serializzazione e caricamento delle chiavi di firma


import logging
import os
from typing import Any, BinaryIO, Dict, Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .exceptions import DecodeError, EncodeError, GenerationError, annotate
from .passphrase import PassphraseSource
from .pem import PEMBlock, PEMCipher, der_header, read_encrypted_pem, read_encrypted_pem_file, write_encrypted_pem


logger = logging.getLogger(__name__)

# Varianti di chiave di firma supportate
Signer = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]

RSA_PRIVATE_KEY = "RSA PRIVATE KEY"
EC_PRIVATE_KEY = "EC PRIVATE KEY"
PRIVATE_KEY = "PRIVATE KEY"

KEY_TYPES = ("rsa", "ecdsa")

CURVES: Dict[str, ec.EllipticCurve] = {
    "p224": ec.SECP224R1(),
    "p256": ec.SECP256R1(),
    "p384": ec.SECP384R1(),
    "p521": ec.SECP521R1(),
}


# 1. GENERAZIONE

def generate_rsa_key(bits: int = 2048) -> rsa.RSAPrivateKey:
    """
    Genera una chiave privata RSA.

    Args:
        bits: Dimensione della chiave in bit

    Returns:
        Chiave privata RSA
    """
    try:
        key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise GenerationError(f"impossibile generare una chiave RSA-{bits}: {e}") from e
    logger.info(f"Generata chiave RSA-{bits}")
    return key


def generate_ecdsa_key(curve: Union[str, ec.EllipticCurve] = "p256") -> ec.EllipticCurvePrivateKey:
    """
    Genera una chiave privata ECDSA.

    Args:
        curve: Nome della curva (p224, p256, p384, p521) o istanza di curva

    Returns:
        Chiave privata EC
    """
    if isinstance(curve, str):
        if curve.lower() not in CURVES:
            raise GenerationError(f"curva non supportata {curve!r}")
        curve = CURVES[curve.lower()]
    try:
        key = ec.generate_private_key(curve)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise GenerationError(f"impossibile generare una chiave ECDSA: {e}") from e
    logger.info(f"Generata chiave ECDSA su {key.curve.name}")
    return key


def generate_key(kind: str = "rsa", bits: int = 2048, curve: Union[str, ec.EllipticCurve] = "p256") -> Signer:
    """
    Genera una chiave del tipo richiesto.

    Args:
        kind: "rsa" oppure "ecdsa"
        bits: Dimensione in bit, per RSA
        curve: Curva, per ECDSA

    Returns:
        Chiave di firma
    """
    kind = (kind or "").lower()
    if kind == "rsa":
        return generate_rsa_key(bits)
    if kind == "ecdsa":
        return generate_ecdsa_key(curve)
    raise GenerationError(f"tipo di chiave non supportato {kind!r}")


def signature_hash_for(key: Any) -> hashes.HashAlgorithm:
    """Algoritmo di hash usato per firmare con la chiave data."""
    if isinstance(key, ec.EllipticCurvePrivateKey):
        if key.curve.key_size <= 256:
            return hashes.SHA256()
        if key.curve.key_size <= 384:
            return hashes.SHA384()
        return hashes.SHA512()
    return hashes.SHA256()


# 2. SERIALIZZAZIONE

def marshal_key(key: Signer) -> PEMBlock:
    """
    Converte una chiave di firma nel blocco PEM corrispondente.

    Args:
        key: Chiave privata RSA o EC

    Returns:
        Blocco "RSA PRIVATE KEY" (PKCS#1) o "EC PRIVATE KEY" (SEC1)
    """
    if isinstance(key, rsa.RSAPrivateKey):
        block_type = RSA_PRIVATE_KEY
    elif isinstance(key, ec.EllipticCurvePrivateKey):
        block_type = EC_PRIVATE_KEY
    else:
        raise EncodeError(f"tipo di chiave non supportato {type(key).__name__}")

    try:
        der = key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption()
        )
    except (ValueError, TypeError) as e:
        raise EncodeError(f"impossibile serializzare la chiave: {e}") from e
    return PEMBlock(block_type, der)


_EXPECTED_KEY_TYPES = {
    RSA_PRIVATE_KEY: (rsa.RSAPrivateKey,),
    EC_PRIVATE_KEY: (ec.EllipticCurvePrivateKey,),
    PRIVATE_KEY: (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey),
}

# Tag DER del campo che segue la versione: INTEGER (PKCS#1),
# OCTET STRING (SEC1), SEQUENCE AlgorithmIdentifier (PKCS#8)
_SECOND_FIELD_TAGS = {
    RSA_PRIVATE_KEY: 0x02,
    EC_PRIVATE_KEY: 0x04,
    PRIVATE_KEY: 0x30,
}


def _check_key_format(block: PEMBlock) -> None:
    tag, start, end = der_header(block.data)
    if tag != 0x30 or end != len(block.data):
        raise DecodeError("la chiave non è una SEQUENCE DER")
    _, _, version_end = der_header(block.data, start)
    field_tag, _, _ = der_header(block.data, version_end)
    if field_tag != _SECOND_FIELD_TAGS[block.type]:
        raise DecodeError(f"il contenuto non corrisponde al formato del blocco {block.type!r}")


def unmarshal_key(block: PEMBlock) -> Signer:
    """
    Decodifica una chiave di firma dal blocco PEM.

    Il tipo del blocco determina il decoder; una chiave valida ma che non
    sia RSA o ECDSA viene rifiutata.

    Args:
        block: Blocco "RSA PRIVATE KEY", "EC PRIVATE KEY" o "PRIVATE KEY"

    Returns:
        Chiave di firma
    """
    expected = _EXPECTED_KEY_TYPES.get(block.type)
    if expected is None:
        raise DecodeError(f"tipo di chiave non supportato {block.type!r}")
    _check_key_format(block)

    try:
        key = serialization.load_der_private_key(block.data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise DecodeError(f"chiave non valida: {e}") from e

    if not isinstance(key, expected):
        raise DecodeError(f"il blocco {block.type!r} contiene una chiave {type(key).__name__} non utilizzabile per la firma")
    return key


# 3. LETTURA E SCRITTURA

def read_key(stream: BinaryIO, source: Optional[PassphraseSource], context: Any = None) -> Signer:
    """Legge una chiave, eventualmente cifrata, da uno stream."""
    block = read_encrypted_pem(stream, source, context)
    return unmarshal_key(block)


def read_key_file(path: Union[str, os.PathLike], source: Optional[PassphraseSource],
                  context: Any = None) -> Signer:
    """
    Legge una chiave da file.

    Args:
        path: Percorso del file PEM
        source: Sorgente della passphrase, consultata solo se il file è cifrato
        context: Handle di annullamento

    Returns:
        Chiave di firma
    """
    block = read_encrypted_pem_file(path, source, context)
    try:
        return unmarshal_key(block)
    except DecodeError as e:
        raise annotate(e, f"impossibile leggere la chiave da {path}") from e


def write_key(stream: BinaryIO, key: Signer, source: Optional[PassphraseSource],
              cipher: Union[str, PEMCipher] = PEMCipher.AES128, context: Any = None) -> None:
    """Scrive la chiave in PEM, cifrata se la sorgente restituisce una passphrase."""
    block = marshal_key(key)
    write_encrypted_pem(stream, block, source, cipher, context)


# 4. GESTIONE CHIAVI DA CONFIGURAZIONE

class KeyManager:
    """Genera chiavi di firma secondo i parametri configurati"""

    def __init__(self, key_type: str = "rsa", rsa_bits: int = 2048, curve: str = "p256"):
        """
        Inizializza il key manager

        Args:
            key_type: Tipo di chiave ("rsa" o "ecdsa")
            rsa_bits: Dimensione delle chiavi RSA
            curve: Curva delle chiavi ECDSA
        """
        if key_type not in KEY_TYPES:
            raise ValueError(f"Tipo di chiave deve essere uno tra {', '.join(KEY_TYPES)}")
        self.key_type = key_type
        self.rsa_bits = rsa_bits
        self.curve = curve

    @classmethod
    def from_config(cls, config) -> "KeyManager":
        return cls(key_type=config.key_type, rsa_bits=config.rsa_bits, curve=config.curve)

    def generate_key(self) -> Signer:
        return generate_key(self.key_type, bits=self.rsa_bits, curve=self.curve)
