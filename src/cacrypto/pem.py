"""
Codec PEM con supporto alla cifratura PEM legacy.

I blocchi cifrati usano le intestazioni "Proc-Type: 4,ENCRYPTED" e
"DEK-Info: <cifrario>,<IV esadecimale>", compatibili con il formato
tradizionale di OpenSSL: chiave derivata con EVP_BytesToKey (MD5, una
iterazione, salt = primi 8 byte dell'IV), modalità CBC, padding PKCS#7.
"""

import base64
import binascii
import hashlib
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Dict, Optional, Tuple, Union

from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .exceptions import (
    DecodeError,
    EncodeError,
    FileAccessError,
    IncorrectPassphraseError,
    PassphraseError,
    annotate,
)
from .passphrase import PassphraseSource


logger = logging.getLogger(__name__)

_PEM_BEGIN = re.compile(rb"-----BEGIN ([^\r\n-]*)-----")
_LINE_LENGTH = 64


# 1. BLOCCHI E CIFRARI

@dataclass
class PEMBlock:
    """Blocco PEM: tipo, payload binario e intestazioni opzionali."""
    type: str
    data: bytes
    headers: Dict[str, str] = field(default_factory=dict)


class PEMCipher(Enum):
    """Cifrari supportati per la cifratura PEM legacy."""
    NONE = ("none", "", 0, 0)
    DES = ("des", "DES-CBC", 8, 8)
    DES3 = ("3des", "DES-EDE3-CBC", 24, 8)
    AES128 = ("aes128", "AES-128-CBC", 16, 16)
    AES192 = ("aes192", "AES-192-CBC", 24, 16)
    AES256 = ("aes256", "AES-256-CBC", 32, 16)

    def __init__(self, label: str, dek_name: str, key_size: int, block_size: int):
        self.label = label
        self.dek_name = dek_name
        self.key_size = key_size
        self.block_size = block_size

    @classmethod
    def from_name(cls, name: Optional[Union[str, "PEMCipher"]]) -> "PEMCipher":
        """
        Restituisce il cifrario dato il nome ("", "none", "des", "3des", "aes128", ...).

        Raises:
            ValueError: se il nome non corrisponde a nessun cifrario
        """
        if isinstance(name, PEMCipher):
            return name
        label = (name or "none").strip().lower()
        for cipher in cls:
            if cipher.label == label:
                return cipher
        raise ValueError(f"cifrario non supportato {name!r}")

    @classmethod
    def from_dek_name(cls, dek_name: str) -> Optional["PEMCipher"]:
        for cipher in cls:
            if cipher is not cls.NONE and cipher.dek_name == dek_name:
                return cipher
        return None

    def algorithm(self, key: bytes):
        # TripleDES con K1 = K2 = K3 equivale a DES singolo
        if self is PEMCipher.DES:
            return TripleDES(key * 3)
        if self is PEMCipher.DES3:
            return TripleDES(key)
        return algorithms.AES(key)


# 2. CODIFICA TESTUALE

def decode_pem(data: Union[bytes, str]) -> PEMBlock:
    """
    Individua il primo blocco PEM valido nei dati.

    Args:
        data: Dati contenenti uno o più blocchi PEM

    Returns:
        Primo blocco PEM ben formato
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    pos = 0
    while True:
        match = _PEM_BEGIN.search(data, pos)
        if match is None:
            raise DecodeError("dati PEM non validi")
        block_type = match.group(1)
        end = data.find(b"-----END " + block_type + b"-----", match.end())
        if end < 0:
            raise DecodeError("dati PEM non validi")
        block = _parse_block(block_type.decode('latin-1'), data[match.end():end])
        if block is not None:
            return block
        pos = match.end()


def _parse_block(block_type: str, body: bytes) -> Optional[PEMBlock]:
    lines = body.strip().splitlines()
    headers: Dict[str, str] = {}

    idx = 0
    while idx < len(lines) and b":" in lines[idx]:
        key, _, value = lines[idx].partition(b":")
        headers[key.strip().decode('latin-1')] = value.strip().decode('latin-1')
        idx += 1
    while idx < len(lines) and not lines[idx].strip():
        idx += 1

    payload = b"".join(line.strip() for line in lines[idx:])
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None
    return PEMBlock(block_type, decoded, headers)


def encode_pem(block: PEMBlock) -> bytes:
    """Serializza un blocco nella forma PEM standard."""
    lines = [f"-----BEGIN {block.type}-----"]
    if block.headers:
        # Proc-Type deve precedere le altre intestazioni
        keys = sorted(k for k in block.headers if k != "Proc-Type")
        if "Proc-Type" in block.headers:
            keys.insert(0, "Proc-Type")
        lines.extend(f"{key}: {block.headers[key]}" for key in keys)
        lines.append("")

    encoded = base64.b64encode(block.data).decode('ascii')
    lines.extend(encoded[i:i + _LINE_LENGTH] for i in range(0, len(encoded), _LINE_LENGTH))
    lines.append(f"-----END {block.type}-----")
    return ("\n".join(lines) + "\n").encode('latin-1')


def der_header(data: bytes, offset: int = 0) -> Tuple[int, int, int]:
    """
    Legge l'intestazione di un elemento DER.

    Args:
        data: Dati DER
        offset: Posizione del byte di tag

    Returns:
        (tag, inizio del contenuto, fine del contenuto)
    """
    if offset + 2 > len(data):
        raise DecodeError("elemento DER troncato")
    tag = data[offset]
    length = data[offset + 1]
    start = offset + 2
    if length & 0x80:
        size = length & 0x7f
        if size == 0 or size > 4 or start + size > len(data):
            raise DecodeError("lunghezza DER non valida")
        length = int.from_bytes(data[start:start + size], 'big')
        start += size
    end = start + length
    if end > len(data):
        raise DecodeError("elemento DER troncato")
    return tag, start, end


# 3. CIFRATURA PEM LEGACY

def is_encrypted_pem_block(block: PEMBlock) -> bool:
    return "DEK-Info" in block.headers


def _derive_key(passphrase: bytes, salt: bytes, key_size: int) -> bytes:
    # EVP_BytesToKey con MD5 e una sola iterazione
    derived = b""
    digest = b""
    while len(derived) < key_size:
        digest = hashlib.md5(digest + passphrase + salt).digest()
        derived += digest
    return derived[:key_size]


def encrypt_pem_block(block_type: str, data: bytes, passphrase: bytes,
                      cipher: Union[str, PEMCipher]) -> PEMBlock:
    """
    Cifra un payload e produce il blocco PEM con le intestazioni DEK-Info.

    Args:
        block_type: Tipo del blocco risultante
        data: Payload in chiaro
        passphrase: Passphrase non vuota
        cipher: Cifrario da usare

    Returns:
        Blocco PEM cifrato
    """
    cipher = PEMCipher.from_name(cipher)
    if cipher is PEMCipher.NONE:
        raise EncodeError("nessun cifrario selezionato")

    iv = os.urandom(cipher.block_size)
    key = _derive_key(passphrase, iv[:8], cipher.key_size)

    padder = padding.PKCS7(cipher.block_size * 8).padder()
    padded = padder.update(data) + padder.finalize()
    encryptor = Cipher(cipher.algorithm(key), modes.CBC(iv)).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()

    headers = {
        "Proc-Type": "4,ENCRYPTED",
        "DEK-Info": f"{cipher.dek_name},{iv.hex().upper()}",
    }
    return PEMBlock(block_type, encrypted, headers)


def decrypt_pem_block(block: PEMBlock, passphrase: bytes) -> bytes:
    """
    Decifra il payload di un blocco PEM cifrato.

    Args:
        block: Blocco con intestazione DEK-Info
        passphrase: Passphrase di decifratura

    Returns:
        Payload in chiaro
    """
    dek_info = block.headers.get("DEK-Info")
    if dek_info is None:
        raise DecodeError("blocco PEM privo dell'intestazione DEK-Info")

    dek_name, _, iv_hex = dek_info.partition(",")
    cipher = PEMCipher.from_dek_name(dek_name.strip())
    if cipher is None:
        raise DecodeError(f"cifrario PEM non supportato {dek_name.strip()!r}")
    try:
        iv = bytes.fromhex(iv_hex.strip())
    except ValueError as e:
        raise DecodeError("IV non valido nell'intestazione DEK-Info") from e
    if len(iv) != cipher.block_size:
        raise DecodeError("IV di lunghezza errata nell'intestazione DEK-Info")
    if not block.data or len(block.data) % cipher.block_size:
        raise DecodeError("dati cifrati di lunghezza non valida")

    key = _derive_key(passphrase, iv[:8], cipher.key_size)
    decryptor = Cipher(cipher.algorithm(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(block.data) + decryptor.finalize()

    unpadder = padding.PKCS7(cipher.block_size * 8).unpadder()
    try:
        data = unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise IncorrectPassphraseError("passphrase errata") from e

    # Circa una decifratura errata su 256 ha un padding valido
    if block.type.endswith("PRIVATE KEY") and not _is_single_sequence(data):
        raise IncorrectPassphraseError("passphrase errata")
    return data


def _is_single_sequence(data: bytes) -> bool:
    try:
        tag, _, end = der_header(data)
    except DecodeError:
        return False
    return tag == 0x30 and end == len(data)


# 4. LETTURA E SCRITTURA SU STREAM

def _fetch_passphrase(source: PassphraseSource, context: Any) -> bytes:
    try:
        passphrase = source.get_passphrase(context)
    except PassphraseError:
        raise
    except (OSError, EOFError) as e:
        raise PassphraseError(f"impossibile ottenere la passphrase: {e}") from e
    if isinstance(passphrase, str):
        passphrase = passphrase.encode('utf-8')
    return passphrase or b""


def read_pem(stream: BinaryIO) -> PEMBlock:
    """Legge tutto lo stream e restituisce il primo blocco PEM, senza controllarne il tipo."""
    try:
        data = stream.read()
    except OSError as e:
        raise FileAccessError(f"impossibile leggere i dati PEM: {e}") from e
    return decode_pem(data)


def read_encrypted_pem(stream: BinaryIO, source: Optional[PassphraseSource],
                       context: Any = None) -> PEMBlock:
    """
    Legge un blocco PEM decifrandolo se necessario.

    La passphrase viene chiesta una sola volta e solo se il blocco è cifrato.

    Args:
        stream: Stream binario da leggere
        source: Sorgente della passphrase
        context: Handle di annullamento inoltrato alla sorgente

    Returns:
        Blocco con payload in chiaro e tipo invariato
    """
    block = read_pem(stream)
    if not is_encrypted_pem_block(block):
        return block
    if source is None:
        raise PassphraseError(f"il blocco {block.type} è cifrato ma non è disponibile una passphrase")

    passphrase = _fetch_passphrase(source, context)
    try:
        block.data = decrypt_pem_block(block, passphrase)
    except DecodeError as e:
        raise annotate(e, f"impossibile decifrare il blocco {block.type}") from e
    block.headers.pop("Proc-Type", None)
    block.headers.pop("DEK-Info", None)
    logger.debug(f"Blocco {block.type} decifrato")
    return block


def _open_for_reading(path: Union[str, os.PathLike]) -> BinaryIO:
    try:
        return open(path, 'rb')
    except OSError as e:
        raise FileAccessError(f"impossibile aprire {path}: {e}") from e


def read_pem_file(path: Union[str, os.PathLike]) -> PEMBlock:
    with _open_for_reading(path) as f:
        try:
            return read_pem(f)
        except DecodeError as e:
            raise annotate(e, f"{path}") from e


def read_encrypted_pem_file(path: Union[str, os.PathLike], source: Optional[PassphraseSource],
                            context: Any = None) -> PEMBlock:
    with _open_for_reading(path) as f:
        try:
            return read_encrypted_pem(f, source, context)
        except DecodeError as e:
            raise annotate(e, f"{path}") from e


def write_pem(stream: BinaryIO, block: PEMBlock) -> None:
    try:
        stream.write(encode_pem(block))
    except OSError as e:
        raise FileAccessError(f"impossibile scrivere il blocco {block.type}: {e}") from e


def write_encrypted_pem(stream: BinaryIO, block: PEMBlock, source: Optional[PassphraseSource],
                        cipher: Union[str, PEMCipher], context: Any = None) -> None:
    """
    Scrive un blocco PEM, cifrandolo se è stata fornita una passphrase.

    Senza cifrario o senza sorgente il blocco viene scritto in chiaro, e
    così anche quando la passphrase ottenuta è vuota.

    Args:
        stream: Stream binario di destinazione
        block: Blocco da scrivere
        source: Sorgente della passphrase (opzionale)
        cipher: Cifrario scelto (PEMCipher.NONE per nessuna cifratura)
        context: Handle di annullamento inoltrato alla sorgente
    """
    cipher = PEMCipher.from_name(cipher)
    passphrase = b""
    if cipher is not PEMCipher.NONE and source is not None:
        passphrase = _fetch_passphrase(source, context)

    if passphrase:
        try:
            block = encrypt_pem_block(block.type, block.data, passphrase, cipher)
        except (ValueError, TypeError) as e:
            raise EncodeError(f"impossibile cifrare il blocco {block.type}: {e}") from e
        logger.debug(f"Blocco {block.type} cifrato con {cipher.dek_name}")
    write_pem(stream, block)
