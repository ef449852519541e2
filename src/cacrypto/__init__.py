from .exceptions import (
    CAError,
    DecodeError,
    IncorrectPassphraseError,
    EncodeError,
    GenerationError,
    PassphraseError,
    SigningError,
    FileAccessError,
    ConfigurationError,
    EncodingInvariantError
)
from .pem import (
    PEMBlock,
    PEMCipher,
    decode_pem,
    encode_pem,
    read_pem,
    read_encrypted_pem,
    read_pem_file,
    read_encrypted_pem_file,
    write_pem,
    write_encrypted_pem
)
from .passphrase import (
    PassphraseSource,
    ConstantPassphrase,
    InteractivePassphrase,
    get_passphrase_source
)
from .keys import (
    Signer,
    KeyManager,
    generate_key,
    generate_rsa_key,
    generate_ecdsa_key,
    marshal_key,
    unmarshal_key,
    read_key,
    read_key_file,
    write_key
)

__version__ = "1.0.0"

__all__ = [
    "CAError",
    "DecodeError",
    "IncorrectPassphraseError",
    "EncodeError",
    "GenerationError",
    "PassphraseError",
    "SigningError",
    "FileAccessError",
    "ConfigurationError",
    "EncodingInvariantError",
    "PEMBlock",
    "PEMCipher",
    "decode_pem",
    "encode_pem",
    "read_pem",
    "read_encrypted_pem",
    "read_pem_file",
    "read_encrypted_pem_file",
    "write_pem",
    "write_encrypted_pem",
    "PassphraseSource",
    "ConstantPassphrase",
    "InteractivePassphrase",
    "get_passphrase_source",
    "Signer",
    "KeyManager",
    "generate_key",
    "generate_rsa_key",
    "generate_ecdsa_key",
    "marshal_key",
    "unmarshal_key",
    "read_key",
    "read_key_file",
    "write_key"
]
