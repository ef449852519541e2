"""
Configurazione del toolkit CA.

I valori predefiniti possono essere sovrascritti da variabili d'ambiente
(CA_KEY_TYPE, CA_RSA_BITS, CA_CURVE, CA_CIPHER, CA_VALIDITY_DAYS,
CA_LOG_LEVEL), lette anche da un file .env se presente.
"""

import logging
import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from cacrypto.exceptions import ConfigurationError
from cacrypto.keys import CURVES, KEY_TYPES
from cacrypto.pem import PEMCipher


logger = logging.getLogger(__name__)

ENV_VARIABLES = {
    "key_type": "CA_KEY_TYPE",
    "rsa_bits": "CA_RSA_BITS",
    "curve": "CA_CURVE",
    "cipher": "CA_CIPHER",
    "validity_days": "CA_VALIDITY_DAYS",
    "log_level": "CA_LOG_LEVEL",
}


class CAConfiguration(BaseModel):
    """Parametri predefiniti per generazione chiavi e firma."""
    key_type: str = Field("rsa", description="Tipo di chiave generata (rsa o ecdsa)")
    rsa_bits: int = Field(2048, ge=1024, description="Dimensione delle chiavi RSA")
    curve: str = Field("p256", description="Curva delle chiavi ECDSA")
    cipher: str = Field("aes128", description="Cifrario PEM per le chiavi private")
    validity_days: int = Field(30, ge=1, description="Giorni di validità dei certificati")
    log_level: str = Field("WARNING", description="Livello di logging dei comandi")

    @field_validator('key_type')
    @classmethod
    def validate_key_type(cls, v: str) -> str:
        v = v.lower()
        if v not in KEY_TYPES:
            raise ValueError(f"Tipo di chiave deve essere uno tra {', '.join(KEY_TYPES)}")
        return v

    @field_validator('curve')
    @classmethod
    def validate_curve(cls, v: str) -> str:
        v = v.lower()
        if v not in CURVES:
            raise ValueError(f"Curva deve essere una tra {', '.join(CURVES)}")
        return v

    @field_validator('cipher')
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Valida il nome del cifrario PEM ("none" disabilita la cifratura)."""
        return PEMCipher.from_name(v).label

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if not isinstance(logging.getLevelName(v), int):
            raise ValueError(f"Livello di logging non valido: {v}")
        return v

    @property
    def pem_cipher(self) -> PEMCipher:
        return PEMCipher.from_name(self.cipher)


def load_config(env_file: Optional[str] = None, **overrides: Any) -> CAConfiguration:
    """
    Carica la configurazione da ambiente e file .env.

    Args:
        env_file: Percorso di un file .env (predefinito: ricerca automatica)
        overrides: Valori espliciti con precedenza sull'ambiente

    Returns:
        Configurazione validata
    """
    load_dotenv(env_file)

    values = {}
    for name, variable in ENV_VARIABLES.items():
        value = os.getenv(variable)
        if value is not None:
            values[name] = value
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return CAConfiguration(**values)
    except ValidationError as e:
        raise ConfigurationError(f"configurazione non valida: {e}") from e
