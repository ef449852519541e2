"""
Sorgenti di passphrase.

Il codec PEM chiede la passphrase solo quando serve davvero, tramite
un'unica operazione get_passphrase(context). Il context è un handle di
annullamento opaco (ad esempio un threading.Event) che viene inoltrato
alla sorgente senza essere interpretato dal codec.
"""

import getpass
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from .exceptions import PassphraseError


logger = logging.getLogger(__name__)


class PassphraseSource(ABC):
    """Interfaccia astratta per ottenere la passphrase dell'operazione corrente."""

    @abstractmethod
    def get_passphrase(self, context: Any = None) -> bytes:
        """
        Restituisce la passphrase, eventualmente vuota.

        Args:
            context: Handle di annullamento opzionale

        Returns:
            Passphrase in bytes
        """


class ConstantPassphrase(PassphraseSource):
    """Passphrase fissa, usata da --passphrase, da --nopass e nei test."""

    def __init__(self, passphrase: Optional[Union[bytes, str]] = None):
        if isinstance(passphrase, str):
            passphrase = passphrase.encode('utf-8')
        self._passphrase = passphrase or b""

    def get_passphrase(self, context: Any = None) -> bytes:
        return self._passphrase


class InteractivePassphrase(PassphraseSource):
    """Legge la passphrase dal terminale senza eco."""

    def __init__(self, prompt: str = "Passphrase: "):
        self.prompt = prompt

    def get_passphrase(self, context: Any = None) -> bytes:
        if _is_cancelled(context):
            raise PassphraseError("richiesta della passphrase annullata")
        try:
            value = getpass.getpass(self.prompt)
        except (EOFError, OSError) as e:
            raise PassphraseError(f"impossibile leggere la passphrase: {e}") from e
        if _is_cancelled(context):
            raise PassphraseError("richiesta della passphrase annullata")
        return value.encode('utf-8')


def _is_cancelled(context: Any) -> bool:
    is_set = getattr(context, "is_set", None)
    return bool(is_set and is_set())


def get_passphrase_source(passphrase: Optional[str] = None, nopass: bool = False) -> PassphraseSource:
    """
    Seleziona la sorgente di passphrase per i comandi.

    Una passphrase esplicita ha la precedenza; con nopass si usa una
    passphrase vuota (nessuna cifratura in scrittura); altrimenti la
    passphrase viene chiesta in modo interattivo.

    Args:
        passphrase: Passphrase fornita esplicitamente
        nopass: Disabilita la richiesta interattiva

    Returns:
        Sorgente di passphrase
    """
    if passphrase:
        return ConstantPassphrase(passphrase)
    if nopass:
        return ConstantPassphrase(None)
    logger.debug("Passphrase richiesta in modo interattivo")
    return InteractivePassphrase()
