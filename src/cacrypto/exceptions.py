"""Gerarchia delle eccezioni del toolkit CA."""


class CAError(Exception):
    """Errore base, recuperabile, restituito al chiamante."""


class DecodeError(CAError):
    """Dati PEM/DER malformati o con tipo non previsto."""


class IncorrectPassphraseError(DecodeError):
    """Il blocco PEM cifrato non si decifra con la passphrase fornita."""


class EncodeError(CAError):
    """Oggetto privo dello stato necessario alla serializzazione o di tipo non supportato."""


class GenerationError(CAError):
    """Errore nella generazione di una chiave."""


class PassphraseError(CAError):
    """Impossibile ottenere la passphrase."""


class SigningError(CAError):
    """La primitiva di firma ha rifiutato il template o la chiave."""


class FileAccessError(CAError):
    """Impossibile aprire o scrivere un file."""


class ConfigurationError(CAError):
    """Configurazione non valida."""


def annotate(error: CAError, message: str) -> CAError:
    """
    Crea un errore dello stesso tipo con il contesto dell'operazione.

    Il chiamante lo solleva con "raise annotate(e, ...) from e" per
    mantenere la causa originale.
    """
    return type(error)(f"{message}: {error}")


class EncodingInvariantError(AssertionError):
    """
    Dati appena prodotti dal motore di firma che non si riescono a rileggere.

    Non deriva da CAError: segnala un difetto interno, non un errore
    dell'input del chiamante.
    """
