import threading

import pytest

from cacrypto.exceptions import PassphraseError
from cacrypto.passphrase import ConstantPassphrase, InteractivePassphrase, get_passphrase_source


def test_constant_passphrase_normalizes_to_bytes():
    assert ConstantPassphrase("segreto").get_passphrase() == b"segreto"
    assert ConstantPassphrase(b"raw").get_passphrase() == b"raw"
    assert ConstantPassphrase(None).get_passphrase() == b""


def test_source_selection():
    assert get_passphrase_source("explicit", nopass=True).get_passphrase() == b"explicit"
    assert get_passphrase_source(None, nopass=True).get_passphrase() == b""
    assert isinstance(get_passphrase_source(), InteractivePassphrase)


def test_interactive_passphrase_reads_terminal(monkeypatch):
    prompts = []

    def fake_getpass(prompt):
        prompts.append(prompt)
        return "typed"

    monkeypatch.setattr("getpass.getpass", fake_getpass)

    assert InteractivePassphrase("Key passphrase: ").get_passphrase() == b"typed"
    assert prompts == ["Key passphrase: "]


def test_interactive_passphrase_without_terminal(monkeypatch):
    def no_input(prompt):
        raise EOFError()

    monkeypatch.setattr("getpass.getpass", no_input)

    with pytest.raises(PassphraseError):
        InteractivePassphrase().get_passphrase()


def test_interactive_passphrase_cancelled(monkeypatch):
    def unexpected(prompt):
        raise AssertionError("prompt shown after cancellation")

    monkeypatch.setattr("getpass.getpass", unexpected)
    cancelled = threading.Event()
    cancelled.set()

    with pytest.raises(PassphraseError):
        InteractivePassphrase().get_passphrase(cancelled)


def test_interactive_passphrase_ignores_unset_context(monkeypatch):
    monkeypatch.setattr("getpass.getpass", lambda prompt: "ok")

    assert InteractivePassphrase().get_passphrase(threading.Event()) == b"ok"
