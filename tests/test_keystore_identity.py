from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest
from algosdk.encoding import decode_address, is_valid_address

from storder.errors import LedgerError, NoFundsError
from storder.identity import KeystoreIdentityProvider
from storder.keystore import SqliteKeystore
from storder.ledger.memory import InMemoryLedger

APP_ID = 1001


def _mk_keystore(tmp_path: Path) -> SqliteKeystore:
    ks = SqliteKeystore(path=str(tmp_path / "keys" / "keystore.db"))
    ks.init_schema()
    return ks


def test_get_or_create_is_stable_across_instances(tmp_path: Path) -> None:
    ks1 = _mk_keystore(tmp_path)
    rec1 = ks1.get_or_create("uploader")

    ks2 = _mk_keystore(tmp_path)
    rec2 = ks2.get_or_create("uploader")

    assert rec1.address == rec2.address
    assert rec1.secret_key == rec2.secret_key
    assert is_valid_address(rec1.address)
    assert len(rec1.secret_key) == 64
    assert decode_address(rec1.address) == rec1.secret_key[32:]


def test_names_are_independent(tmp_path: Path) -> None:
    ks = _mk_keystore(tmp_path)

    a = ks.get_or_create("uploader")
    b = ks.get_or_create("backup")

    assert a.address != b.address
    assert ks.names() == ["backup", "uploader"]
    assert ks.get("missing") is None

    with pytest.raises(ValueError):
        ks.get_or_create("  ")


def test_keystore_file_is_private(tmp_path: Path) -> None:
    ks = _mk_keystore(tmp_path)
    ks.get_or_create("uploader")

    if os.name != "posix":
        pytest.skip("permission bits are POSIX-only")
    mode = stat.S_IMODE(os.stat(ks.path).st_mode)
    assert mode & 0o077 == 0


def test_keystore_refuses_unknown_schema_version(tmp_path: Path) -> None:
    ks = _mk_keystore(tmp_path)
    with ks.write_tx() as con:
        con.execute("UPDATE meta SET value='99' WHERE key='schema_version';")

    with pytest.raises(RuntimeError):
        ks.init_schema()


def test_key_record_repr_hides_secret(tmp_path: Path) -> None:
    rec = _mk_keystore(tmp_path).get_or_create("uploader")
    assert rec.secret_key.hex() not in repr(rec)


def test_identity_resolves_when_funded(tmp_path: Path) -> None:
    ks = _mk_keystore(tmp_path)
    ledger = InMemoryLedger(app_id=APP_ID)
    addr = ks.get_or_create("uploader").address
    ledger.fund(addr, 2_000_000)

    ident = KeystoreIdentityProvider(keystore=ks, ledger=ledger).resolve()

    assert ident.address == addr
    assert ident.balance == 2_000_000
    assert ident.secret_key.hex() not in repr(ident)


def test_identity_with_zero_balance_raises_no_funds(tmp_path: Path) -> None:
    ks = _mk_keystore(tmp_path)
    ledger = InMemoryLedger(app_id=APP_ID)

    with pytest.raises(NoFundsError) as e:
        KeystoreIdentityProvider(keystore=ks, ledger=ledger).resolve()

    addr = ks.get_or_create("uploader").address
    assert e.value.code == "no_funds"
    assert addr in e.value.reason
    assert "fund" in e.value.reason.lower()

    # The key was created but nothing else happened on the ledger.
    assert [name for name, _ in ledger.calls] == ["account_balance"]


def test_identity_propagates_ledger_errors(tmp_path: Path) -> None:
    class _DownLedger(InMemoryLedger):
        def account_balance(self, address: str) -> int:
            raise LedgerError("unreachable", "connection refused")

    ks = _mk_keystore(tmp_path)
    with pytest.raises(LedgerError) as e:
        KeystoreIdentityProvider(keystore=ks, ledger=_DownLedger(app_id=APP_ID)).resolve()
    assert e.value.code == "unreachable"
