from __future__ import annotations

from pathlib import Path

from dotlink.state import UNKNOWN_HASH, StateStore


def test_state_store_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "state" / "dotlink-state.toml"
    store = StateStore.load(path)
    assert store.lookup_content_hash("neovim/nvim-config") == UNKNOWN_HASH

    store.record("neovim/nvim-config", content_hash="abc", template_hash=None)
    store.record("shell/rc", content_hash="def", template_hash="123")
    store.save()

    loaded = StateStore.load(path)
    assert loaded.lookup_content_hash("neovim/nvim-config") == "abc"
    assert loaded.lookup_template_hash("neovim/nvim-config") == UNKNOWN_HASH
    assert loaded.lookup_template_hash("shell/rc") == "123"


def test_state_store_unknown_and_forget(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.toml")
    store.record("app/entry", content_hash="abc")

    store.forget("app/entry")
    store.forget("never/recorded")

    assert store.lookup_content_hash("app/entry") == UNKNOWN_HASH
    assert store.lookup_template_hash("missing/entry") == UNKNOWN_HASH
