"""
Tests for the local identity: key generation and what gets persisted.
"""
import json

from ignition.keys import STORAGE_KEY, FileStorage, IdentityStore, KeyPair, MemoryStorage
from ignition.message import PUBKEY_REGEX


class TestKeyPair:

    def test_generate(self):
        kp = KeyPair.generate()
        assert len(kp.private_key) == 32
        assert PUBKEY_REGEX.match(kp.public_key)
        assert kp.public_key == kp.public_key.lower()
        assert KeyPair.generate().public_key != kp.public_key

    def test_private_key_not_in_repr(self):
        kp = KeyPair.generate()
        assert kp.private_key.hex() not in repr(kp)


class TestIdentityStore:

    def test_first_load_persists_only_the_public_key(self):
        storage = MemoryStorage()
        keys = IdentityStore(storage).load()

        assert storage.items == {STORAGE_KEY: keys.public_key}
        assert keys.private_key.hex() not in json.dumps(storage.items)

    def test_load_is_idempotent(self):
        store = IdentityStore(MemoryStorage())
        assert store.keys is None
        first = store.load()
        assert store.load() is first
        assert store.keys is first

    def test_reload_generates_a_new_pair(self):
        storage = MemoryStorage()
        before = IdentityStore(storage).load()

        store = IdentityStore(storage)
        assert store.persisted_public_key() == before.public_key
        after = store.load()

        assert after.public_key != before.public_key
        assert storage.get(STORAGE_KEY) == after.public_key

    def test_malformed_persisted_value_is_replaced(self):
        storage = MemoryStorage({STORAGE_KEY: "not-a-key"})
        store = IdentityStore(storage)

        assert store.persisted_public_key() is None
        keys = store.load()
        assert storage.get(STORAGE_KEY) == keys.public_key

    def test_custom_storage_key(self):
        storage = MemoryStorage()
        keys = IdentityStore(storage, "app.clientPubkey").load()
        assert storage.items == {"app.clientPubkey": keys.public_key}


class TestFileStorage:

    def test_survives_a_new_instance(self, tmp_path):
        path = tmp_path / "state" / "ignition.json"
        keys = IdentityStore(FileStorage(path)).load()

        assert json.loads(path.read_text()) == {STORAGE_KEY: keys.public_key}
        assert IdentityStore(FileStorage(path)).persisted_public_key() == keys.public_key

    def test_keeps_other_entries(self, tmp_path):
        path = tmp_path / "ignition.json"
        path.write_text(json.dumps({"theme": "dark"}))

        FileStorage(path).set("a", "b")

        assert json.loads(path.read_text()) == {"theme": "dark", "a": "b"}

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "ignition.json"
        path.write_text("{oops")

        storage = FileStorage(path)
        assert storage.get(STORAGE_KEY) is None
        storage.set(STORAGE_KEY, "x")
        assert storage.get(STORAGE_KEY) == "x"

    def test_missing_file(self, tmp_path):
        assert FileStorage(tmp_path / "nope.json").get("anything") is None
