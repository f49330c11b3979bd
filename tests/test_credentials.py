"""Tests for credentials.py: prefixed token storage in a JSON file."""

import json

import pytest

from credentials import CredentialStore


@pytest.fixture
def store(tmp_path):
    return CredentialStore(path=str(tmp_path / "creds.json"), prefix="transsync_")


class TestCredentialStore:
    def test_empty_store(self, store):
        assert store.get_token() is None
        assert store.get_current_user() is None
        assert store.is_authenticated() is False

    def test_save_and_read(self, store):
        store.save("tok-123", {"id": 7, "name": "Ana"})
        assert store.get_token() == "tok-123"
        assert store.get_current_user() == {"id": 7, "name": "Ana"}
        assert store.is_authenticated() is True

    def test_token_without_user_is_not_authenticated(self, store):
        store.save("tok-123")
        assert store.get_token() == "tok-123"
        assert store.is_authenticated() is False

    def test_keys_are_prefixed(self, store):
        store.save("tok-123", {"id": 7})
        with open(store.path) as f:
            data = json.load(f)
        assert set(data) == {"transsync_userToken", "transsync_userData"}

    def test_clear_keeps_other_keys(self, store):
        store.save("tok-123", {"id": 7})
        with open(store.path) as f:
            data = json.load(f)
        data["other_app_setting"] = "keep"
        with open(store.path, "w") as f:
            json.dump(data, f)

        store.clear()

        assert store.get_token() is None
        with open(store.path) as f:
            assert json.load(f) == {"other_app_setting": "keep"}

    def test_corrupt_file_reads_as_empty(self, store):
        with open(store.path, "w") as f:
            f.write("{not json")
        assert store.get_token() is None
