import json
from unittest.mock import Mock, patch

import pytest

from remote_print.credentials import CredentialStore, default_hasher, prompt_for_password
from remote_print.exceptions import ConfigurationError, CredentialError
from tests.mocks import PASSWORD


class TestCredentialStore:
    def test_default_cost_parameters(self):
        hasher = default_hasher()
        assert hasher.time_cost == 3
        assert hasher.memory_cost == 65536
        assert hasher.parallelism == 1

    def test_verify(self, credentials):
        assert credentials.password_hash.startswith("$argon2id$")
        assert credentials.verify(PASSWORD) is True
        assert credentials.verify(PASSWORD.encode("utf-8")) is True
        assert credentials.verify("wrong") is False
        assert credentials.verify("") is False

    def test_invalid_stored_hash(self):
        store = CredentialStore("$argon2id$garbage")
        with pytest.raises(CredentialError, match="Stored password hash is invalid"):
            store.verify(PASSWORD)

    @pytest.mark.asyncio
    async def test_verify_async(self, credentials):
        assert await credentials.verify_async(PASSWORD) is True
        assert await credentials.verify_async("wrong") is False


class TestLoadOrCreate:
    def test_first_run_prompts_and_persists(self, tmp_path, fast_hasher, monkeypatch):
        monkeypatch.delenv("REMOTE_PRINT_PASSWORD", raising=False)
        settings = tmp_path / "data" / "server_settings.json"
        prompt = Mock(return_value=PASSWORD)

        store = CredentialStore.load_or_create(settings, prompt=prompt, hasher=fast_hasher)

        prompt.assert_called_once_with()
        saved = json.loads(settings.read_text())
        assert saved == {"hash": store.password_hash}
        assert (settings.stat().st_mode & 0o777) == 0o600
        assert store.verify(PASSWORD)

    def test_existing_settings_are_reused(self, tmp_path, fast_hasher):
        settings = tmp_path / "server_settings.json"
        original = CredentialStore.from_password(PASSWORD, fast_hasher)
        settings.write_text(json.dumps({"hash": original.password_hash}))
        prompt = Mock()

        store = CredentialStore.load_or_create(settings, prompt=prompt, hasher=fast_hasher)

        prompt.assert_not_called()
        assert store.password_hash == original.password_hash

    def test_password_from_environment(self, tmp_path, fast_hasher, monkeypatch):
        monkeypatch.setenv("REMOTE_PRINT_PASSWORD", "from-env")
        prompt = Mock()

        store = CredentialStore.load_or_create(
            tmp_path / "server_settings.json", prompt=prompt, hasher=fast_hasher
        )

        prompt.assert_not_called()
        assert store.verify("from-env")

    def test_settings_without_hash(self, tmp_path):
        settings = tmp_path / "server_settings.json"
        settings.write_text(json.dumps({"printer": "x"}))
        with pytest.raises(ConfigurationError, match="no password hash"):
            CredentialStore.load_or_create(settings, prompt=Mock())

    def test_save_failure_keeps_store_usable(self, tmp_path, fast_hasher, monkeypatch):
        monkeypatch.delenv("REMOTE_PRINT_PASSWORD", raising=False)
        with patch(
            "remote_print.credentials.save_settings", side_effect=PermissionError("ro")
        ):
            store = CredentialStore.load_or_create(
                tmp_path / "server_settings.json",
                prompt=Mock(return_value=PASSWORD),
                hasher=fast_hasher,
            )
        assert store.verify(PASSWORD)


class TestPrompt:
    def test_retries_until_passwords_match(self, capsys):
        answers = iter(["", "", "one", "two", "good", "good"])
        with patch("remote_print.credentials.getpass.getpass", side_effect=lambda _: next(answers)):
            assert prompt_for_password() == "good"
        out = capsys.readouterr().out
        assert "Password must not be empty" in out
        assert "Passwords do not match" in out
