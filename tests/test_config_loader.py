"""Tests for YAML configuration loading."""

import pytest

from certaudit.config_loader import (
    DEFAULT_CHAIN_PATTERNS,
    ConfigurationError,
    load_config,
)


def write_config(tmp_path, text, name="config.yaml"):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


def test_defaults_without_file():
    config = load_config(None)

    assert config.settings.engine == "cryptography"
    assert config.settings.chain_name_patterns == DEFAULT_CHAIN_PATTERNS
    assert config.settings.expiration_threshold_days == 30
    assert config.trees.new_root == "new"
    assert config.trees.old_root == "old"
    assert not config.notifications.email.enabled


def test_full_config(tmp_path, monkeypatch):
    monkeypatch.setenv("CERT_HOME", "/srv/certs")
    path = write_config(tmp_path, """
settings:
  engine: OpenSSL
  openssl_timeout: 10
  passphrase_filename: pass.txt
  chain_name_patterns: "*bundle*"
  chain_search_roots:
    - ${CERT_HOME}/shared
  expiration_threshold_days: 14
  skip_if_already_merged: false
trees:
  new_root: ${CERT_HOME}/new
  old_root: ${CERT_HOME}/old
notifications:
  notify_on_success: true
  email:
    enabled: true
    from_email: certs@example.com
    to_emails: ops@example.com
  teams:
    enabled: true
    webhook_url: https://example.invalid/hook
""")

    config = load_config(path)

    assert config.settings.engine == "openssl"
    assert config.settings.openssl_timeout == 10
    assert config.settings.passphrase_filename == "pass.txt"
    assert config.settings.chain_name_patterns == ["*bundle*"]
    assert config.settings.chain_search_roots == ["/srv/certs/shared"]
    assert config.settings.expiration_threshold_days == 14
    assert config.settings.skip_if_already_merged is False
    assert config.trees.new_root == "/srv/certs/new"
    assert config.trees.old_root == "/srv/certs/old"
    assert config.notifications.notify_on_success
    assert config.notifications.email.to_emails == ["ops@example.com"]
    assert config.notifications.teams.webhook_url == "https://example.invalid/hook"


def test_unknown_env_var_left_as_is(tmp_path, monkeypatch):
    monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
    path = write_config(tmp_path, "trees:\n  new_root: ${NOT_SET_ANYWHERE}/new\n")

    assert load_config(path).trees.new_root == "${NOT_SET_ANYWHERE}/new"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(str(tmp_path / "absent.yaml"))


def test_wrong_extension(tmp_path):
    path = write_config(tmp_path, "settings: {}\n", name="config.json")

    with pytest.raises(ConfigurationError, match="must be YAML"):
        load_config(path)


def test_empty_file(tmp_path):
    with pytest.raises(ConfigurationError, match="empty"):
        load_config(write_config(tmp_path, ""))


def test_invalid_yaml(tmp_path):
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_config(write_config(tmp_path, "settings: [unclosed\n"))


@pytest.mark.parametrize("settings, message", [
    ("engine: gnutls", "Invalid engine"),
    ("openssl_timeout: 0", "openssl_timeout"),
    ("expiration_threshold_days: -1", "non-negative"),
    ("expiration_threshold_days: 400", "365"),
    ("passphrase_filename: secrets/pass.txt", "plain file name"),
    ("chain_name_patterns: []", "must not be empty"),
    ("chain_name_patterns: [1, 2]", "list of strings"),
])
def test_invalid_settings(tmp_path, settings, message):
    path = write_config(tmp_path, f"settings:\n  {settings}\n")

    with pytest.raises(ConfigurationError, match=message):
        load_config(path)


def test_new_root_required(tmp_path):
    path = write_config(tmp_path, "trees:\n  new_root: ''\n")

    with pytest.raises(ConfigurationError, match="new_root"):
        load_config(path)
