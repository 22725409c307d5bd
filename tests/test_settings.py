import os

import pytest

from oidcauth.config_file import TokenValue
from oidcauth.errors import ProfileParseError, SettingsError
from oidcauth.oidc_client import DEFAULT_ISSUER
from oidcauth.settings import (
    load_settings,
    login_options_from_env,
    merge_login_record,
    parse_scopes,
    resolve_settings_path,
)

from conftest import make_record


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


def _ini(path, body):
    path.write_text("[oidcauth]\n" + body, encoding="utf-8")
    return str(path)


# Test intent: with no file, environment or flags every setting has its
# built-in default.
def test_defaults(isolated_home):
    s = load_settings(environ={})

    assert s.issuer == DEFAULT_ISSUER
    assert s.store_dir == os.path.join(str(isolated_home), ".oidcauth")
    assert s.redirect_url == "http://localhost:8080/"
    assert s.callback_timeout == 300.0
    assert s.http_timeout == 30.0
    assert s.refresh_requires_id_token is True
    assert s.open_browser is True
    assert s.log_level == "WARNING"
    assert s.source is None


# Test intent: precedence is CLI over environment over file over default,
# evaluated per setting.
def test_precedence_cli_env_file(tmp_path):
    path = _ini(tmp_path / "s.ini", "issuer = https://file.example\nlog_level = info\nstore_dir = /file/store\n")
    env = {"OIDCAUTH_ISSUER": "https://env.example", "OIDCAUTH_LOG_LEVEL": "error"}

    s = load_settings(path, environ=env, overrides={"issuer": "https://cli.example", "log_level": None})

    assert s.issuer == "https://cli.example"
    assert s.log_level == "ERROR"
    assert s.store_dir == "/file/store"
    assert s.source == path


# Test intent: --config beats OIDCAUTH_CONFIG when choosing the file.
def test_settings_path_cli_over_env(tmp_path):
    env = {"OIDCAUTH_CONFIG": str(tmp_path / "env.ini")}

    assert resolve_settings_path(str(tmp_path / "cli.ini"), env) == (str(tmp_path / "cli.ini"), True)
    assert resolve_settings_path(None, env) == (str(tmp_path / "env.ini"), True)
    assert resolve_settings_path(None, {}) == (None, False)


# Test intent: the default file in the home directory is used when present.
def test_default_settings_file(isolated_home):
    _ini(isolated_home / ".oidcauth.ini", "open_browser = no\ncallback_timeout = 120\n")

    s = load_settings(environ={})

    assert s.open_browser is False
    assert s.callback_timeout == 120.0
    assert s.source.endswith(".oidcauth.ini")


# Test intent: an explicitly named settings file that cannot be read is an
# error, not a silent fallback to defaults.
def test_explicit_missing_file_is_error(tmp_path):
    with pytest.raises(SettingsError):
        load_settings(str(tmp_path / "absent.ini"), environ={})
    with pytest.raises(SettingsError):
        load_settings(environ={"OIDCAUTH_CONFIG": str(tmp_path / "absent.ini")})


# Test intent: invalid values in the file are rejected with SettingsError.
@pytest.mark.parametrize("body", [
    "issuer = accounts.google.com\n",
    "log_level = LOUD\n",
    "http_timeout = -1\n",
    "callback_timeout = soon\n",
    "callback_timeout = -5\n",
    "http_timeout = inf\n",
    "refresh_requires_id_token = perhaps\n",
    "redirect_url = localhost:8080\n",
])
def test_invalid_settings(tmp_path, body):
    with pytest.raises(SettingsError):
        load_settings(_ini(tmp_path / "bad.ini", body), environ={})


# Test intent: a file that is not INI at all is a settings error.
def test_unparseable_file(tmp_path):
    path = tmp_path / "bad.ini"
    path.write_text("no section header here\n", encoding="utf-8")

    with pytest.raises(SettingsError):
        load_settings(str(path), environ={})


# Test intent: waiting forever for the callback must be asked for explicitly.
@pytest.mark.parametrize("value", ["0", "none", "None"])
def test_unbounded_callback_wait_is_explicit(tmp_path, value):
    s = load_settings(_ini(tmp_path / "s.ini", f"callback_timeout = {value}\n"), environ={})

    assert s.callback_timeout is None


# Test intent: refresh_requires_id_token can be relaxed from the file.
def test_refresh_requires_id_token_false(tmp_path):
    s = load_settings(_ini(tmp_path / "s.ini", "refresh_requires_id_token = false\n"), environ={})

    assert s.refresh_requires_id_token is False


# Test intent: scopes are comma separated and blanks are dropped.
def test_parse_scopes():
    assert parse_scopes("openid, email,,profile ") == ["openid", "email", "profile"]
    assert parse_scopes(None) is None


# Test intent: login options are read from their environment variables and
# empty values count as unset.
def test_login_options_from_env():
    opts = login_options_from_env({"CLIENT_ID": "cid", "CLIENT_SECRET": "", "SCOPES": "openid,email"})

    assert opts == {"client_id": "cid", "client_secret": None, "scopes": ["openid", "email"], "redirect_url": None}


# Test intent: a new profile needs id, secret and scopes; the redirect URL
# falls back to the default.
def test_merge_new_profile(store):
    record = merge_login_record(store, "work", "cid", "csec", ["openid"], None,
                                default_redirect_url="http://localhost:9000/cb")

    assert record.scopes == ("openid",)
    assert record.redirect_url == "http://localhost:9000/cb"
    assert record.refresh_token is None
    assert not store.exists("work")


@pytest.mark.parametrize("missing", ["client_id", "client_secret", "scopes"])
def test_merge_new_profile_requires_fields(store, missing):
    kwargs = {"client_id": "cid", "client_secret": "csec", "scopes": ["openid"]}
    kwargs[missing] = None

    with pytest.raises(SettingsError):
        merge_login_record(store, "work", **kwargs)


# Test intent: given options override the stored profile field by field and
# everything else, cached tokens included, is kept.
def test_merge_overrides_existing_profile(store):
    stored = make_record(refresh_token="rt", access_token=TokenValue("at", 10))
    store.save(stored)

    record = merge_login_record(store, "work", client_secret="new-secret", scopes=["openid", "profile"])

    assert record.client_id == "cid"
    assert record.client_secret == "new-secret"
    assert record.scopes == ("openid", "profile")
    assert record.refresh_token == "rt"
    assert record.access_token == TokenValue("at", 10)
    assert store.load("work") == stored


# Test intent: explicitly empty scopes and invalid redirect URLs are
# rejected as settings errors.
def test_merge_rejects_bad_values(store):
    with pytest.raises(SettingsError):
        merge_login_record(store, "work", "cid", "csec", [], None)
    with pytest.raises(SettingsError):
        merge_login_record(store, "work", "cid", "csec", ["openid"], "ftp://x/")
    with pytest.raises(SettingsError):
        merge_login_record(store, "../work", "cid", "csec", ["openid"], None)


# Test intent: an existing but corrupt profile is not silently replaced.
def test_merge_refuses_corrupt_profile(store):
    os.makedirs(store.base_dir)
    with open(store.resolve("work"), "w", encoding="utf-8") as f:
        f.write("{broken")

    with pytest.raises(ProfileParseError):
        merge_login_record(store, "work", "cid", "csec", ["openid"], None)
