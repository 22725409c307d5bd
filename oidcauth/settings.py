# MIT License
# Copyright (c) 2025 Gordon Trevorrow
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
# Author: Gordon Trevorrow

"""Runtime settings and the login-record merge step.

Settings come from an optional INI file (``~/.oidcauth.ini`` or the path in
``OIDCAUTH_CONFIG``/``--config``). Precedence for every value:
CLI flag > environment variable > settings file > built-in default.

Settings file layout::

    [oidcauth]
    issuer = https://accounts.google.com
    store_dir = ~/.oidcauth
    redirect_url = http://localhost:8080/
    callback_timeout = 300
    http_timeout = 30
    refresh_requires_id_token = true
    open_browser = true
    log_level = WARNING
"""

import configparser
import logging
import math
import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from .config_file import CredentialRecord, ProfileStore, check_profile_name, default_store_dir, is_valid_url
from .errors import ProfileNotFound, ProfileReadError, SettingsError
from .login_flow import DEFAULT_CALLBACK_TIMEOUT
from .oidc_client import DEFAULT_HTTP_TIMEOUT, DEFAULT_ISSUER

LOG = logging.getLogger(__name__)

SETTINGS_SECTION = "oidcauth"
SETTINGS_DEFAULT_FILENAME = ".oidcauth.ini"
ENV_SETTINGS_PATH = "OIDCAUTH_CONFIG"
DEFAULT_REDIRECT_URL = "http://localhost:8080/"

# setting name -> environment variable
SETTINGS_ENV = {
    "issuer": "OIDCAUTH_ISSUER",
    "store_dir": "OIDCAUTH_STORE_DIR",
    "log_level": "OIDCAUTH_LOG_LEVEL",
}

# login option -> environment variable
LOGIN_ENV = {
    "client_id": "CLIENT_ID",
    "client_secret": "CLIENT_SECRET",
    "scopes": "SCOPES",
    "redirect_url": "REDIRECT",
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    issuer: str = DEFAULT_ISSUER
    store_dir: str = field(default_factory=default_store_dir)
    redirect_url: str = DEFAULT_REDIRECT_URL
    callback_timeout: Optional[float] = DEFAULT_CALLBACK_TIMEOUT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    refresh_requires_id_token: bool = True
    open_browser: bool = True
    log_level: str = "WARNING"
    source: Optional[str] = None


def resolve_settings_path(cli_path: Optional[str], environ: Mapping[str, str]):
    """Return (path, explicit). ``explicit`` paths must be readable."""
    if cli_path:
        return cli_path, True
    if environ.get(ENV_SETTINGS_PATH):
        return environ[ENV_SETTINGS_PATH], True
    candidate = os.path.expanduser(os.path.join("~", SETTINGS_DEFAULT_FILENAME))
    if os.path.exists(candidate):
        return candidate, False
    return None, False


def _read_settings_file(path: str, explicit: bool) -> dict:
    cp = configparser.ConfigParser()
    try:
        read_files = cp.read(path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError) as e:
        raise SettingsError(f"Error reading settings file {path}: {e}") from e
    if not read_files:
        if explicit:
            raise SettingsError(f"Failed to read settings file: {path}")
        return {}
    if cp.has_section(SETTINGS_SECTION):
        return dict(cp[SETTINGS_SECTION].items())
    return dict(cp.defaults())


def _parse_bool(name: str, value: str) -> bool:
    v = value.strip().lower()
    if v not in configparser.ConfigParser.BOOLEAN_STATES:
        raise SettingsError(f"Invalid boolean for {name}: {value!r}")
    return configparser.ConfigParser.BOOLEAN_STATES[v]


def parse_seconds(name: str, value: str, allow_none: bool) -> Optional[float]:
    v = value.strip().lower()
    if allow_none and v in ("0", "none"):
        return None
    try:
        seconds = float(v)
    except ValueError as e:
        raise SettingsError(f"Invalid number of seconds for {name}: {value!r}") from e
    if not math.isfinite(seconds) or seconds <= 0:
        raise SettingsError(f"{name} must be a finite number greater than 0")
    return seconds


def load_settings(
    cli_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, object]] = None,
) -> Settings:
    """Merge defaults, settings file, environment and CLI ``overrides``.

    ``overrides`` holds already-typed CLI values; ``None`` entries are ignored.
    """
    environ = os.environ if environ is None else environ
    path, explicit = resolve_settings_path(cli_path, environ)
    file_values = _read_settings_file(path, explicit) if path else {}

    def pick(name: str) -> Optional[str]:
        if overrides and overrides.get(name) is not None:
            return overrides[name]
        env_name = SETTINGS_ENV.get(name)
        if env_name and environ.get(env_name):
            return environ[env_name]
        value = file_values.get(name)
        if value is not None and value != "":
            return value
        return None

    defaults = Settings()
    issuer = pick("issuer") or defaults.issuer
    if not is_valid_url(issuer):
        raise SettingsError(f"Invalid issuer URL {issuer!r}; must start with http:// or https://")
    redirect_url = pick("redirect_url") or defaults.redirect_url
    if not is_valid_url(redirect_url):
        raise SettingsError(f"Invalid redirect URL {redirect_url!r}")
    log_level = str(pick("log_level") or defaults.log_level).upper()
    if log_level not in _LOG_LEVELS:
        raise SettingsError(f"Invalid log level {log_level!r}")

    callback_timeout = pick("callback_timeout")
    if callback_timeout is None:
        callback_timeout = defaults.callback_timeout
    elif isinstance(callback_timeout, str):
        callback_timeout = parse_seconds("callback_timeout", callback_timeout, allow_none=True)
    http_timeout = pick("http_timeout")
    if isinstance(http_timeout, str):
        http_timeout = parse_seconds("http_timeout", http_timeout, allow_none=False)
    requires_id = pick("refresh_requires_id_token")
    if isinstance(requires_id, str):
        requires_id = _parse_bool("refresh_requires_id_token", requires_id)
    open_browser = pick("open_browser")
    if isinstance(open_browser, str):
        open_browser = _parse_bool("open_browser", open_browser)

    store_dir = pick("store_dir")
    return Settings(
        issuer=issuer,
        store_dir=os.path.expanduser(store_dir) if store_dir else defaults.store_dir,
        redirect_url=redirect_url,
        callback_timeout=callback_timeout or None,
        http_timeout=http_timeout if http_timeout is not None else defaults.http_timeout,
        refresh_requires_id_token=defaults.refresh_requires_id_token if requires_id is None else requires_id,
        open_browser=defaults.open_browser if open_browser is None else open_browser,
        log_level=log_level,
        source=path,
    )


def parse_scopes(value: Optional[str]) -> Optional[list]:
    if value is None:
        return None
    return [s.strip() for s in value.split(",") if s.strip()]


def merge_login_record(
    store: ProfileStore,
    name: str,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    scopes: Optional[list] = None,
    redirect_url: Optional[str] = None,
    default_redirect_url: str = DEFAULT_REDIRECT_URL,
) -> CredentialRecord:
    """Build the one record a login will run with.

    Values given here override the stored profile field by field. A new
    profile needs a client id, a client secret and at least one scope. A
    stored profile that exists but cannot be read is not replaced.
    """
    try:
        check_profile_name(name)
    except ValueError as e:
        raise SettingsError(str(e)) from e

    existing = None
    try:
        existing = store.load(name)
    except (ProfileNotFound, ProfileReadError):
        if store.exists(name):
            raise

    if scopes is not None and not scopes:
        raise SettingsError("You must specify at least one scope")

    try:
        if existing is not None:
            changes = {
                k: v
                for k, v in (
                    ("client_id", client_id),
                    ("client_secret", client_secret),
                    ("scopes", tuple(scopes) if scopes is not None else None),
                    ("redirect_url", redirect_url),
                )
                if v is not None
            }
            return replace(existing, **changes)

        for label, value in (("a client id", client_id), ("a client secret", client_secret),
                             ("at least one scope", scopes)):
            if not value:
                raise SettingsError(f"You must specify {label} for the new profile {name}")
        return CredentialRecord(
            name=name,
            client_id=client_id,
            client_secret=client_secret,
            scopes=tuple(scopes),
            redirect_url=redirect_url or default_redirect_url,
        )
    except ValueError as e:
        raise SettingsError(str(e)) from e


def login_options_from_env(environ: Optional[Mapping[str, str]] = None) -> dict:
    environ = os.environ if environ is None else environ
    values = {k: environ.get(v) or None for k, v in LOGIN_ENV.items()}
    values["scopes"] = parse_scopes(values["scopes"])
    return values
