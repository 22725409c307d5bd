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

"""Profile records and their on-disk store.

Each profile lives in its own JSON file named after the profile, directly
under the store directory (``~/.oidcauth`` by default). The directory is
kept at 0700 and every profile file at 0600 on POSIX systems.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from .errors import (
    ProfileIoError,
    ProfileNotFound,
    ProfileParseError,
    ProfileReadError,
    StoreNotADirectory,
)

LOG = logging.getLogger(__name__)

CONFIG_VERSION = 1
STORE_DIRNAME = ".oidcauth"
STORE_DIR_MODE = 0o700
PROFILE_FILE_MODE = 0o600

_POSIX = os.name == "posix"


def default_store_dir() -> str:
    return os.path.expanduser(os.path.join("~", STORE_DIRNAME))


def is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def check_profile_name(name: str) -> None:
    """Profile names are plain file names inside the store directory."""
    if not name or name in (".", "..") or "/" in name or os.sep in name:
        raise ValueError(f"invalid profile name {name!r}")


def _require(obj: dict, key: str, kind, kind_name: str):
    value = obj.get(key)
    # bool is an int subclass; a JSON true is never a valid number here
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ValueError(f"'{key}' must be {kind_name}")
    return value


@dataclass(frozen=True)
class TokenValue:
    """A cached token secret and its absolute expiry (Unix seconds).

    ``exp == 0`` means the provider gave no lifetime; the token is then
    treated as already expired.
    """

    secret: str
    exp: int

    def is_expired(self, now: int) -> bool:
        return self.exp < now

    def to_dict(self) -> dict:
        return {"secret": self.secret, "exp": self.exp}

    @classmethod
    def from_dict(cls, obj: Any) -> "TokenValue":
        if not isinstance(obj, dict):
            raise ValueError("token must be an object")
        secret = _require(obj, "secret", str, "a string")
        exp = _require(obj, "exp", int, "an integer")
        if exp < 0:
            raise ValueError("'exp' must not be negative")
        return cls(secret=secret, exp=exp)


@dataclass(frozen=True)
class CredentialRecord:
    """A named profile: client identity, requested scopes and cached tokens.

    Records are immutable; flows derive updated copies with
    ``dataclasses.replace`` and hand them to ``ProfileStore.save``.
    """

    name: str
    client_id: str
    client_secret: str
    scopes: tuple
    redirect_url: str
    refresh_token: Optional[str] = None
    id_token: Optional[TokenValue] = None
    access_token: Optional[TokenValue] = None
    version: int = CONFIG_VERSION

    def __post_init__(self):
        object.__setattr__(self, "scopes", tuple(self.scopes))
        check_profile_name(self.name)
        if not is_valid_url(self.redirect_url):
            raise ValueError(f"redirect URL {self.redirect_url!r} is not a valid http(s) URL")

    def token(self, kind: str) -> Optional[TokenValue]:
        if kind == "access":
            return self.access_token
        if kind == "id":
            return self.id_token
        raise ValueError(f"unknown token kind {kind!r}")

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "name": self.name,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scopes": list(self.scopes),
            "redirect_url": self.redirect_url,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token.to_dict() if self.id_token else None,
            "access_token": self.access_token.to_dict() if self.access_token else None,
        }

    @classmethod
    def from_dict(cls, obj: Any) -> "CredentialRecord":
        """Build a record from parsed JSON, ignoring keys it does not know.

        Raises ValueError when a known field is missing or has the wrong type.
        """
        if not isinstance(obj, dict):
            raise ValueError("profile must be a JSON object")
        version = _require(obj, "version", int, "an integer")
        scopes = obj.get("scopes")
        if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
            raise ValueError("'scopes' must be a list of strings")
        refresh_token = obj.get("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("'refresh_token' must be a string or null")
        id_token = obj.get("id_token")
        access_token = obj.get("access_token")
        return cls(
            name=_require(obj, "name", str, "a string"),
            client_id=_require(obj, "client_id", str, "a string"),
            client_secret=_require(obj, "client_secret", str, "a string"),
            scopes=tuple(scopes),
            redirect_url=_require(obj, "redirect_url", str, "a string"),
            refresh_token=refresh_token,
            id_token=TokenValue.from_dict(id_token) if id_token is not None else None,
            access_token=TokenValue.from_dict(access_token) if access_token is not None else None,
            version=version,
        )


@dataclass
class ProfileListing:
    records: list
    skipped: list = field(default_factory=list)


class ProfileStore:
    """Reads and writes CredentialRecords under a private base directory.

    The file on disk is the only source of truth; nothing is cached between
    calls, so callers always reload before deriving an updated record.
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir or default_store_dir()

    def resolve(self, name: str) -> str:
        return os.path.join(self.base_dir, name)

    def scan(self) -> ProfileListing:
        """Parse every regular file in the store, collecting the ones that fail."""
        if not os.path.isdir(self.base_dir):
            raise StoreNotADirectory(self.base_dir)
        listing = ProfileListing(records=[])
        try:
            entries = sorted(os.scandir(self.base_dir), key=lambda e: e.name)
        except OSError as e:
            raise ProfileReadError(self.base_dir, e.strerror or str(e)) from e
        for entry in entries:
            if not entry.is_file():
                continue
            try:
                listing.records.append(self.load(entry.name))
            except (ProfileReadError, ProfileParseError) as e:
                LOG.debug("Skipping %s: %s", entry.path, e)
                listing.skipped.append(entry.name)
        return listing

    def list(self) -> list:
        listing = self.scan()
        for name in listing.skipped:
            LOG.info("Ignoring unreadable or foreign file '%s' in %s", name, self.base_dir)
        return listing.records

    def load(self, name: str) -> CredentialRecord:
        if not os.path.isdir(self.base_dir):
            if os.path.exists(self.base_dir):
                raise StoreNotADirectory(self.base_dir)
            raise ProfileNotFound(name, self.base_dir)
        path = self.resolve(name)
        try:
            check_profile_name(name)
        except ValueError as e:
            raise ProfileReadError(path, str(e)) from e
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = f.read()
        except UnicodeDecodeError as e:
            raise ProfileParseError(path, "not UTF-8 text") from e
        except OSError as e:
            raise ProfileReadError(path, e.strerror or str(e)) from e
        try:
            record = CredentialRecord.from_dict(json.loads(data))
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            raise ProfileParseError(path, str(e)) from e
        if record.name != name:
            raise ProfileParseError(path, f"profile name {record.name!r} does not match file name")
        return record

    def exists(self, name: str) -> bool:
        return os.path.isfile(self.resolve(name))

    def save(self, record: CredentialRecord) -> str:
        """Write ``record`` to its profile file and return the file path.

        The record is written to a private temporary file in the store and
        renamed over the profile, so an interrupted save leaves the previous
        file intact. Permission changes are part of the write; any failure
        raises ProfileIoError instead of leaving a readable secrets file behind.
        """
        path = self.resolve(record.name)
        tmp_path = None
        try:
            os.makedirs(self.base_dir, mode=STORE_DIR_MODE, exist_ok=True)
            if _POSIX:
                os.chmod(self.base_dir, STORE_DIR_MODE)
            # mkstemp creates the file 0600
            fd, tmp_path = tempfile.mkstemp(dir=self.base_dir, prefix=f".{record.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                if _POSIX:
                    os.fchmod(f.fileno(), PROFILE_FILE_MODE)
                json.dump(record.to_dict(), f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise ProfileIoError(path, e.strerror or str(e)) from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError as e:
                    LOG.warning("Could not remove temporary file %s: %s", tmp_path, e)
        LOG.info("Saved profile '%s' to %s", record.name, path)
        return path
