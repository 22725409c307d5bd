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

"""Cached-or-refreshed token lookup for a profile."""

import enum
import logging
import time
from typing import Optional

from .config_file import ProfileStore, TokenValue
from .errors import ConfigCorrupt, NoIdToken
from .oidc_client import DEFAULT_ISSUER, OidcClientPort, OidcProvider
from .refresh_flow import refresh

LOG = logging.getLogger(__name__)


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    ID = "id"


class TokenLifecycleManager:
    """Returns a profile's token, refreshing it first when it has expired.

    A token whose expiry is strictly before ``now`` is expired; an absent
    token counts as expiry 0. Refresh failures propagate unchanged so the
    caller can decide whether to start an interactive login.
    """

    def __init__(
        self,
        store: ProfileStore,
        issuer: str = DEFAULT_ISSUER,
        provider: Optional[OidcClientPort] = None,
        require_id_token: bool = True,
    ):
        self.store = store
        self.issuer = issuer
        self.provider = provider or OidcProvider()
        self.require_id_token = require_id_token

    def ensure_valid(self, name: str, kind, now: Optional[int] = None) -> TokenValue:
        kind = TokenKind(kind)
        record = self.store.load(name)
        if now is None:
            now = int(time.time())

        token = record.token(kind.value)
        expiry = token.exp if token is not None else 0
        if expiry >= now:
            LOG.debug("Cached %s token for '%s' valid until %d", kind.value, name, expiry)
            return token

        LOG.info("%s token for '%s' missing or expired; refreshing.", kind.value.capitalize(), name)
        record = refresh(
            record,
            self.store,
            issuer=self.issuer,
            provider=self.provider,
            now=now,
            require_id_token=self.require_id_token,
        )
        token = record.token(kind.value)
        if token is None:
            raise ConfigCorrupt(name, kind.value)
        if kind is TokenKind.ID and token.is_expired(now):
            # a lenient refresh kept the stale ID token the provider did not renew
            raise NoIdToken()
        return token

    def access_token(self, name: str, now: Optional[int] = None) -> TokenValue:
        return self.ensure_valid(name, TokenKind.ACCESS, now)

    def id_token(self, name: str, now: Optional[int] = None) -> TokenValue:
        return self.ensure_valid(name, TokenKind.ID, now)
