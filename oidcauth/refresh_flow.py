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

"""Refresh-token grant for a stored profile."""

import logging
import time
from dataclasses import replace
from typing import Optional

from .config_file import CredentialRecord, ProfileStore, TokenValue
from .errors import NoIdToken, NoRefreshTokenForProfile, ProviderError, RefreshExchangeFailed
from .oidc_client import DEFAULT_ISSUER, OidcClientPort, OidcProvider

LOG = logging.getLogger(__name__)


def refresh(
    record: CredentialRecord,
    store: ProfileStore,
    issuer: str = DEFAULT_ISSUER,
    provider: Optional[OidcClientPort] = None,
    now: Optional[int] = None,
    require_id_token: bool = True,
) -> CredentialRecord:
    """Renew the access and ID tokens of ``record`` and save the result.

    Fails with NoRefreshTokenForProfile before any network access when the
    profile has never completed a login. With ``require_id_token=False`` a
    response without an ID token keeps the previously stored one.
    """
    if not record.refresh_token:
        raise NoRefreshTokenForProfile(record.name)

    provider = provider or OidcProvider()
    metadata = provider.discover(issuer)
    client = provider.build_client(metadata, record.client_id, record.client_secret)

    if now is None:
        now = int(time.time())
    try:
        tokens = provider.exchange_refresh_token(client, record.refresh_token, record.scopes)
    except ProviderError as e:
        raise RefreshExchangeFailed(record.name, str(e)) from e

    access_token = TokenValue(secret=tokens.access_token, exp=tokens.access_token_expiry(now))

    if tokens.id_token:
        # refresh responses carry no nonce to check
        claims = provider.verify_id_token(client, tokens.id_token, None)
        id_token = TokenValue(secret=tokens.id_token, exp=claims.exp)
    elif require_id_token:
        raise NoIdToken()
    else:
        LOG.info("No ID token in refresh response for '%s'; keeping the stored one.", record.name)
        id_token = record.id_token

    refresh_token = record.refresh_token
    if tokens.refresh_token and tokens.refresh_token != record.refresh_token:
        LOG.info("Provider rotated the refresh token for '%s'.", record.name)
        refresh_token = tokens.refresh_token

    updated = replace(record, access_token=access_token, id_token=id_token, refresh_token=refresh_token)
    store.save(updated)
    LOG.info("Refreshed profile '%s'; access token valid until %d", record.name, access_token.exp)
    return updated
