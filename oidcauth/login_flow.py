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

"""Interactive authorization code login with PKCE.

The flow walks INIT -> AWAITING_CALLBACK -> EXCHANGING -> VERIFYING ->
PERSISTED. Any failure ends it in FAILED and nothing is written to the
profile store; the only write happens on entering PERSISTED.
"""

import enum
import hmac
import logging
import sys
import time
import webbrowser
from dataclasses import replace
from typing import Optional

from .callback import CallbackListener
from .config_file import CredentialRecord, ProfileStore, TokenValue
from .errors import CsrfMismatch, NoIdToken, NoRefreshToken, NoScopes, OidcAuthError
from .oidc_client import DEFAULT_ISSUER, OidcClientPort, OidcProvider, pkce_pair

LOG = logging.getLogger(__name__)

# seconds; None waits for the browser indefinitely
DEFAULT_CALLBACK_TIMEOUT = 300.0


class LoginState(enum.Enum):
    INIT = "init"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    VERIFYING = "verifying"
    PERSISTED = "persisted"
    FAILED = "failed"


def open_browser(url: str) -> None:
    print(
        "If the web browser did not open automatically, you can open this URL in your browser:\n"
        f"{url}\n",
        file=sys.stderr,
    )
    try:
        if not webbrowser.open(url):
            LOG.warning("No browser could be opened; open the URL above manually.")
    except webbrowser.Error as e:
        LOG.warning("Browser open failed (%s); open the URL above manually.", e)


class _Progress:
    def __init__(self, profile: str):
        self.profile = profile
        self.state = LoginState.INIT

    def advance(self, state: LoginState) -> None:
        LOG.debug("Login '%s': %s -> %s", self.profile, self.state.value, state.value)
        self.state = state


def login(
    record: CredentialRecord,
    store: ProfileStore,
    issuer: str = DEFAULT_ISSUER,
    provider: Optional[OidcClientPort] = None,
    callback_timeout: Optional[float] = DEFAULT_CALLBACK_TIMEOUT,
    launch_browser: bool = True,
    now: Optional[int] = None,
) -> CredentialRecord:
    """Run the browser login for ``record`` and persist the granted tokens.

    Returns the saved record. Raises CsrfMismatch without exchanging the code
    when the callback state does not match, and NoIdToken, NoRefreshToken or
    NoScopes when the provider's response is incomplete.
    """
    provider = provider or OidcProvider()
    progress = _Progress(record.name)
    try:
        metadata = provider.discover(issuer)
        client = provider.build_client(metadata, record.client_id, record.client_secret, record.redirect_url)
        verifier, challenge = pkce_pair()
        auth_url, csrf_state, nonce = provider.authorize_url(client, record.scopes, challenge)

        # bind before the browser can be redirected to us
        with CallbackListener(record.redirect_url, timeout=callback_timeout) as listener:
            if launch_browser:
                open_browser(auth_url)
            else:
                print(f"Open this URL in your browser:\n{auth_url}\n", file=sys.stderr)
            print("Waiting for the browser to sign you in...", file=sys.stderr)
            progress.advance(LoginState.AWAITING_CALLBACK)
            callback = listener.wait()

        if not hmac.compare_digest(callback.state.encode(), csrf_state.encode()):
            raise CsrfMismatch()

        progress.advance(LoginState.EXCHANGING)
        if now is None:
            now = int(time.time())
        tokens = provider.exchange_code(client, callback.code, verifier)
        access_exp = tokens.access_token_expiry(now)

        progress.advance(LoginState.VERIFYING)
        if not tokens.id_token:
            raise NoIdToken()
        claims = provider.verify_id_token(client, tokens.id_token, nonce)
        if not tokens.refresh_token:
            raise NoRefreshToken()
        if not tokens.scopes:
            raise NoScopes()

        updated = replace(
            record,
            scopes=tokens.scopes,
            refresh_token=tokens.refresh_token,
            id_token=TokenValue(secret=tokens.id_token, exp=claims.exp),
            access_token=TokenValue(secret=tokens.access_token, exp=access_exp),
        )
        store.save(updated)
        progress.advance(LoginState.PERSISTED)
        LOG.info("Profile '%s' logged in; access token valid until %d", record.name, access_exp)
        return updated
    except OidcAuthError:
        LOG.debug("Login '%s' failed in state %s", record.name, progress.state.value)
        progress.advance(LoginState.FAILED)
        raise
