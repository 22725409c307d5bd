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

"""OpenID Connect client operations used by the login and refresh flows.

``OidcClientPort`` is the interface the flows depend on; ``OidcProvider``
implements it with ``requests`` for discovery and token endpoint calls and
PyJWT for ID token verification against the provider's JWKS.
"""

import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence
from urllib.parse import urlencode

import jwt
import requests
from jwt import PyJWKClient, PyJWKClientError

from .errors import ClaimsVerificationFailed, DiscoveryError, TokenEndpointError

LOG = logging.getLogger(__name__)

DEFAULT_ISSUER = "https://accounts.google.com"
DEFAULT_HTTP_TIMEOUT = 30.0
DISCOVERY_PATH = "/.well-known/openid-configuration"
ID_TOKEN_ALGORITHMS = ["RS256", "ES256"]
# seconds of clock difference tolerated on the provider's iat/exp claims
CLOCK_SKEW = 60


# ---------- OAuth PKCE (S256) helpers ----------

def pkce_pair() -> tuple:
    """Return a (verifier, challenge) pair using the S256 method."""
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode().rstrip("=")
    challenge = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
    return verifier, challenge


def random_token(nbytes: int = 24) -> str:
    return secrets.token_urlsafe(nbytes)


# ---------- Data types ----------

@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, obj: Any) -> "ProviderMetadata":
        if not isinstance(obj, dict):
            raise ValueError("discovery document is not a JSON object")
        missing = [k for k in ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")
                   if not isinstance(obj.get(k), str) or not obj.get(k)]
        if missing:
            raise ValueError(f"discovery document lacks {', '.join(missing)}")
        return cls(
            issuer=obj["issuer"],
            authorization_endpoint=obj["authorization_endpoint"],
            token_endpoint=obj["token_endpoint"],
            jwks_uri=obj["jwks_uri"],
            raw=obj,
        )


@dataclass(frozen=True)
class Client:
    metadata: ProviderMetadata
    client_id: str
    client_secret: str = field(repr=False)
    redirect_url: Optional[str] = None


@dataclass(frozen=True)
class TokenResponse:
    access_token: str = field(repr=False)
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = field(default=None, repr=False)
    id_token: Optional[str] = field(default=None, repr=False)
    scopes: Optional[tuple] = None
    token_type: Optional[str] = None

    @classmethod
    def from_json(cls, obj: Any) -> "TokenResponse":
        if not isinstance(obj, dict):
            raise ValueError("token response is not a JSON object")
        access_token = obj.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("token response lacks access_token")
        expires_in = obj.get("expires_in")
        if expires_in is not None:
            if isinstance(expires_in, bool):
                raise ValueError("'expires_in' must be a number")
            try:
                # some providers send the lifetime as a numeric string
                expires_in = int(float(expires_in))
            except (TypeError, ValueError, OverflowError) as e:
                raise ValueError(f"'expires_in' must be a number, got {expires_in!r}") from e
        for key in ("refresh_token", "id_token", "token_type"):
            if obj.get(key) is not None and not isinstance(obj[key], str):
                raise ValueError(f"'{key}' must be a string")
        scope = obj.get("scope")
        scopes = None
        if isinstance(scope, str):
            scopes = tuple(scope.split())
        elif isinstance(scope, list):
            scopes = tuple(str(s) for s in scope)
        return cls(
            access_token=access_token,
            expires_in=expires_in,
            refresh_token=obj.get("refresh_token") or None,
            id_token=obj.get("id_token") or None,
            scopes=scopes,
            token_type=obj.get("token_type"),
        )

    def access_token_expiry(self, now: int) -> int:
        if self.expires_in is None:
            return 0
        return now + self.expires_in


@dataclass(frozen=True)
class IdTokenClaims:
    exp: int
    claims: dict = field(default_factory=dict)

    @property
    def subject(self) -> Optional[str]:
        return self.claims.get("sub")


class OidcClientPort(Protocol):
    def discover(self, issuer_url: str) -> ProviderMetadata: ...

    def build_client(self, metadata: ProviderMetadata, client_id: str, client_secret: str,
                     redirect_url: Optional[str] = None) -> Client: ...

    def authorize_url(self, client: Client, scopes: Sequence[str], pkce_challenge: str) -> tuple: ...

    def exchange_code(self, client: Client, code: str, pkce_verifier: str) -> TokenResponse: ...

    def exchange_refresh_token(self, client: Client, refresh_token: str,
                               scopes: Sequence[str]) -> TokenResponse: ...

    def verify_id_token(self, client: Client, id_token: str, nonce: Optional[str]) -> IdTokenClaims: ...


# ---------- requests/PyJWT implementation ----------

def _describe_error_response(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.reason or "no details"
    if isinstance(body, dict) and body.get("error"):
        desc = body.get("error_description")
        return f"{body['error']}: {desc}" if desc else str(body["error"])
    return resp.reason or "no details"


def _issuer_matches(claimed: Any, expected: str) -> bool:
    if not isinstance(claimed, str):
        return False
    # Google issues ID tokens with and without the scheme
    return claimed.rstrip("/") == expected.rstrip("/") or f"https://{claimed}" == expected


class OidcProvider:
    """Default OidcClientPort: synchronous HTTP, no retries."""

    def __init__(self, http_timeout: float = DEFAULT_HTTP_TIMEOUT):
        self.http_timeout = http_timeout
        self._jwks_clients: dict = {}

    def discover(self, issuer_url: str) -> ProviderMetadata:
        url = issuer_url.rstrip("/") + DISCOVERY_PATH
        LOG.debug("Fetching discovery document %s", url)
        try:
            resp = requests.get(url, timeout=self.http_timeout)
            resp.raise_for_status()
            metadata = ProviderMetadata.from_dict(resp.json())
        except (requests.RequestException, ValueError) as e:
            raise DiscoveryError(issuer_url, str(e)) from e
        if metadata.issuer.rstrip("/") != issuer_url.rstrip("/"):
            raise DiscoveryError(issuer_url, f"discovery document names issuer {metadata.issuer}")
        return metadata

    def build_client(self, metadata: ProviderMetadata, client_id: str, client_secret: str,
                     redirect_url: Optional[str] = None) -> Client:
        return Client(metadata=metadata, client_id=client_id, client_secret=client_secret,
                      redirect_url=redirect_url)

    def authorize_url(self, client: Client, scopes: Sequence[str], pkce_challenge: str) -> tuple:
        """Return (url, csrf_state, nonce) for an offline, consent-forcing code request."""
        state = random_token()
        nonce = random_token()
        params = {
            "response_type": "code",
            "client_id": client.client_id,
            "redirect_uri": client.redirect_url,
            "scope": " ".join(scopes),
            "state": state,
            "nonce": nonce,
            "code_challenge": pkce_challenge,
            "code_challenge_method": "S256",
            "access_type": "offline",
            "prompt": "consent",
        }
        endpoint = client.metadata.authorization_endpoint
        sep = "&" if "?" in endpoint else "?"
        return endpoint + sep + urlencode(params), state, nonce

    def exchange_code(self, client: Client, code: str, pkce_verifier: str) -> TokenResponse:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": client.redirect_url,
            "code_verifier": pkce_verifier,
        }
        return self._token_request(client, data)

    def exchange_refresh_token(self, client: Client, refresh_token: str,
                               scopes: Sequence[str]) -> TokenResponse:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        if scopes:
            data["scope"] = " ".join(scopes)
        return self._token_request(client, data)

    def _token_request(self, client: Client, data: dict) -> TokenResponse:
        endpoint = client.metadata.token_endpoint
        LOG.debug("POST %s grant_type=%s", endpoint, data["grant_type"])
        try:
            resp = requests.post(endpoint, data=data, auth=(client.client_id, client.client_secret),
                                 timeout=self.http_timeout)
        except requests.RequestException as e:
            raise TokenEndpointError(str(e)) from e
        if not resp.ok:
            raise TokenEndpointError(_describe_error_response(resp), resp.status_code)
        try:
            return TokenResponse.from_json(resp.json())
        except ValueError as e:
            raise TokenEndpointError(f"malformed token response: {e}") from e

    def _jwks_client(self, jwks_uri: str) -> PyJWKClient:
        client = self._jwks_clients.get(jwks_uri)
        if client is None:
            client = PyJWKClient(jwks_uri, cache_keys=True, timeout=self.http_timeout)
            self._jwks_clients[jwks_uri] = client
        return client

    def verify_id_token(self, client: Client, id_token: str, nonce: Optional[str]) -> IdTokenClaims:
        """Verify signature, audience, issuer and lifetime; check nonce when given."""
        try:
            signing_key = self._jwks_client(client.metadata.jwks_uri).get_signing_key_from_jwt(id_token)
        except (PyJWKClientError, jwt.PyJWTError) as e:
            raise ClaimsVerificationFailed(f"no signing key: {e}") from e
        try:
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=ID_TOKEN_ALGORITHMS,
                audience=client.client_id,
                leeway=CLOCK_SKEW,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.PyJWTError as e:
            raise ClaimsVerificationFailed(str(e)) from e
        if not _issuer_matches(claims.get("iss"), client.metadata.issuer):
            raise ClaimsVerificationFailed(f"unexpected issuer {claims.get('iss')!r}")
        if nonce is not None and not hmac.compare_digest(str(claims.get("nonce", "")).encode(), nonce.encode()):
            raise ClaimsVerificationFailed("nonce mismatch")
        return IdTokenClaims(exp=int(claims["exp"]), claims=claims)
