import pytest

from oidcauth.callback import CallbackResult
from oidcauth.config_file import CredentialRecord, ProfileStore, TokenValue
from oidcauth.oidc_client import Client, IdTokenClaims, ProviderMetadata, TokenResponse

ISSUER = "https://issuer.example"

METADATA = ProviderMetadata(
    issuer=ISSUER,
    authorization_endpoint=f"{ISSUER}/auth",
    token_endpoint=f"{ISSUER}/token",
    jwks_uri=f"{ISSUER}/jwks",
)


def make_record(name="work", **overrides) -> CredentialRecord:
    fields = dict(
        name=name,
        client_id="cid",
        client_secret="csec",
        scopes=("openid", "email"),
        redirect_url="http://localhost:8080/",
    )
    fields.update(overrides)
    return CredentialRecord(**fields)


class FakeProvider:
    """Scripted stand-in for the OIDC client port; records every call."""

    def __init__(self, code_response=None, refresh_response=None, id_exp=5000,
                 state="state-1", nonce="nonce-1", verify_error=None):
        self.code_response = code_response
        self.refresh_response = refresh_response
        self.id_exp = id_exp
        self.state = state
        self.nonce = nonce
        self.verify_error = verify_error
        self.calls = []

    def call_names(self):
        return [c[0] for c in self.calls]

    def discover(self, issuer_url):
        self.calls.append(("discover", issuer_url))
        return METADATA

    def build_client(self, metadata, client_id, client_secret, redirect_url=None):
        self.calls.append(("build_client", client_id))
        return Client(metadata=metadata, client_id=client_id, client_secret=client_secret,
                      redirect_url=redirect_url)

    def authorize_url(self, client, scopes, pkce_challenge):
        self.calls.append(("authorize_url", tuple(scopes)))
        return f"{ISSUER}/auth?state={self.state}", self.state, self.nonce

    def exchange_code(self, client, code, pkce_verifier):
        self.calls.append(("exchange_code", code))
        if isinstance(self.code_response, Exception):
            raise self.code_response
        return self.code_response

    def exchange_refresh_token(self, client, refresh_token, scopes):
        self.calls.append(("exchange_refresh_token", refresh_token, tuple(scopes)))
        if isinstance(self.refresh_response, Exception):
            raise self.refresh_response
        return self.refresh_response

    def verify_id_token(self, client, id_token, nonce):
        self.calls.append(("verify_id_token", id_token, nonce))
        if self.verify_error is not None:
            raise self.verify_error
        return IdTokenClaims(exp=self.id_exp, claims={"sub": "user-1", "exp": self.id_exp})


class FakeListener:
    """Replaces CallbackListener in login tests; replays a canned callback."""

    def __init__(self, result, events):
        self.result = result
        self.events = events

    def __call__(self, redirect_url, timeout=None):
        self.events.append(("bind", redirect_url, timeout))
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.events.append(("close",))

    def wait(self):
        self.events.append(("wait",))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def store(tmp_path):
    return ProfileStore(str(tmp_path / "store"))


@pytest.fixture
def full_token_response():
    return TokenResponse(
        access_token="at-1",
        expires_in=3600,
        refresh_token="rt-1",
        id_token="idt-1",
        scopes=("openid", "email"),
    )


@pytest.fixture
def stored_record(store):
    record = make_record(
        refresh_token="rt-old",
        access_token=TokenValue(secret="at-old", exp=100),
        id_token=TokenValue(secret="idt-old", exp=100),
    )
    store.save(record)
    return record


@pytest.fixture
def callback_events(monkeypatch):
    """Patch the login flow's listener and browser; return (install, events)."""
    events = []

    def install(result):
        listener = FakeListener(result, events)
        monkeypatch.setattr("oidcauth.login_flow.CallbackListener", listener)
        monkeypatch.setattr("oidcauth.login_flow.open_browser", lambda url: events.append(("browser", url)))
        return listener

    return install, events


def callback(code="code-1", state="state-1"):
    return CallbackResult(code=code, state=state)
