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

"""Error taxonomy for oidcauth.

Every failure surfaced by the library is an ``OidcAuthError``. The
intermediate classes group errors by kind so callers can react to a family
(e.g. any ``ProviderError``) without enumerating every concrete class.
"""

from typing import Optional


class OidcAuthError(RuntimeError):
    """Base class for all oidcauth failures."""


# ---------- Configuration errors ----------

class ConfigurationError(OidcAuthError):
    pass


class ProfileNotFound(ConfigurationError):
    def __init__(self, name: str, base_dir: str):
        super().__init__(f"No such profile: {name} (store directory {base_dir} does not exist)")
        self.name = name
        self.base_dir = base_dir


class StoreNotADirectory(ConfigurationError):
    def __init__(self, base_dir: str):
        super().__init__(f"Profile store {base_dir} is not a directory")
        self.base_dir = base_dir


class ProfileParseError(ConfigurationError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not parse profile file {path}: {reason}")
        self.path = path
        self.reason = reason


class SettingsError(ConfigurationError):
    pass


class ConfigCorrupt(ConfigurationError):
    def __init__(self, name: str, kind: str):
        super().__init__(f"Could not read {kind} token from {name}. Is the profile corrupt?")
        self.name = name
        self.kind = kind


# ---------- Security errors ----------

class SecurityError(OidcAuthError):
    pass


class CsrfMismatch(SecurityError):
    def __init__(self):
        super().__init__(
            "The state sent to the server and the state received from the server do not match; "
            "this may be a sign of a CSRF attack"
        )


# ---------- Provider errors ----------

class ProviderError(OidcAuthError):
    pass


class DiscoveryError(ProviderError):
    def __init__(self, issuer: str, reason: str):
        super().__init__(f"Failed to discover OpenID provider {issuer}: {reason}")
        self.issuer = issuer


class TokenEndpointError(ProviderError):
    def __init__(self, reason: str, status: Optional[int] = None):
        msg = f"Token endpoint request failed: {reason}"
        if status is not None:
            msg = f"Token endpoint returned HTTP {status}: {reason}"
        super().__init__(msg)
        self.status = status


class AuthorizationDenied(ProviderError):
    def __init__(self, error: str, description: Optional[str] = None):
        msg = f"Authorization was denied by the provider: {error}"
        if description:
            msg += f" ({description})"
        super().__init__(msg)
        self.error = error
        self.description = description


class NoIdToken(ProviderError):
    def __init__(self):
        super().__init__("No ID token present in the token response")


class ClaimsVerificationFailed(ProviderError):
    def __init__(self, reason: str):
        super().__init__(f"Failed to verify ID token: {reason}")
        self.reason = reason


class NoRefreshToken(ProviderError):
    def __init__(self):
        super().__init__("No refresh token present in the token response")


class NoScopes(ProviderError):
    def __init__(self):
        super().__init__("There were no scopes in the token response")


class NoRefreshTokenForProfile(ProviderError):
    def __init__(self, name: str):
        super().__init__(f"There is no refresh token available for profile {name}; run login again")
        self.name = name


class RefreshExchangeFailed(ProviderError):
    def __init__(self, name: str, reason: str):
        super().__init__(f"Could not refresh tokens for profile {name}: {reason}")
        self.name = name


# ---------- I/O errors ----------

class LocalIoError(OidcAuthError):
    pass


class ProfileReadError(LocalIoError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not read profile file {path}: {reason}")
        self.path = path


class ProfileIoError(LocalIoError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not write profile file {path}: {reason}")
        self.path = path


class MalformedCallback(LocalIoError):
    def __init__(self, reason: str):
        super().__init__(f"Malformed authorization callback: {reason}")


class ListenerBindError(LocalIoError):
    def __init__(self, address: str, reason: str):
        super().__init__(f"Could not listen for the authorization callback on {address}: {reason}")
        self.address = address


# ---------- Absence errors ----------

class AbsenceError(OidcAuthError):
    pass


class CallbackTimeout(AbsenceError):
    def __init__(self, timeout: float):
        super().__init__(f"No authorization callback received within {timeout:g} seconds")
        self.timeout = timeout
