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

"""Single-shot loopback listener for the provider's authorization redirect."""

import html
import logging
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional
from urllib.parse import parse_qs, urlparse

from .errors import AuthorizationDenied, CallbackTimeout, ListenerBindError, MalformedCallback

LOG = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
# Seconds a connected browser has to send its request line
REQUEST_READ_TIMEOUT = 10

_PAGE = """<html>
<head><title>oidcauth - {title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
<h1>{title}</h1>
<p>{message}</p>
</body>
</html>
"""


@dataclass(frozen=True)
class CallbackResult:
    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class CodeHandler(BaseHTTPRequestHandler):
    server_version = "oidcauth/1.0"
    timeout = REQUEST_READ_TIMEOUT

    def do_GET(self):
        parsed = urlparse(self.path)
        if (parsed.path or "/") != self.server.callback_path:
            self.server.failure = f"unexpected path {parsed.path!r}"
            self._send_page(404, "Not Found", "This is not the authorization callback.")
            return
        q = parse_qs(parsed.query)
        if "error" in q:
            error = q["error"][0]
            desc = q.get("error_description", [None])[0]
            self.server.captured = CallbackResult(error=error, error_description=desc)
            self._send_page(400, "Login Failed", html.escape(f"{error}: {desc}" if desc else error))
            return
        code = q.get("code", [None])[0]
        state = q.get("state", [None])[0]
        if not code or not state:
            missing = [k for k, v in (("code", code), ("state", state)) if not v]
            self.server.failure = f"missing {' and '.join(missing)} query parameter"
            self._send_page(400, "Login Failed", "No authorization code received.")
            return
        self.server.captured = CallbackResult(code=code, state=state)
        self._send_page(200, "Login Received", "Go back to your terminal.")

    def _send_page(self, status: int, title: str, message: str) -> None:
        body = _PAGE.format(title=title, message=message).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt, *args):
        # the default log line would echo the authorization code
        path = urlparse(getattr(self, "path", "") or "").path
        LOG.debug("callback listener: %s %s", getattr(self, "command", None), path)


class CodeServer(HTTPServer):
    def __init__(self, address, callback_path: str):
        super().__init__(address, CodeHandler)
        self.callback_path = callback_path
        self.captured: Optional[CallbackResult] = None
        self.failure: Optional[str] = None
        self.timed_out = False

    def handle_timeout(self):
        self.timed_out = True


class CallbackListener:
    """Binds on construction, serves exactly one request in ``wait``, then closes.

    The port and callback path come from the profile's redirect URL. With
    ``timeout=None`` the wait is unbounded.
    """

    def __init__(self, redirect_url: str, timeout: Optional[float] = None, host: str = LOOPBACK_HOST):
        parsed = urlparse(redirect_url)
        try:
            port = parsed.port
            if port is None:
                port = 443 if parsed.scheme == "https" else 80
        except ValueError as e:
            raise ListenerBindError(redirect_url, str(e)) from e
        self.timeout = timeout
        self.redirect_url = redirect_url
        try:
            self._server = CodeServer((host, port), parsed.path or "/")
        except OSError as e:
            raise ListenerBindError(f"{host}:{port}", e.strerror or str(e)) from e
        self._server.timeout = timeout
        self._closed = False

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    def close(self) -> None:
        if not self._closed:
            self._server.server_close()
            self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def wait(self) -> CallbackResult:
        """Block until one request arrives and return its code and state."""
        LOG.info("Waiting for authorization response at %s", self.redirect_url)
        try:
            self._server.handle_request()
        finally:
            self.close()
        server = self._server
        if server.timed_out:
            raise CallbackTimeout(self.timeout)
        if server.failure:
            raise MalformedCallback(server.failure)
        if server.captured is None:
            raise MalformedCallback("request line could not be parsed")
        if server.captured.error:
            raise AuthorizationDenied(server.captured.error, server.captured.error_description)
        return server.captured
