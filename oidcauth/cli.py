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

"""Command line entry point: ``oidcauth list|login|accesstoken|idtoken``.

Exit codes: 0 on success, 1 when a flow fails, 2 for usage or settings
errors. Tokens and listings go to stdout; logs and errors go to stderr.
"""

import argparse
import logging
import sys
from typing import Optional

from .config_file import ProfileStore
from .errors import ConfigurationError, OidcAuthError, SettingsError, StoreNotADirectory
from .login_flow import login
from .oidc_client import OidcProvider
from .settings import load_settings, login_options_from_env, merge_login_record, parse_scopes, parse_seconds
from .tokens import TokenKind, TokenLifecycleManager

LOG = logging.getLogger("oidcauth")


def setup_logging(level_str: str) -> None:
    level = getattr(logging, level_str.upper(), logging.WARNING)
    if not LOG.handlers:
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s: %(message)s"))
        LOG.addHandler(h)
    LOG.setLevel(level)


def _callback_seconds(value: str) -> float:
    try:
        seconds = parse_seconds("--callback-timeout", value, allow_none=True)
    except SettingsError as e:
        raise argparse.ArgumentTypeError(str(e)) from e
    # 0 asks for an unbounded wait
    return 0.0 if seconds is None else seconds


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="oidcauth",
        description="Request and store OpenID Connect tokens for named profiles",
        allow_abbrev=False,
    )
    p.add_argument("--config", default=None, help="Path to settings INI file (default: $OIDCAUTH_CONFIG or ~/.oidcauth.ini)")
    p.add_argument("--issuer", default=None, help="OpenID issuer URL (default: https://accounts.google.com)")
    p.add_argument("--store-dir", default=None, help="Directory holding profile files (default: ~/.oidcauth)")
    p.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ERROR; default WARNING)")
    sub = p.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("list", help="List all stored profiles")

    lp = sub.add_parser("login", help="Sign in with the browser and store tokens for a profile")
    lp.add_argument("profile", help="Profile name; it caches the refresh token to avoid signing in again")
    lp.add_argument("-i", "--id", dest="client_id", default=None, help="OAuth client id (env CLIENT_ID)")
    lp.add_argument("-s", "--secret", dest="client_secret", default=None, help="OAuth client secret (env CLIENT_SECRET)")
    lp.add_argument("-o", "--scopes", default=None, help="Comma separated scopes to request (env SCOPES)")
    lp.add_argument("-r", "--redirect", dest="redirect_url", default=None,
                    help="OAuth redirect URL (env REDIRECT; default http://localhost:8080/)")
    lp.add_argument("--callback-timeout", type=_callback_seconds, default=None,
                    help="Seconds to wait for the browser redirect (default 300; 0 waits forever)")
    lp.add_argument("--no-browser", action="store_true", help="Print the authorization URL instead of opening a browser")

    for name, kind in (("accesstoken", "access"), ("idtoken", "ID")):
        tp = sub.add_parser(name, help=f"Print a valid {kind} token for a profile, refreshing it if needed")
        tp.add_argument("profile", help="Profile name")
    return p


def _fail(profile: Optional[str], err: Exception, code: int = 1) -> int:
    if profile:
        print(f"Error: profile '{profile}': {err}", file=sys.stderr)
    else:
        print(f"Error: {err}", file=sys.stderr)
    return code


def cmd_list(args, settings, store: ProfileStore, provider: OidcProvider) -> int:
    try:
        listing = store.scan()
    except StoreNotADirectory:
        print("No profiles available")
        return 0
    except OidcAuthError as e:
        return _fail(None, e)
    for record in listing.records:
        print(record.name)
    if listing.skipped:
        LOG.warning("Skipped %d unreadable file(s) in %s", len(listing.skipped), store.base_dir)
    return 0


def cmd_login(args, settings, store: ProfileStore, provider: OidcProvider) -> int:
    env = login_options_from_env()
    scopes = parse_scopes(args.scopes) if args.scopes is not None else env["scopes"]
    try:
        record = merge_login_record(
            store,
            args.profile,
            client_id=args.client_id or env["client_id"],
            client_secret=args.client_secret or env["client_secret"],
            scopes=scopes,
            redirect_url=args.redirect_url or env["redirect_url"],
            default_redirect_url=settings.redirect_url,
        )
    except SettingsError as e:
        return _fail(args.profile, e, 2)
    except OidcAuthError as e:
        return _fail(args.profile, e)

    timeout = args.callback_timeout if args.callback_timeout is not None else settings.callback_timeout
    try:
        login(
            record,
            store,
            issuer=settings.issuer,
            provider=provider,
            callback_timeout=timeout or None,
            launch_browser=settings.open_browser and not args.no_browser,
        )
    except OidcAuthError as e:
        return _fail(args.profile, e)
    except KeyboardInterrupt:
        print("Login cancelled; profile left unchanged.", file=sys.stderr)
        return 130
    print(f"Successfully logged in and saved the profile {record.name} to {store.resolve(record.name)}")
    return 0


def cmd_token(args, settings, store: ProfileStore, provider: OidcProvider) -> int:
    kind = TokenKind.ACCESS if args.command == "accesstoken" else TokenKind.ID
    manager = TokenLifecycleManager(
        store,
        issuer=settings.issuer,
        provider=provider,
        require_id_token=settings.refresh_requires_id_token,
    )
    try:
        token = manager.ensure_valid(args.profile, kind)
    except OidcAuthError as e:
        return _fail(args.profile, e)
    print(token.secret)
    return 0


COMMANDS = {
    "list": cmd_list,
    "login": cmd_login,
    "accesstoken": cmd_token,
    "idtoken": cmd_token,
}


def main(argv: Optional[list] = None):
    p = build_parser()
    args = p.parse_args(argv)
    if not args.command:
        print("You must select a sub command. See --help", file=sys.stderr)
        sys.exit(2)

    try:
        settings = load_settings(
            args.config,
            overrides={"issuer": args.issuer, "store_dir": args.store_dir, "log_level": args.log_level},
        )
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.log_level)
    LOG.debug("Resolved settings: issuer=%s store_dir=%s source=%s", settings.issuer, settings.store_dir, settings.source)

    store = ProfileStore(settings.store_dir)
    provider = OidcProvider(http_timeout=settings.http_timeout)
    sys.exit(COMMANDS[args.command](args, settings, store, provider))


if __name__ == "__main__":
    main()
