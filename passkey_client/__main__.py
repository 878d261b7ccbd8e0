"""Command-line entry point for the passkey client."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from . import (
    ClientSettings,
    DeviceCapabilityResolver,
    HttpTransport,
    LocalProbe,
    MultiModalAuthClient,
    PreferenceStore,
    SoftwareAuthenticator,
    error_category,
)
from .capabilities import probe_url
from .errors import CeremonyError
from .models import METHODS
from .touch import ConsoleVerifier, touch_id_available


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Passkey client with automatic method fallback")
    parser.add_argument("--verbose", action="store_true", help="Log ceremony events")
    commands = parser.add_subparsers(dest="command", required=True)

    capabilities = commands.add_parser("capabilities", help="Detect usable authentication methods")
    capabilities.add_argument("--url", help="Probe this page in Chromium instead of the local host")
    capabilities.add_argument("--headed", action="store_true", help="Show the browser window")

    preference = commands.add_parser("preference", help="Show or persist the preferred method")
    preference.add_argument("method", nargs="?", choices=METHODS)

    register = commands.add_parser("register", help="Register a passkey")
    register.add_argument("email")
    register.add_argument("--display-name")
    register.add_argument("--method", choices=METHODS)

    authenticate = commands.add_parser("authenticate", help="Sign in with a passkey")
    authenticate.add_argument("email", nargs="?", help="Omit for usernameless sign-in")
    authenticate.add_argument("--method", choices=METHODS)
    return parser.parse_args(argv)


def build_client(settings: ClientSettings) -> MultiModalAuthClient:
    authenticators = {
        "platform": SoftwareAuthenticator(
            settings, attachment="platform", available=touch_id_available()
        ),
        "cross-platform": SoftwareAuthenticator(
            settings, attachment="cross-platform", user_verifier=ConsoleVerifier()
        ),
    }
    return MultiModalAuthClient(
        HttpTransport(settings),
        DeviceCapabilityResolver(LocalProbe(settings)),
        PreferenceStore(settings),
        authenticators,
        origin=settings.origin,
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING, format="%(message)s"
    )
    settings = ClientSettings()

    if args.command == "capabilities":
        if args.url:
            capabilities = probe_url(args.url, headless=not args.headed)
        else:
            capabilities = DeviceCapabilityResolver(LocalProbe(settings)).detect_capabilities()
        print(json.dumps(capabilities.to_dict(), indent=2))
        return 0

    client = build_client(settings)
    if args.command == "preference":
        if args.method is None:
            print(client.get_preference())
            return 0
        client.resolver.detect_capabilities()
        if not client.set_preference(args.method):
            print(f"{args.method} is not available on this device", file=sys.stderr)
            return 1
        print(args.method)
        return 0

    try:
        if args.command == "register":
            result = client.register(args.email, args.display_name, method=args.method)
        else:
            result = client.authenticate(args.email, method=args.method)
    except CeremonyError as exc:
        print(f"{error_category(exc)}: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
