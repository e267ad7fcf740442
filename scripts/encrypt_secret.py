#!/usr/bin/env python3
"""Encrypt a tenant secret with MASTER_KEY, or print a fresh key."""

from __future__ import annotations

import argparse
import getpass
import sys

from tenant_rag import get_settings
from tenant_rag.crypto import SecretCipher, generate_key, is_encrypted


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--generate-key", action="store_true", help="Print a new base64 master key and exit")
    parser.add_argument("--value", help="Secret to encrypt; prompted for when omitted")
    args = parser.parse_args()

    if args.generate_key:
        print(generate_key())
        return 0

    settings = get_settings()
    if not settings.master_key:
        print("MASTER_KEY is not set", file=sys.stderr)
        return 1

    secret = args.value or getpass.getpass("Secret: ")
    if is_encrypted(secret):
        print("Value is already an encrypted envelope", file=sys.stderr)
        return 1
    print(SecretCipher.from_base64(settings.master_key).encrypt(secret))
    return 0


if __name__ == "__main__":
    sys.exit(main())
