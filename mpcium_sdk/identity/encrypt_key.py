#!/usr/bin/env python
"""
Interactive helper that turns a plaintext hex identity key file into an
age passphrase file the client can load with a password.
"""

import getpass
import sys
from pathlib import Path

from ..exceptions import KeyLoadError
from .loader import load_private_key
from .security import AGE_SUFFIX, encrypt_private_key


def main() -> int:
    source = input("Plaintext key file: ").strip()
    if not source:
        print("A key file is required.", file=sys.stderr)
        return 1

    try:
        raw_key = load_private_key(source)
    except KeyLoadError as exc:
        print(f"Cannot read key: {exc}", file=sys.stderr)
        return 1

    default_target = f"{source}{AGE_SUFFIX}"
    target = input(f"Encrypted output [{default_target}]: ").strip() or default_target
    if Path(target).exists():
        print(f"{target} already exists; refusing to overwrite.", file=sys.stderr)
        return 1

    password = getpass.getpass("Password: ")
    if not password:
        print("A password is required.", file=sys.stderr)
        return 1

    confirm = getpass.getpass("Confirm password: ")
    if password != confirm:
        print("Passwords do not match.", file=sys.stderr)
        return 1

    Path(target).write_bytes(encrypt_private_key(raw_key, password))
    print(f"\nEncrypted key written to {target}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
