#!/usr/bin/env python3
"""
build_bank.py - Encrypt plaintext JSON question banks.

Usage with key file:
    python tools/build_bank.py --in cs101.json --out banks/cs101.enc --key-file CS101.key

Usage with password:
    python tools/build_bank.py --in cs101.json --out banks/cs101.enc --password
"""

import argparse
import getpass
import hashlib
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from judge.bank import encrypt_bank_bytes, validate_bank


def build_bank(in_file: str, out_file: str, key_file: str = None, use_password: bool = False) -> bool:
    """Validate and encrypt a plaintext JSON question bank."""
    try:
        with open(in_file, 'rb') as f:
            plaintext = f.read()

        try:
            bank_data = json.loads(plaintext)
        except json.JSONDecodeError as e:
            print(f"[ERROR] Invalid JSON in input file: {e}", file=sys.stderr)
            return False

        errors, _ = validate_bank(bank_data)
        if errors:
            print(f"[ERROR] Bank has {len(errors)} schema error(s), run verify_bank.py for details", file=sys.stderr)
            return False
        print(f"[OK] Input bank validated")
        print(f"  Version: {bank_data.get('version', 'unknown')}")
        print(f"  Questions: {len(bank_data.get('questions', []))}, classes: {len(bank_data.get('classes', []))}")

        if use_password:
            password = getpass.getpass("Enter encryption password: ")
            if password != getpass.getpass("Confirm password: "):
                print("[ERROR] Passwords do not match", file=sys.stderr)
                return False
            if len(password) < 8:
                print("[ERROR] Password must be at least 8 characters", file=sys.stderr)
                return False
            final_data = encrypt_bank_bytes(plaintext, password=password)
            print("[OK] Using password-based encryption")
        else:
            with open(key_file, 'rb') as f:
                key = f.read().strip()
            final_data = encrypt_bank_bytes(plaintext, key=key)
            print("[OK] Using key file encryption")

        Path(out_file).parent.mkdir(parents=True, exist_ok=True)
        with open(out_file, 'wb') as f:
            f.write(final_data)

        print(f"\n[OK] Bank encrypted")
        print(f"  Input: {in_file} ({len(plaintext)} bytes)")
        print(f"  Output: {out_file} ({len(final_data)} bytes)")
        print(f"  SHA256: {hashlib.sha256(final_data).hexdigest()}")
        return True

    except FileNotFoundError as e:
        print(f"[ERROR] File not found: {e}", file=sys.stderr)
        return False
    except ValueError as e:
        print(f"[ERROR] Error encrypting bank: {e}", file=sys.stderr)
        return False


def main():
    parser = argparse.ArgumentParser(
        description="Encrypt a plaintext JSON question bank.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tools/build_bank.py --in cs101.json --out banks/cs101.enc --key-file CS101.key
  python tools/build_bank.py --in cs101.json --out banks/cs101.enc --password
        """
    )
    parser.add_argument("--in", dest="in_file", required=True, help="Input plaintext JSON file")
    parser.add_argument("--out", required=True, help="Output encrypted bank file (.enc)")
    method = parser.add_mutually_exclusive_group(required=True)
    method.add_argument("--key-file", help="File containing the encryption key")
    method.add_argument("--password", action="store_true", help="Use password-based encryption")

    args = parser.parse_args()
    sys.exit(0 if build_bank(args.in_file, args.out, args.key_file, args.password) else 1)


if __name__ == "__main__":
    main()
