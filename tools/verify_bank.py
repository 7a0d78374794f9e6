#!/usr/bin/env python3
"""
verify_bank.py - Decrypt a question bank and validate its schema.

Usage:
    python tools/verify_bank.py --bank banks/cs101.enc --key-file CS101.key
    python tools/verify_bank.py --bank banks/cs101.enc --password
    python tools/verify_bank.py --bank cs101.json --verbose
"""

import argparse
import getpass
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from judge.bank import is_password_based, read_bank_dict, validate_bank


def verify_bank(bank_file: str, key_file: str = None, use_password: bool = False, verbose: bool = False) -> bool:
    """
    Verify a question bank (encrypted or plaintext).
    Returns True if valid, False otherwise.
    """
    path = Path(bank_file)
    try:
        key = None
        if path.suffix.lower() != '.json':
            if is_password_based(path.read_bytes()):
                if not use_password:
                    print("[ERROR] This bank was encrypted with a password. Use --password flag.", file=sys.stderr)
                    return False
                key = getpass.getpass("Enter decryption password: ")
            else:
                if not key_file:
                    print("[ERROR] This bank was encrypted with a key file. Use --key-file.", file=sys.stderr)
                    return False
                key = Path(key_file).read_text(encoding='utf-8')

        bank_data = read_bank_dict(path, key)
        if key is not None:
            print(f"[OK] Bank decrypted successfully")
    except FileNotFoundError as e:
        print(f"[ERROR] File not found: {e}", file=sys.stderr)
        return False
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return False

    print(f"\n[SCHEMA] Bank Schema Validation")
    print(f"{'='*60}")
    print(f"[OK] Version: {bank_data.get('version', 'unknown')}")

    errors, warnings = validate_bank(bank_data)
    questions = bank_data.get('questions') or []
    if verbose:
        for q in questions:
            tests = q.get('test_cases') or []
            print(f"  [OK] {q.get('id', '?')}: {q.get('title', '?')} ({q.get('type', '?')}, {len(tests)} tests)")

    print(f"\n{'='*60}")
    print(f"[SUMMARY]")
    print(f"  Total questions: {len(questions)}")
    print(f"  Total test cases: {sum(len(q.get('test_cases') or []) for q in questions)}")
    print(f"  Total classes: {len(bank_data.get('classes', []))}")

    if warnings:
        print(f"\n[WARNING] ({len(warnings)}):")
        for warn in warnings[:10]:
            print(f"  - {warn}")
        if len(warnings) > 10:
            print(f"  ... and {len(warnings) - 10} more")

    if errors:
        print(f"\n[ERROR] ({len(errors)}):")
        for err in errors[:20]:
            print(f"  - {err}")
        if len(errors) > 20:
            print(f"  ... and {len(errors) - 20} more")
        return False

    print(f"\n[OK] Bank validation PASSED")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="Validate question bank schema and content.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Verify encrypted bank
  python tools/verify_bank.py --bank banks/cs101.enc --key-file CS101.key

  # Verify plaintext bank (during authoring)
  python tools/verify_bank.py --bank cs101.json --verbose
        """
    )
    parser.add_argument("--bank", required=True, help="Path to bank file (.enc or .json)")
    parser.add_argument("--key-file", help="Encryption key file (for key-file encrypted banks)")
    parser.add_argument("--password", action="store_true", help="Use password to decrypt (for password-encrypted banks)")
    parser.add_argument("--verbose", action="store_true", help="Show every question")

    args = parser.parse_args()

    success = verify_bank(args.bank, args.key_file, args.password, args.verbose)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
