#!/usr/bin/env python3
"""
keygen.py - Create per-class Fernet keys for sealing question banks.

Usage:
    python tools/keygen.py --keys-dir keys CS101 CS102
    python tools/keygen.py --keys-dir keys --from-bank banks/sample_bank.json

Each class gets keys/<class_id>.key. Existing keys are kept unless --force.
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from judge.bank import read_bank_dict, write_class_keys


def class_ids_from_bank(bank_file: str) -> list:
    """Class ids declared in a plain JSON bank."""
    data = read_bank_dict(Path(bank_file))
    return [c['id'] for c in data.get('classes', []) if 'id' in c]


def main():
    parser = argparse.ArgumentParser(
        description="Create one Fernet key per class for build_bank.py --key-file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tools/keygen.py --keys-dir keys CS101
  python tools/build_bank.py --in cs101.json --out banks/cs101.enc --key-file keys/CS101.key
        """
    )
    parser.add_argument("class_ids", nargs="*", help="Class ids to create keys for")
    parser.add_argument("--keys-dir", default="keys", help="Directory for the key files (default: keys)")
    parser.add_argument("--from-bank", help="Also create keys for every class in this plain JSON bank")
    parser.add_argument("--force", action="store_true", help="Replace existing key files")

    args = parser.parse_args()

    class_ids = list(args.class_ids)
    try:
        if args.from_bank:
            class_ids.extend(c for c in class_ids_from_bank(args.from_bank) if c not in class_ids)
        if not class_ids:
            parser.error("no class ids given")

        written = write_class_keys(Path(args.keys_dir), class_ids, overwrite=args.force)
    except (OSError, ValueError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        sys.exit(1)

    for class_id, path in written.items():
        print(f"[OK] {class_id}: {path}")
    print(f"\n[!] Keep key files out of version control and away from the banks they open.")


if __name__ == "__main__":
    main()
