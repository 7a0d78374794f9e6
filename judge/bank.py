"""
Question bank loading and encryption.

A bank is a JSON document holding questions and, optionally, classes:

    {"version": "...", "questions": [...], "classes": [...]}

It is stored either as plain JSON (.json) or Fernet-encrypted (.enc). An
encrypted bank is sealed with a key file, or with a password whose key is
derived by PBKDF2; password banks start with b'SALT' followed by the 16-byte
salt.
"""

import base64
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .languages import LANGUAGES
from .models import ClassRecord, Question, QuestionType

logger = logging.getLogger(__name__)

SALT_PREFIX = b'SALT'
SALT_SIZE = 16
KDF_ITERATIONS = 480000


@dataclass
class QuestionBank:
    """Questions and classes loaded from a bank file."""
    version: str = "unknown"
    questions: Dict[str, Question] = field(default_factory=dict)
    classes: Dict[str, ClassRecord] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: dict) -> 'QuestionBank':
        questions = [Question.from_dict(q) for q in data.get('questions', [])]
        classes = [ClassRecord.from_dict(c) for c in data.get('classes', [])]
        return QuestionBank(
            version=str(data.get('version', 'unknown')),
            questions={q.id: q for q in questions},
            classes={c.id: c for c in classes}
        )

    def load_into(self, store):
        """Register every question and class with a store."""
        for question in self.questions.values():
            store.add_question(question)
        for record in self.classes.values():
            store.add_class(record)


def derive_key_from_password(password: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a password using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    key_material = kdf.derive(password.encode('utf-8'))
    return base64.urlsafe_b64encode(key_material)


def is_password_based(data: bytes) -> bool:
    return data.startswith(SALT_PREFIX)


def encrypt_bank_bytes(plaintext: bytes, key: Optional[bytes] = None, password: Optional[str] = None) -> bytes:
    """
    Encrypt a bank with either a Fernet key or a password.

    Raises:
        ValueError: If neither or both of key and password are given
    """
    if (key is None) == (password is None):
        raise ValueError("Exactly one of key or password is required")

    if password is not None:
        salt = os.urandom(SALT_SIZE)
        token = Fernet(derive_key_from_password(password, salt)).encrypt(plaintext)
        return SALT_PREFIX + salt + token
    return Fernet(key).encrypt(plaintext)


def decrypt_bank_bytes(data: bytes, key_input: str) -> bytes:
    """
    Decrypt an encrypted bank.

    Args:
        data: File contents
        key_input: Password for SALT-prefixed banks, base64 Fernet key otherwise

    Raises:
        ValueError: If the key or password is wrong or the file is corrupted
    """
    if is_password_based(data):
        start = len(SALT_PREFIX)
        salt = data[start:start + SALT_SIZE]
        token = data[start + SALT_SIZE:]
        key = derive_key_from_password(key_input, salt)
    else:
        token = data
        key = key_input.strip().encode('utf-8')

    try:
        return Fernet(key).decrypt(token)
    except (InvalidToken, ValueError) as e:
        raise ValueError("Decryption failed: invalid key/password or corrupted file") from e


def write_class_keys(keys_dir: Path, class_ids: List[str], overwrite: bool = False) -> Dict[str, Path]:
    """
    Create one Fernet key file per class, named `<class_id>.key`.

    Each new key is checked by sealing and opening the class id before it
    is written. Existing key files are left alone unless `overwrite` is set.

    Raises:
        FileExistsError: If a key file exists and overwrite is False
        ValueError: If a class id is empty or not a plain file name
    """
    keys_dir = Path(keys_dir)
    targets = {}
    for class_id in class_ids:
        if not class_id or Path(class_id).name != class_id:
            raise ValueError(f"Invalid class id for a key file: {class_id!r}")
        target = keys_dir / f"{class_id}.key"
        if target.exists() and not overwrite:
            raise FileExistsError(f"Key file already exists: {target}")
        targets[class_id] = target

    keys_dir.mkdir(parents=True, exist_ok=True)
    for class_id, target in targets.items():
        key = Fernet.generate_key()
        sealed = encrypt_bank_bytes(class_id.encode('utf-8'), key=key)
        if decrypt_bank_bytes(sealed, key.decode('utf-8')) != class_id.encode('utf-8'):
            raise ValueError(f"Generated key for {class_id} failed verification")
        target.write_bytes(key)
        logger.info("Wrote key for class %s to %s", class_id, target)
    return targets


def read_bank_dict(path: Path, key: Optional[str] = None) -> dict:
    """
    Read a bank file into a dictionary, decrypting .enc files.

    Raises:
        ValueError: If the file cannot be decrypted or is not valid JSON
    """
    path = Path(path)
    if path.suffix.lower() == '.json':
        raw = path.read_bytes()
    else:
        if key is None:
            raise ValueError(f"Encrypted bank {path.name} requires a key or password")
        raw = decrypt_bank_bytes(path.read_bytes(), key)

    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in bank: {e}")


def load_bank(path: Path, key: Optional[str] = None) -> QuestionBank:
    """
    Load a plain or encrypted question bank.

    Args:
        path: Bank file (.json or .enc)
        key: Key or password for encrypted banks

    Returns:
        QuestionBank with questions and classes by id

    Raises:
        ValueError: If the bank cannot be read, decrypted or parsed
    """
    data = read_bank_dict(path, key)
    try:
        bank = QuestionBank.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid bank entry: {e}")

    logger.info(
        "Loaded bank %s (version %s): %d question(s), %d class(es)",
        Path(path).name, bank.version, len(bank.questions), len(bank.classes)
    )
    return bank


def validate_bank(data: dict) -> Tuple[List[str], List[str]]:
    """
    Check a bank dictionary against the bank schema.

    Returns:
        Tuple of (errors, warnings)
    """
    errors = []
    warnings = []

    if 'version' not in data:
        warnings.append("Missing field: version")

    questions = data.get('questions')
    if not isinstance(questions, list):
        errors.append("questions must be a list")
        return errors, warnings

    seen = set()
    for idx, q in enumerate(questions):
        label = f"questions[{idx + 1}] ({q.get('id', '?')})"
        if 'id' not in q or 'type' not in q:
            errors.append(f"{label}: Missing id or type")
            continue
        if q['id'] in seen:
            errors.append(f"{label}: Duplicate id")
        seen.add(q['id'])

        try:
            qtype = QuestionType.parse(q['type'])
        except ValueError as e:
            errors.append(f"{label}: {e}")
            continue

        if qtype == QuestionType.SINGLE_CHOICE and 'correct_option' not in q:
            errors.append(f"{label}: Missing correct_option")
        elif qtype == QuestionType.MULTI_CHOICE and not q.get('correct_options'):
            errors.append(f"{label}: Missing correct_options")
        elif qtype == QuestionType.FILL_BLANK and 'correct_answer' not in q:
            errors.append(f"{label}: Missing correct_answer")

        if qtype in (QuestionType.CODING, QuestionType.FILL_BLANK_CODING):
            tests = q.get('test_cases') or []
            if not tests:
                errors.append(f"{label}: No test cases defined")
            for test_idx, test in enumerate(tests):
                if 'input' not in test or 'expected_output' not in test:
                    errors.append(f"{label} test {test_idx + 1}: Missing input/expected_output")
            if tests and not any(t.get('is_public') for t in tests):
                warnings.append(f"{label}: No public test cases, practice runs will be rejected")

            languages = q.get('languages') or []
            if not languages:
                errors.append(f"{label}: No languages allowed")
            unknown = [lang for lang in languages if lang not in LANGUAGES]
            if unknown:
                errors.append(f"{label}: Unsupported languages: {', '.join(unknown)}")

            for name, default in (('time_limit', 2), ('memory_limit', 256)):
                limit = q.get(name, default)
                if isinstance(limit, bool) or not isinstance(limit, (int, float)):
                    errors.append(f"{label}: {name} must be a number")
                elif limit <= 0:
                    warnings.append(f"{label}: {name} should be > 0")

        if qtype == QuestionType.FILL_BLANK_CODING and not q.get('code_snippet'):
            errors.append(f"{label}: Missing code_snippet")

    for idx, c in enumerate(data.get('classes', [])):
        label = f"classes[{idx + 1}] ({c.get('id', '?')})"
        if 'id' not in c:
            errors.append(f"{label}: Missing id")
        for entry in c.get('questions', []):
            if entry.get('question_id') not in seen:
                warnings.append(f"{label}: Unknown question {entry.get('question_id')}")

    return errors, warnings
