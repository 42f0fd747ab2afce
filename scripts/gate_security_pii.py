#!/usr/bin/env python3
"""Source gate: PII-safe logging and explicit exception handling.

Fails if runtime code (src/**):
- calls print(
- uses a bare `except:`
- logs account numbers, holders, payloads or signatures without
  safe_log_context/redact_value on the same line

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

SENSITIVE_KEYWORDS = (
    "payload",
    "request.body",
    "signature",
    "account_number",
    "account_holder",
    "phone",
    "email",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")
BARE_EXCEPT_PATTERN = re.compile(r"^\s*except\s*:")
LOGGER_CALL_PATTERN = re.compile(r"logger\.(debug|info|warning|error|critical|exception)\s*\(")
REDACTION_PATTERNS = ("safe_log_context", "redact_value")


def check_file(filepath: Path) -> list[str]:
    """Violations in one file, as "path:line: message" strings."""
    errors = []
    for lineno, line in enumerate(filepath.read_text(encoding="utf-8").splitlines(), start=1):
        code = line.split("#", 1)[0]
        if not code.strip():
            continue

        if PRINT_PATTERN.search(code):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if BARE_EXCEPT_PATTERN.match(code):
            errors.append(f"{filepath}:{lineno}: bare except not allowed")

        if LOGGER_CALL_PATTERN.search(code):
            lowered = code.lower()
            for keyword in SENSITIVE_KEYWORDS:
                if keyword in lowered and not any(rp in code for rp in REDACTION_PATTERNS):
                    errors.append(
                        f"{filepath}:{lineno}: logger call with '{keyword}' "
                        "must use redaction (safe_log_context/redact_value)"
                    )
    return errors


def check_tree(src_dir: Path) -> list[str]:
    errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        errors.extend(check_file(pyfile))
    return errors


def main() -> int:
    src_dir = Path(__file__).resolve().parent.parent / "src"
    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    errors = check_tree(src_dir)
    if errors:
        sys.stderr.write("Source gate FAILED:\n")
        for err in errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Source gate PASSED\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
