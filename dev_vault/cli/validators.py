"""Input validation for CLI arguments."""
import re
import sys
from typing import Optional, Pattern

from dev_vault.secrets.domains.models import SECRET_TYPES, is_valid_secret_type


def validate_name_regex(pattern: str) -> Optional[Pattern[str]]:
    """
    Compile the --name-regex filter.

    Args:
        pattern: Python regular expression (matched with re.search)

    Returns:
        Compiled pattern, or None if pattern is empty

    Raises:
        SystemExit with code 2 if the pattern does not compile
    """
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        print(f"Error: invalid --name-regex: {e}", file=sys.stderr)
        sys.exit(2)


def validate_secret_type(secret_type: str) -> None:
    """
    Validate the --type filter against the known secret types.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not secret_type or is_valid_secret_type(secret_type):
        return
    print(f"Error: invalid --type: unknown secret type '{secret_type}'", file=sys.stderr)
    print("\nAllowed types:", file=sys.stderr)
    for name in SECRET_TYPES:
        print(f"  {name}", file=sys.stderr)
    sys.exit(2)
