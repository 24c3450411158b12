"""Conversion between JSON object payloads and deterministic .env text.

Rendering is canonical: keys sorted, every value double-quoted with a fixed
escape set, one trailing newline per entry. Parsing accepts the common
dotenv dialect (comments, ``export`` prefix, unquoted, single- and
double-quoted values).
"""
import json
import re
from typing import Dict

from .errors import DotenvParseError, PayloadFormatError

_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_RENDER_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}

_PARSE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "\\": "\\",
    '"': '"',
}


def render_dotenv(env: Dict[str, str]) -> str:
    """Render a flat string map as .env text with sorted keys."""
    lines = []
    for key in sorted(env):
        escaped = "".join(_RENDER_ESCAPES.get(ch, ch) for ch in env[key])
        lines.append(f'{key}="{escaped}"\n')
    return "".join(lines)


def parse_dotenv(text: str) -> Dict[str, str]:
    """
    Parse .env text into a flat string map.

    Args:
        text: Dotenv document

    Returns:
        Mapping of key to value; later duplicate keys win

    Raises:
        DotenvParseError: On a missing '=', an invalid key or an unterminated
            quoted value. The error names the 1-based line number only.
    """
    env: Dict[str, str] = {}
    for line_num, raw_line in enumerate(text.split("\n"), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()

        key, sep, value = line.partition("=")
        if not sep:
            raise DotenvParseError(line_num, "missing '='")
        key = key.strip()
        if not _KEY_RE.fullmatch(key):
            raise DotenvParseError(line_num, f"invalid key {key!r}")

        value = value.strip()
        try:
            env[key] = _parse_value(value)
        except ValueError as e:
            raise DotenvParseError(line_num, str(e)) from None
    return env


def _parse_value(raw: str) -> str:
    if not raw:
        return ""
    if raw[0] == '"':
        return _parse_double_quoted(raw)
    if raw[0] == "'":
        end = raw.find("'", 1)
        if end < 0:
            raise ValueError("unterminated single-quoted value")
        return raw[1:end]
    return raw


def _parse_double_quoted(raw: str) -> str:
    out = []
    escaped = False
    for ch in raw[1:]:
        if escaped:
            # Unknown escapes are kept literally, backslash included.
            out.append(_PARSE_ESCAPES.get(ch, "\\" + ch))
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            return "".join(out)
        else:
            out.append(ch)
    raise ValueError("unterminated double-quoted value")


def json_to_dotenv(payload: bytes) -> bytes:
    """
    Convert a JSON object payload into .env bytes.

    String values pass through verbatim; any other JSON value is re-serialized
    as compact JSON text.

    Raises:
        PayloadFormatError: If the payload is not a JSON object
    """
    try:
        obj = json.loads(payload)
    except ValueError as e:
        raise PayloadFormatError(f"expected JSON object: {e}") from None
    if not isinstance(obj, dict):
        raise PayloadFormatError(f"expected JSON object, got {type(obj).__name__}")

    env = {}
    for key, value in obj.items():
        if isinstance(value, str):
            env[key] = value
        else:
            env[key] = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return render_dotenv(env).encode("utf-8")


def dotenv_to_json(payload: bytes) -> bytes:
    """
    Convert .env bytes into a compact JSON object of strings (sorted keys).

    Raises:
        DotenvParseError: If the payload is not valid UTF-8 or not valid dotenv
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        line_num = payload[:e.start].count(b"\n") + 1
        raise DotenvParseError(line_num, "invalid UTF-8") from None
    env = parse_dotenv(text)
    return json.dumps(env, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
