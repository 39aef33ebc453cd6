"""Content fingerprints with explicit canonicalization rules.

Fingerprints identify the *meaningful* content of a watched input so that
editor touches, whitespace edits, key reordering and comment edits do not
count as changes.

Key rules:
- Object keys sorted recursively
- Arrays preserve order
- Strings normalized to NFC
- NaN and Infinity BANNED (hard validation error)
- Non-JSON types forbidden
- GraphQL documents are re-printed from their AST (comments and layout dropped)
"""

import hashlib
import json
import math
import unicodedata
from typing import Any, Callable, Union

from graphql import GraphQLError, parse, print_ast

Fingerprinter = Callable[[bytes], str]


class CanonicalizationError(ValueError):
    """Raised when content cannot be canonicalized."""
    pass


def _normalize_string(s: str) -> str:
    """Normalize string to NFC (Unicode Normalization Form Canonical Composition)."""
    return unicodedata.normalize('NFC', s)


def _validate_json_type(obj: Any, path: str = "") -> None:
    """Validate that object contains only JSON-compatible types.

    Raises CanonicalizationError if non-JSON types or non-finite numbers are found.
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return
    elif isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise CanonicalizationError(
                f"Invalid number at {path or '<root>'}: NaN or Inf not allowed"
            )
    elif isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Dictionary keys must be strings at {path}, got {type(key).__name__}"
                )
            _validate_json_type(value, f"{path}.{key}" if path else key)
    elif isinstance(obj, list):
        for i, item in enumerate(obj):
            _validate_json_type(item, f"{path}[{i}]" if path else f"[{i}]")
    else:
        raise CanonicalizationError(
            f"Non-JSON type at {path or '<root>'}: {type(obj).__name__}. "
            f"Only None, bool, int, float, str, dict, and list are allowed."
        )


def _canonicalize_value(obj: Any) -> Any:
    if isinstance(obj, str):
        return _normalize_string(obj)
    elif isinstance(obj, dict):
        return {
            _normalize_string(k): _canonicalize_value(v)
            for k, v in sorted(obj.items())
        }
    elif isinstance(obj, list):
        return [_canonicalize_value(item) for item in obj]
    return obj


def canonicalize_json(obj: Any) -> str:
    """Canonicalize a JSON-serializable object to a stable string representation.

    Args:
        obj: The object to canonicalize

    Returns:
        Canonical JSON string

    Raises:
        CanonicalizationError: If object contains non-finite numbers or non-JSON types
    """
    _validate_json_type(obj)
    canonicalized = _canonicalize_value(obj)
    return json.dumps(canonicalized, sort_keys=True, ensure_ascii=False, separators=(',', ':'))


def hash_bytes(content: Union[str, bytes]) -> str:
    """Compute SHA256 hash of raw content.

    Returns:
        SHA256 hash as hex string (prefixed with "sha256:")
    """
    if isinstance(content, str):
        content = content.encode('utf-8')
    digest = hashlib.sha256(content).hexdigest()
    return f"sha256:{digest}"


def _decode(raw: bytes) -> str:
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise CanonicalizationError(f"Content is not valid UTF-8: {e}") from e


def fingerprint_json_document(raw: bytes) -> str:
    """Fingerprint a JSON document by its canonical form.

    Two documents differing only in whitespace or key order share a fingerprint.

    Raises:
        CanonicalizationError: If the content is not valid JSON
    """
    try:
        data = json.loads(_decode(raw))
        canonical = canonicalize_json(data)
    except CanonicalizationError:
        raise
    except (ValueError, RecursionError) as e:
        # JSONDecodeError, oversized integers, excessive nesting
        raise CanonicalizationError(f"Invalid JSON: {e}") from e
    return hash_bytes(canonical)


def fingerprint_graphql_document(raw: bytes) -> str:
    """Fingerprint a GraphQL SDL document by its re-printed AST.

    Comments, blank lines and indentation do not affect the fingerprint.

    Raises:
        CanonicalizationError: If the content is not a parseable GraphQL document
    """
    try:
        document = parse(_decode(raw), no_location=True)
        printed = print_ast(document)
    except CanonicalizationError:
        raise
    except GraphQLError as e:
        raise CanonicalizationError(f"Invalid GraphQL document: {e.message}") from e
    except RecursionError as e:
        raise CanonicalizationError(f"GraphQL document nested too deeply: {e}") from e
    return hash_bytes(_normalize_string(printed))


def fingerprint_content(raw: bytes, fingerprinter: Fingerprinter = hash_bytes) -> str:
    """Fingerprint content, falling back to the raw bytes hash.

    A malformed document is still a distinct state, so when the structured
    fingerprint cannot be computed the raw content hash is used instead.
    """
    try:
        return fingerprinter(raw)
    except CanonicalizationError:
        return hash_bytes(raw)
