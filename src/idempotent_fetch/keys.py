"""Idempotency key derivation.

The key is computed from a configured JMESPath expression evaluated against
the request event. Transport fields often carry JSON as a string (the HTTP
body, a queue message), so the expression language is extended with
``parse_json(<string>)``, which decodes such a field so the path can continue
into it::

    parse_json(body).address          -> the "address" field of the JSON body
    parse_json(body).[address, delay] -> both fields, hashed together

The resolved value is serialized canonically (sorted keys, compact
separators) and hashed, so semantically equal values always map to the same
key regardless of key order or whitespace in the original payload.
"""

import hashlib
import json
from typing import Any

import jmespath
from jmespath import functions
from jmespath.exceptions import JMESPathError

from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.exceptions import KeyResolutionError


class _PathFunctions(functions.Functions):
    """Custom JMESPath functions available to key expressions."""

    @functions.signature({"types": ["string"]})
    def _func_parse_json(self, value: str) -> Any:
        return json.loads(value)


_OPTIONS = jmespath.Options(custom_functions=_PathFunctions())


def canonical_json(value: Any) -> str:
    """Serialize a value deterministically.

    Examples:
        >>> canonical_json({"b": 1, "a": [1, 2]})
        '{"a":[1,2],"b":1}'
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_value(value: Any, algorithm: str = "md5") -> str:
    """Hash the canonical form of a resolved value.

    Args:
        value: Any JSON-compatible value.
        algorithm: hashlib algorithm name.

    Returns:
        Hexadecimal digest.
    """
    digest = hashlib.new(algorithm)
    digest.update(canonical_json(value).encode("utf-8"))
    return digest.hexdigest()


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    # Multi-select expressions yield a list with None for each unresolved field
    if isinstance(value, list) and value and all(item is None for item in value):
        return True
    return False


class KeyExtractor:
    """Derive idempotency keys (and optional payload hashes) from events.

    Attributes:
        config: Configuration providing the expressions, prefix and hash.
    """

    def __init__(self, config: IdempotencyConfig) -> None:
        self.config = config
        self._key_expression = jmespath.compile(config.key_path)
        self._validation_expression = (
            jmespath.compile(config.payload_validation_path)
            if config.payload_validation_path
            else None
        )

    def derive_key(self, event: dict[str, Any]) -> str:
        """Compute the idempotency key for an event.

        Args:
            event: The request event, e.g. ``{"body": '{"address": "..."}'}``.

        Returns:
            ``"<key_prefix>#<hexdigest>"``

        Raises:
            KeyResolutionError: If the embedded JSON cannot be decoded or the
                path resolves to nothing.

        Examples:
            >>> extractor = KeyExtractor(IdempotencyConfig())
            >>> extractor.derive_key({"body": '{"address": "https://example.com"}'})
            'fetch-location#...'
        """
        value = self._resolve(self._key_expression, self.config.key_path, event)
        if _is_missing(value):
            raise KeyResolutionError(
                f"Key path {self.config.key_path!r} resolved to no value",
                path=self.config.key_path,
            )
        return f"{self.config.key_prefix}#{hash_value(value, self.config.hash_function)}"

    def payload_hash(self, event: dict[str, Any]) -> str | None:
        """Hash the validated payload subset, or None when validation is off.

        Raises:
            KeyResolutionError: If the validation path cannot be evaluated.
        """
        if self._validation_expression is None:
            return None
        path = self.config.payload_validation_path or ""
        value = self._resolve(self._validation_expression, path, event)
        return hash_value(value, self.config.hash_function)

    def _resolve(self, expression: Any, path: str, event: dict[str, Any]) -> Any:
        try:
            return expression.search(event, options=_OPTIONS)
        except json.JSONDecodeError as e:
            raise KeyResolutionError(
                f"Embedded JSON for key path {path!r} is malformed: {e.msg}",
                path=path,
            ) from e
        except JMESPathError as e:
            raise KeyResolutionError(
                f"Key path {path!r} could not be evaluated: {e}",
                path=path,
            ) from e
