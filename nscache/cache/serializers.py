"""
Object codec for cached values.

Two storage shapes are supported: a whole value encoded as one JSON blob,
and a flat hash where every field is JSON-encoded on its own so that
heterogeneous field types survive a string-to-string map. Pydantic models
are accepted anywhere a mapping is, through ``model_dump(mode="json")``.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, List, TypeVar

from pydantic import BaseModel

from .errors import CodecError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def _json_default(value: Any) -> Any:
    """json.dumps hook for values the json module cannot encode itself."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _to_str(value: Any) -> Any:
    """Decode bytes replies from connections built without decode_responses."""
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def _as_mapping(obj: Any, operation: str) -> Mapping:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if not isinstance(obj, Mapping):
        raise TypeError(f"{operation} requires a mapping, got {type(obj).__name__}")
    return obj


class ObjectCodec:
    """
    JSON codec for whole values and for field-wise hash storage.

    Whole-value failures are fatal and raise CodecError. Field-wise failures
    are tolerated per field: the rest of the object is still encoded or
    decoded.
    """

    @staticmethod
    def encode_value(obj: Any) -> str:
        """
        Encode a whole value as JSON.

        Raises:
            CodecError: If obj holds cyclic or non-serializable content
        """
        try:
            return json.dumps(obj, default=_json_default)
        except (TypeError, ValueError, OverflowError) as e:
            raise CodecError(f"Cannot encode value: {e}") from e

    @staticmethod
    def decode_value(raw: Any) -> Any:
        """
        Decode a JSON blob. A missing value (None) decodes to None.

        Raises:
            CodecError: If raw is not valid JSON
        """
        if raw is None:
            return None
        try:
            return json.loads(_to_str(raw))
        except (TypeError, ValueError) as e:
            raise CodecError(f"Cannot decode value: {e}") from e

    @staticmethod
    def encode_fields(obj: Any) -> Dict[str, Any]:
        """
        Encode every field of a mapping individually.

        The input is never mutated. A field whose value cannot be encoded
        keeps its original value in the returned copy.

        Raises:
            TypeError: If obj is not a mapping or pydantic model
        """
        source = _as_mapping(obj, "encode_fields")
        encoded = dict(source)
        for name, value in source.items():
            try:
                encoded[name] = json.dumps(value, default=_json_default)
            except (TypeError, ValueError, OverflowError) as e:
                logger.debug(f"Leaving field {name!r} unencoded: {e}")
        return encoded

    @staticmethod
    def decode_fields(mapping: Any) -> Dict[str, Any]:
        """
        Decode every field of a hash individually.

        A field that is not valid JSON is kept as its raw string.

        Raises:
            TypeError: If mapping is not a mapping
        """
        source = _as_mapping(mapping, "decode_fields")
        decoded = {}
        for name, raw in source.items():
            name, raw = _to_str(name), _to_str(raw)
            try:
                decoded[name] = json.loads(raw)
            except (TypeError, ValueError):
                decoded[name] = raw
        return decoded


def collect_lenient(items: Iterable[T], fn: Callable[[T], R], *, label: str = "item") -> List[R]:
    """
    Map fn over items, keeping only successful, non-None results.

    This is the tolerance policy of every bulk read: one bad member is
    dropped and logged instead of failing the whole call. Input order is
    preserved.
    """
    results = []
    for item in items:
        if isinstance(item, Exception):
            logger.warning(f"Dropping {label}: {item}")
            continue
        try:
            result = fn(item)
        except (CodecError, TypeError, ValueError) as e:
            logger.warning(f"Dropping {label}: {e}")
            continue
        if result is not None:
            results.append(result)
    return results
