"""
JSON codec for wire messages.

Profile trees travel depth-encoded and flat, so plain json is safe here
regardless of how deep the encoded tree is.
"""

import json
from typing import Any, Dict, Type, TypeVar, Union

M = TypeVar("M")


def encode(message: Any) -> bytes:
    """Encode any wire message to UTF-8 JSON bytes."""
    return json.dumps(message.to_dict(), separators=(",", ":")).encode("utf-8")


def decode(message_type: Type[M], data: Union[bytes, str, Dict[str, Any]]) -> M:
    """
    Decode a wire message of the given type.

    Raises:
        ValueError: if the payload is not a JSON object or misses required fields
    """
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid {message_type.__name__} payload: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(
            f"{message_type.__name__} payload must be a JSON object, "
            f"got {type(data).__name__}"
        )
    try:
        return message_type.from_dict(data)
    except KeyError as e:
        raise ValueError(f"{message_type.__name__} payload missing field {e}") from e
