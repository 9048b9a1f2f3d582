"""Request body encoding for the two content types the API accepts.

`encode_body` turns an arbitrary body into the keyword arguments of an
`httpx.Request` plus any headers that must accompany them. JSON bodies are
serialized whole; multipart bodies are flattened one level into form parts,
with the boundary chosen here so it can be advertised in the `Content-Type`
header.
"""

import io
import json
import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .log_config import logger

JSON_CONTENT_TYPE = "application/json"
MULTIPART_CONTENT_TYPE = "multipart/form-data"


class EncodedBody(BaseModel):
    """Encoded payload ready to be handed to `httpx.Request`.

    Attributes:
        content: Serialized body for JSON requests.
        files: Form parts for multipart requests, as `(name, value)` pairs in
            the shape `httpx` accepts for its `files` argument.
        headers: Headers to merge into the outgoing request.
    """

    content: bytes | None = None
    files: list[tuple[str, Any]] | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def request_kwargs(self) -> dict[str, Any]:
        if self.files is not None:
            return {"files": self.files}
        return {"content": self.content}


def _media_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def _is_file_value(value: Any) -> bool:
    return isinstance(value, bytes | bytearray | io.IOBase | tuple) or hasattr(
        value, "read"
    )


def _field_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value if isinstance(value, str) else str(value)


def encode_json(body: Any) -> EncodedBody:
    return EncodedBody(content=json.dumps(body).encode("utf-8"))


def encode_multipart(body: Mapping[str, Any]) -> EncodedBody:
    """Flattens `body` one level into multipart form parts.

    Binary values (bytes, file objects and `(filename, content[, type])`
    tuples) are passed through untouched as file parts. Plain values become
    text fields (a `None` filename keeps httpx from treating them as uploads);
    lists repeat the field once per item. `None` values are left out and
    nested mappings are not expanded.
    """
    if not isinstance(body, Mapping):
        raise TypeError(
            f"Multipart bodies must be mappings, got {type(body).__name__}"
        )

    parts: list[tuple[str, Any]] = []
    for key, value in body.items():
        if value is None:
            continue
        if _is_file_value(value):
            parts.append((key, value))
        elif isinstance(value, list):
            parts.extend((key, (None, _field_text(item))) for item in value)
        else:
            parts.append((key, (None, _field_text(value))))

    boundary = os.urandom(16).hex()
    headers = {"Content-Type": f"{MULTIPART_CONTENT_TYPE}; boundary={boundary}"}
    if not parts:
        # httpx sends nothing for an empty `files`; emit the closing delimiter
        return EncodedBody(
            content=f"--{boundary}--\r\n".encode("ascii"), headers=headers
        )

    logger.trace(f"Encoded multipart body with {len(parts)} part(s)")
    return EncodedBody(files=parts, headers=headers)


def encode_body(body: Any, content_type: str | None) -> EncodedBody | None:
    """Encodes `body` for `content_type`.

    Args:
        body: The value to send.
        content_type: The outgoing `Content-Type` header value.

    Returns:
        EncodedBody | None: The encoded payload, or None when the content type
            is neither JSON nor multipart. In that case nothing is encoded and
            whatever pre-built content the caller supplied is sent as-is.
    """
    media_type = _media_type(content_type)
    if media_type == JSON_CONTENT_TYPE:
        return encode_json(body)
    if media_type == MULTIPART_CONTENT_TYPE:
        return encode_multipart(body)
    logger.debug(f"No encoder for content type {content_type!r}; body left untouched")
    return None
