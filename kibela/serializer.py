"""Request/response body serialization for the Kibela API.

Two wire formats are supported, selected by exact MIME type:

- ``application/x-msgpack``: MessagePack, decoded incrementally chunk by chunk
- ``application/json``: JSON text

Responses with any other content type are turned into an error-shaped body
instead of raising, so the client handles them on its ordinary error path
(Kibela answers with text/html while in maintenance mode).
"""

import base64
import json
import logging
from datetime import date, datetime
from typing import Any, AsyncIterable, Dict, Iterable, Union

import msgpack

from .errors import UnrecognizedFormatError

logger = logging.getLogger('kibela_migrator.kibela.serializer')

FORMAT_JSON = "application/json"
FORMAT_MSGPACK = "application/x-msgpack"
SUPPORTED_FORMATS = (FORMAT_JSON, FORMAT_MSGPACK)

UNRECOGNIZED_CONTENT_TYPE = "UNRECOGNIZED_CONTENT_TYPE"

Buffer = Union[bytes, bytearray, memoryview, str]
RawBody = Union[Buffer, Iterable[bytes]]


def _msgpack_default(value: Any) -> Any:
    """Encode values MessagePack has no native type for."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not MessagePack serializable")


def _json_default(value: Any) -> Any:
    """Encode values JSON has no native type for."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode('ascii')
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _is_buffer(raw: Any) -> bool:
    return isinstance(raw, (bytes, bytearray, memoryview, str))


def _to_bytes(chunk: Buffer) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode('utf-8')
    return bytes(chunk)


class DataSerializer:
    """Encodes request envelopes and decodes response bodies."""

    def serialize(self, mime_type: str, body: Dict[str, Any]) -> Union[bytes, str]:
        """
        Encode a request body.

        Args:
            mime_type: FORMAT_MSGPACK or FORMAT_JSON
            body: Request envelope (query, operationName, variables)

        Returns:
            bytes for MessagePack, str for JSON

        Raises:
            UnrecognizedFormatError: If mime_type is not a supported format
        """
        if mime_type == FORMAT_MSGPACK:
            return msgpack.packb(body, use_bin_type=True, default=_msgpack_default)
        elif mime_type == FORMAT_JSON:
            return json.dumps(body, ensure_ascii=False, default=_json_default)
        else:
            raise UnrecognizedFormatError(mime_type)

    def deserialize(self, mime_type: str, raw: RawBody) -> Any:
        """
        Decode a response body.

        Args:
            mime_type: Normalized response content type
            raw: Whole body as one buffer, or an iterable of byte chunks

        Returns:
            Decoded object; an error-shaped dict for unsupported content types

        Raises:
            ValueError: If the body is malformed for its declared format
        """
        chunks = [raw] if _is_buffer(raw) else raw

        if mime_type == FORMAT_MSGPACK:
            unpacker = self._new_unpacker()
            for chunk in chunks:
                unpacker.feed(_to_bytes(chunk))
                for value in unpacker:
                    return value
            raise ValueError("Incomplete MessagePack response body")
        elif mime_type == FORMAT_JSON:
            return json.loads(b"".join(_to_bytes(chunk) for chunk in chunks))
        else:
            body = b"".join(_to_bytes(chunk) for chunk in chunks)
            return unrecognized_content_type_body(mime_type, body)

    async def deserialize_async(self, mime_type: str, stream: AsyncIterable[bytes]) -> Any:
        """Decode a response body delivered as an async iterable of chunks."""
        if mime_type == FORMAT_MSGPACK:
            unpacker = self._new_unpacker()
            async for chunk in stream:
                unpacker.feed(_to_bytes(chunk))
                for value in unpacker:
                    return value
            raise ValueError("Incomplete MessagePack response body")

        chunks = []
        async for chunk in stream:
            chunks.append(_to_bytes(chunk))
        return self.deserialize(mime_type, b"".join(chunks))

    @staticmethod
    def _new_unpacker() -> msgpack.Unpacker:
        return msgpack.Unpacker(raw=False, strict_map_key=False)


def unrecognized_content_type_body(mime_type: str, body: bytes) -> Dict[str, Any]:
    """
    Build an error-shaped response for a content type the client cannot decode.

    Args:
        mime_type: Content type the server declared
        body: Raw response body

    Returns:
        ``{"errors": [...]}`` with code UNRECOGNIZED_CONTENT_TYPE
    """
    logger.debug(f"Unrecognized content-type {mime_type!r} ({len(body)} bytes)")

    if mime_type and mime_type.startswith("text/"):
        payload: Union[str, bytes] = body.decode('utf-8', errors='replace')
    else:
        payload = body

    return {
        'errors': [
            {
                'message': f"Unrecognized content-type: {mime_type}",
                'extensions': {
                    'code': UNRECOGNIZED_CONTENT_TYPE,
                    'contentType': mime_type,
                    'body': payload,
                },
            }
        ]
    }


def normalize_mime_type(content_type: str) -> str:
    """Strip parameters and case from a Content-Type header value."""
    if not content_type:
        return content_type
    return content_type.split(';')[0].strip().lower()


__all__ = [
    'DataSerializer',
    'FORMAT_JSON',
    'FORMAT_MSGPACK',
    'SUPPORTED_FORMATS',
    'UNRECOGNIZED_CONTENT_TYPE',
    'normalize_mime_type',
    'unrecognized_content_type_body',
]
