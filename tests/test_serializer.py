"""Tests for request/response body serialization."""

import asyncio
import base64
import json
from datetime import datetime, timezone

import msgpack
import pytest

from kibela import FORMAT_JSON, FORMAT_MSGPACK, DataSerializer, UnrecognizedFormatError
from kibela.serializer import UNRECOGNIZED_CONTENT_TYPE, normalize_mime_type

ENVELOPE = {
    'query': "query HelloKibelaClient { currentUser { account } }",
    'operationName': 'HelloKibelaClient',
    'variables': {'title': "日本語のタイトル", 'tags': ['a', 'b'], 'count': 3},
}


@pytest.fixture
def serializer():
    return DataSerializer()


def chunked(data: bytes, size: int):
    return [data[i:i + size] for i in range(0, len(data), size)]


class TestSerialize:
    """Test encoding of request bodies."""

    def test_msgpack_round_trip(self, serializer):
        encoded = serializer.serialize(FORMAT_MSGPACK, ENVELOPE)

        assert isinstance(encoded, bytes)
        assert serializer.deserialize(FORMAT_MSGPACK, encoded) == ENVELOPE

    def test_json_keeps_non_ascii(self, serializer):
        encoded = serializer.serialize(FORMAT_JSON, ENVELOPE)

        assert isinstance(encoded, str)
        assert "日本語のタイトル" in encoded
        assert json.loads(encoded) == ENVELOPE

    def test_datetime_encoded_as_iso_string(self, serializer):
        published = datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        body = {'variables': {'publishedAt': published}}

        packed = msgpack.unpackb(serializer.serialize(FORMAT_MSGPACK, body), raw=False)
        dumped = json.loads(serializer.serialize(FORMAT_JSON, body))

        assert packed['variables']['publishedAt'] == "2020-01-02T03:04:05+00:00"
        assert dumped['variables']['publishedAt'] == "2020-01-02T03:04:05+00:00"

    def test_bytes_stay_binary_in_msgpack(self, serializer):
        body = {'variables': {'input': {'data': b"\x89PNG\x00\x01"}}}

        decoded = msgpack.unpackb(serializer.serialize(FORMAT_MSGPACK, body), raw=False)

        assert decoded['variables']['input']['data'] == b"\x89PNG\x00\x01"

    def test_bytes_base64_in_json(self, serializer):
        body = {'variables': {'input': {'data': b"\x89PNG"}}}

        decoded = json.loads(serializer.serialize(FORMAT_JSON, body))

        assert base64.b64decode(decoded['variables']['input']['data']) == b"\x89PNG"

    def test_unknown_mime_type_rejected(self, serializer):
        with pytest.raises(UnrecognizedFormatError) as excinfo:
            serializer.serialize("text/xml", ENVELOPE)

        assert excinfo.value.mime_type == "text/xml"

    def test_unencodable_value_raises_type_error(self, serializer):
        with pytest.raises(TypeError):
            serializer.serialize(FORMAT_MSGPACK, {'variables': {'x': object()}})


class TestDeserialize:
    """Test decoding of response bodies."""

    def test_msgpack_from_chunks(self, serializer):
        data = msgpack.packb({'data': {'note': {'id': 'Tm90ZS8x', 'content': "x" * 500}}})

        decoded = serializer.deserialize(FORMAT_MSGPACK, iter(chunked(data, 7)))

        assert decoded['data']['note']['id'] == 'Tm90ZS8x'

    def test_msgpack_incomplete_body(self, serializer):
        data = msgpack.packb({'data': {'ok': True}})

        with pytest.raises(ValueError):
            serializer.deserialize(FORMAT_MSGPACK, data[:-1])

    def test_msgpack_empty_body(self, serializer):
        with pytest.raises(ValueError):
            serializer.deserialize(FORMAT_MSGPACK, [])

    def test_msgpack_integer_map_keys(self, serializer):
        data = msgpack.packb({1: 'one'})

        assert serializer.deserialize(FORMAT_MSGPACK, data) == {1: 'one'}

    def test_json_from_chunks(self, serializer):
        data = json.dumps({'data': {'currentUser': {'account': 'alice'}}}).encode('utf-8')

        decoded = serializer.deserialize(FORMAT_JSON, chunked(data, 5))

        assert decoded == {'data': {'currentUser': {'account': 'alice'}}}

    def test_malformed_json(self, serializer):
        with pytest.raises(ValueError):
            serializer.deserialize(FORMAT_JSON, b"{not json")

    def test_text_content_type_becomes_error_body(self, serializer):
        decoded = serializer.deserialize("text/html", [b"<html>", b"Maintenance</html>"])

        error = decoded['errors'][0]
        assert error['extensions']['code'] == UNRECOGNIZED_CONTENT_TYPE
        assert error['extensions']['contentType'] == "text/html"
        assert error['extensions']['body'] == "<html>Maintenance</html>"

    def test_binary_content_type_keeps_bytes(self, serializer):
        decoded = serializer.deserialize("application/octet-stream", b"\x00\x01")

        assert decoded['errors'][0]['extensions']['body'] == b"\x00\x01"


class TestDeserializeAsync:
    """Test decoding from asynchronous byte streams."""

    @staticmethod
    async def _stream(chunks):
        for chunk in chunks:
            yield chunk

    def test_msgpack_stream(self, serializer):
        data = msgpack.packb({'data': {'ok': True}})

        decoded = asyncio.run(serializer.deserialize_async(FORMAT_MSGPACK, self._stream(chunked(data, 3))))

        assert decoded == {'data': {'ok': True}}

    def test_msgpack_stream_incomplete(self, serializer):
        data = msgpack.packb({'data': {'ok': True}})

        with pytest.raises(ValueError):
            asyncio.run(serializer.deserialize_async(FORMAT_MSGPACK, self._stream([data[:-2]])))

    def test_json_stream(self, serializer):
        data = b'{"data": {"ok": true}}'

        decoded = asyncio.run(serializer.deserialize_async(FORMAT_JSON, self._stream(chunked(data, 4))))

        assert decoded == {'data': {'ok': True}}


class TestNormalizeMimeType:
    """Test Content-Type normalization."""

    @pytest.mark.parametrize("header,expected", [
        ("application/json; charset=utf-8", "application/json"),
        ("Application/X-MsgPack", "application/x-msgpack"),
        ("text/html ; charset=UTF-8", "text/html"),
    ])
    def test_strips_parameters(self, header, expected):
        assert normalize_mime_type(header) == expected

    def test_missing_header(self):
        assert normalize_mime_type(None) is None
        assert normalize_mime_type("") == ""
