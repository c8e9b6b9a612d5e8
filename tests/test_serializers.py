import json

import pytest

from apicache import CachedResponse, JSONSerializer, SerializationFailure


def test_json_serializer() -> None:
    serializer = JSONSerializer()
    response = CachedResponse(
        status=201,
        headers={"Content-Type": "application/octet-stream", "Cache-Control": "max-age=60"},
        body=b"\x00\xffbinary",
    )

    data = serializer.dumps(response)

    assert json.loads(data) == {
        "status": 201,
        "headers": {"Content-Type": "application/octet-stream", "Cache-Control": "max-age=60"},
        "body": "AP9iaW5hcnk=",
    }
    assert serializer.loads(data) == response
    assert serializer.loads(data.encode()) == response  # type: ignore[union-attr]


@pytest.mark.parametrize(
    "data",
    [
        b"not json at all",
        b"[]",
        b'{"status": 200, "headers": {}}',
        b'{"status": "ok", "headers": {}, "body": ""}',
        b'{"status": 200, "headers": {}, "body": "***"}',
        b'{"status": 200, "headers": [], "body": ""}',
    ],
)
def test_undecodable_payloads(data: bytes) -> None:
    with pytest.raises(SerializationFailure):
        JSONSerializer().loads(data)


def test_cached_response_is_immutable() -> None:
    headers = {"Content-Type": "text/plain"}
    response = CachedResponse(status=200, headers=headers, body=b"hi")

    headers["Content-Type"] = "text/html"
    with pytest.raises(TypeError):
        response.headers["X-Extra"] = "1"  # type: ignore[index]

    marked = response.with_header("x-apicache", "HIT")

    assert response.headers == {"Content-Type": "text/plain"}
    assert marked.headers == {"Content-Type": "text/plain", "x-apicache": "HIT"}
    assert marked.raw_headers() == [(b"Content-Type", b"text/plain"), (b"x-apicache", b"HIT")]
