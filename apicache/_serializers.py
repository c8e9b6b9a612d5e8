import base64
import json
import typing as tp

from apicache._exceptions import SerializationFailure
from apicache._models import CachedResponse

__all__ = ("BaseSerializer", "JSONSerializer")


class BaseSerializer:
    def dumps(self, response: CachedResponse) -> tp.Union[str, bytes]:
        raise NotImplementedError()

    def loads(self, data: tp.Union[str, bytes]) -> CachedResponse:
        raise NotImplementedError()


class JSONSerializer(BaseSerializer):
    """A simple json-based serializer."""

    def dumps(self, response: CachedResponse) -> tp.Union[str, bytes]:
        """
        Dumps the cached response.

        :param response: A response captured by the cache
        :type response: CachedResponse
        :return: Serialized response
        :rtype: tp.Union[str, bytes]
        """
        return json.dumps(
            {
                "status": response.status,
                "headers": dict(response.headers),
                "body": base64.b64encode(response.body).decode("ascii"),
            }
        )

    def loads(self, data: tp.Union[str, bytes]) -> CachedResponse:
        """
        Loads the cached response from serialized data.

        :param data: Serialized data
        :type data: tp.Union[str, bytes]
        :raises SerializationFailure: When the payload is not a stored response
        :return: The cached response
        :rtype: CachedResponse
        """
        try:
            full_json = json.loads(data)
            return CachedResponse(
                status=int(full_json["status"]),
                headers={str(key): str(value) for key, value in full_json["headers"].items()},
                body=base64.b64decode(full_json["body"].encode("ascii"), validate=True),
            )
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            raise SerializationFailure(f"Could not decode cached response: {exc}") from exc
