from apicache._cache import ApiCache as ApiCache
from apicache._durations import parse_duration as parse_duration
from apicache._exceptions import (
    ApiCacheError as ApiCacheError,
    BackendUnavailable as BackendUnavailable,
    ConfigurationError as ConfigurationError,
    MalformedDuration as MalformedDuration,
    SerializationFailure as SerializationFailure,
)
from apicache._keys import GroupIndex as GroupIndex, KeySpace as KeySpace
from apicache._models import CachedResponse as CachedResponse, Request as Request
from apicache._serializers import BaseSerializer, JSONSerializer
from apicache._states import (
    AnyState as AnyState,
    CacheOptions as CacheOptions,
    Capture as Capture,
    EmitOnly as EmitOnly,
    Entry as Entry,
    Lookup as Lookup,
    Passthrough as Passthrough,
    Replay as Replay,
    State as State,
    StoreAndEmit as StoreAndEmit,
)
from apicache._storages import BaseStorage, InMemoryStorage, RedisStorage
from apicache.asgi import CacheMiddleware, ResponseInterceptor

__all__ = (
    # Cache
    "ApiCache",
    "CacheOptions",
    "CacheMiddleware",
    "ResponseInterceptor",
    "parse_duration",
    ## States
    "AnyState",
    "State",
    "Entry",
    "Lookup",
    "Passthrough",
    "Replay",
    "Capture",
    "StoreAndEmit",
    "EmitOnly",
    ## Models
    "CachedResponse",
    "Request",
    ## Keys
    "KeySpace",
    "GroupIndex",
    ## Storages
    "BaseStorage",
    "InMemoryStorage",
    "RedisStorage",
    ## Serializers
    "BaseSerializer",
    "JSONSerializer",
    # Exceptions
    "ApiCacheError",
    "BackendUnavailable",
    "ConfigurationError",
    "MalformedDuration",
    "SerializationFailure",
)
