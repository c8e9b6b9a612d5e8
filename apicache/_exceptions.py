__all__ = (
    "ApiCacheError",
    "ConfigurationError",
    "BackendUnavailable",
    "SerializationFailure",
    "MalformedDuration",
)


class ApiCacheError(Exception): ...


class ConfigurationError(ApiCacheError): ...


class BackendUnavailable(ApiCacheError): ...


class SerializationFailure(ApiCacheError): ...


class MalformedDuration(ApiCacheError, ValueError): ...
