"""Kibela GraphQL API client package.

Package Structure:
- serializer: MessagePack/JSON request and response bodies
- errors: Exception types and error-record helpers
- operations: Operation-name extraction and the GraphQL operations we send
- client: HTTP transport with adaptive retry and timing metadata
"""

from .errors import (
    ConfigurationError,
    GraphqlError,
    KibelaClientError,
    NetworkError,
    NotFoundError,
    UnrecognizedFormatError,
    is_not_found_error
)
from .serializer import FORMAT_JSON, FORMAT_MSGPACK, DataSerializer
from .operations import Operation, get_operation_name
from .client import (
    KibelaClient,
    KibelaResponse,
    ResponseMetadata,
    RetryPolicy,
    create_endpoint
)

__all__ = [
    'KibelaClient',
    'KibelaResponse',
    'ResponseMetadata',
    'RetryPolicy',
    'create_endpoint',
    'DataSerializer',
    'FORMAT_JSON',
    'FORMAT_MSGPACK',
    'Operation',
    'get_operation_name',
    'KibelaClientError',
    'ConfigurationError',
    'UnrecognizedFormatError',
    'GraphqlError',
    'NotFoundError',
    'NetworkError',
    'is_not_found_error',
]
