"""Kibela GraphQL API client with adaptive retry and rate-limit handling."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests
import urllib3
from graphql import GraphQLError, print_ast

from config_loader import get_nested
from .errors import (
    ConfigurationError,
    NetworkError,
    UnrecognizedFormatError,
    budget_wait_ms,
    error_records,
    graphql_error_from
)
from .operations import QueryLike, as_document, get_operation_name
from .serializer import (
    FORMAT_JSON,
    FORMAT_MSGPACK,
    SUPPORTED_FORMATS,
    DataSerializer,
    normalize_mime_type
)

logger = logging.getLogger('kibela_migrator.kibela.client')


# As described in https://github.com/kibela/kibela-api-v1-document
DEFAULT_ENDPOINT = "https://${KIBELA_TEAM}.kibe.la/api/v1"
DEFAULT_LEAST_DELAY_MS = 100
LEAST_DELAY_AFTER_NETWORK_ERROR_MS = 1000
DEFAULT_RETRY_COUNT = 0
DEFAULT_TIMEOUT = 30
RESPONSE_CHUNK_SIZE = 64 * 1024

FORMAT_ALIASES = {
    'json': FORMAT_JSON,
    'msgpack': FORMAT_MSGPACK,
}


def create_endpoint(team: str, endpoint: Optional[str] = None) -> str:
    """Substitute the team subdomain into an endpoint template."""
    return (endpoint or DEFAULT_ENDPOINT).replace("${KIBELA_TEAM}", team)


class RetryPolicy:
    """
    Attempt counter and adaptive delay shared by all calls of one client.

    The attempt counter restarts with every logical request. The delay does
    not: budget-exhausted answers and network failures slow down every later
    request on the same client until one of them succeeds, which puts the
    delay back to ``least_delay_ms``. A fresh policy starts with no delay.
    """

    def __init__(self, least_delay_ms: int = DEFAULT_LEAST_DELAY_MS, retry_count: int = DEFAULT_RETRY_COUNT):
        if least_delay_ms < 0:
            raise ConfigurationError("least_delay_ms must not be negative")
        if retry_count < 0:
            raise ConfigurationError("retry_count must not be negative")

        self.least_delay_ms = least_delay_ms
        self.retry_count = retry_count
        self.delay_ms = 0
        self.attempt = 0

    @property
    def max_attempts(self) -> int:
        return self.retry_count + 1

    def start(self) -> None:
        """Begin a new logical request."""
        self.attempt = 0

    def on_network_error(self) -> None:
        self.delay_ms = max(self.delay_ms * 2, LEAST_DELAY_AFTER_NETWORK_ERROR_MS)

    def on_budget_exhausted(self, wait_ms: int) -> None:
        self.delay_ms = max(wait_ms, self.least_delay_ms)

    def on_success(self) -> None:
        self.delay_ms = self.least_delay_ms


@dataclass
class ResponseMetadata:
    """Timing breakdown (milliseconds) and content type of a response."""

    timings: Dict[str, int] = field(default_factory=dict)
    content_type: Optional[str] = None


@dataclass
class KibelaResponse:
    """Successful GraphQL response; ``data`` is never None."""

    data: Dict[str, Any]
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'data': self.data,
            'metadata': {
                'timings': dict(self.metadata.timings),
                'contentType': self.metadata.content_type
            }
        }


class KibelaClient:
    """
    Kibela GraphQL API client.

    One logical ``request()`` may span several HTTP attempts. Attempts are
    strictly sequential and share the serialized body. The retry delay lives
    on the client instance (see RetryPolicy), so an instance must serve one
    in-flight request at a time; callers running requests concurrently need
    one client per worker or their own serialization.
    """

    def __init__(
        self,
        team: str,
        access_token: str,
        user_agent: str,
        endpoint: Optional[str] = None,
        format: str = FORMAT_MSGPACK,
        least_delay_ms: Optional[int] = None,
        retry_count: Optional[int] = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
        serializer: Optional[DataSerializer] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize Kibela client.

        Args:
            team: Team subdomain (``<team>.kibe.la``)
            access_token: Personal access token
            user_agent: User-Agent header value
            endpoint: Endpoint template containing ``${KIBELA_TEAM}``
            format: FORMAT_MSGPACK (default) or FORMAT_JSON
            least_delay_ms: Delay applied after a successful request
            retry_count: Extra attempts after the first one
            timeout: HTTP timeout in seconds
            verify_ssl: Whether to verify SSL certificates
            serializer: Body serializer (defaults to DataSerializer)
            session: requests session to send through
            sleep: Sleep function taking seconds
        """
        if format not in SUPPORTED_FORMATS:
            raise UnrecognizedFormatError(format)

        self.team = team
        self.format = format
        self.endpoint = create_endpoint(team, endpoint)
        self.headers = {
            'user-agent': user_agent,
            'content-type': self.format,
            'accept': f"{self.format}, {FORMAT_JSON}" if self.format != FORMAT_JSON else self.format,
            'authorization': f"Bearer {access_token}",
        }
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.serializer = serializer or DataSerializer()
        self.session = session or requests.Session()
        self.retry_policy = RetryPolicy(
            least_delay_ms=DEFAULT_LEAST_DELAY_MS if least_delay_ms is None else least_delay_ms,
            retry_count=DEFAULT_RETRY_COUNT if retry_count is None else retry_count
        )
        self._sleep = sleep

        if not verify_ssl:
            logger.warning("SSL verification disabled - this is insecure!")
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        logger.info(f"Initialized Kibela client for {self.endpoint} "
                    f"(format={self.format}, retry_count={self.retry_policy.retry_count}, "
                    f"least_delay_ms={self.retry_policy.least_delay_ms})")

    def request(self, query: QueryLike, variables: Optional[Dict[str, Any]] = None) -> KibelaResponse:
        """
        Execute a GraphQL operation.

        Args:
            query: Named GraphQL operation
            variables: Operation variables

        Returns:
            KibelaResponse with data and timing metadata

        Raises:
            ConfigurationError: If the query cannot be parsed or has no named operation
            GraphqlError: If the API answered with errors (NotFoundError for NOT_FOUND)
            NetworkError: If no attempt produced a usable response
        """
        t0 = time.monotonic()
        policy = self.retry_policy
        policy.start()

        try:
            document = as_document(query)
        except (GraphQLError, TypeError) as e:
            raise ConfigurationError(f"Invalid GraphQL query: {e}") from e

        operation_name = get_operation_name(document)
        if not operation_name:
            raise ConfigurationError("GraphQL query's operationName is required")

        query_string = print_ast(document)
        payload = self.serializer.serialize(self.format, {
            'query': query_string,
            'operationName': operation_name,
            'variables': variables if variables is not None else {},
        })
        params = {'operationName': operation_name}
        t_serialized = time.monotonic()

        network_errors: List[BaseException] = []
        response: Optional[requests.Response] = None
        body: Any = None
        succeeded = False
        request_ms = 0
        decode_ms = 0

        while policy.attempt < policy.max_attempts:
            logger.debug(
                f"POST {self.endpoint} operationName={operation_name} "
                f"(attempt={policy.attempt + 1}/{policy.max_attempts}, delay_ms={policy.delay_ms})"
            )
            self._sleep(policy.delay_ms / 1000.0)
            policy.attempt += 1

            response = None
            body = None
            try:
                t_sent = time.monotonic()
                response = self.session.post(
                    self.endpoint,
                    params=params,
                    data=payload,
                    headers=self.headers,
                    timeout=self.timeout,
                    verify=self.verify_ssl,
                    allow_redirects=True,
                    stream=True
                )
                t_received = time.monotonic()

                content_type = normalize_mime_type(response.headers.get('content-type')) or self.format
                body = self.serializer.deserialize(
                    content_type,
                    response.iter_content(chunk_size=RESPONSE_CHUNK_SIZE)
                )
                t_decoded = time.monotonic()
            except (requests.exceptions.RequestException, ValueError) as e:
                # Connection failures, timeouts, truncated or malformed bodies
                policy.on_network_error()
                network_errors.append(e)
                logger.warning(f"Network error on {operation_name} "
                               f"(attempt {policy.attempt}/{policy.max_attempts}): {e}")
                continue
            finally:
                if response is not None:
                    response.close()

            request_ms = _elapsed_ms(t_sent, t_received)
            decode_ms = _elapsed_ms(t_received, t_decoded)

            errors = error_records(body)
            if errors:
                wait_ms = budget_wait_ms(errors)
                if wait_ms is None:
                    break
                policy.on_budget_exhausted(wait_ms)
                logger.warning(f"Budget exhausted on {operation_name} ({errors[0]['extensions']['code']}), "
                               f"waiting {policy.delay_ms}ms")
            elif response.ok and isinstance(body, dict) and body.get('data') is not None:
                succeeded = True
                break
            else:
                logger.warning(f"Unexpected response for {operation_name}: "
                               f"{response.status_code} {response.headers.get('content-type')}")

        errors = error_records(body)
        if errors:
            raise graphql_error_from("GraphQL errors", query_string, variables, errors)

        if response is None:
            raise NetworkError("Invalid HTTP response", network_errors)

        if not succeeded:
            raise NetworkError(
                f"Invalid GraphQL response: {response.status_code} {response.reason} "
                f"{response.headers.get('content-type')} {body!r}",
                network_errors
            )

        policy.on_success()

        api_ms = _parse_runtime_ms(response.headers.get('x-runtime'))
        metadata = ResponseMetadata(
            timings={
                'serialize': _elapsed_ms(t0, t_serialized),
                'api': api_ms,
                'client': request_ms - api_ms,
                'decode': decode_ms,
                'total': _elapsed_ms(t0, time.monotonic()),
            },
            content_type=response.headers.get('content-type')
        )
        logger.debug(f"{operation_name} finished: {metadata.timings}")

        return KibelaResponse(data=body['data'], metadata=metadata)

    @classmethod
    def from_config(cls, config: Dict[str, Any], user_agent: str, **kwargs) -> 'KibelaClient':
        """
        Initialize Kibela client from configuration dictionary.

        Args:
            config: Configuration dictionary with a ``kibela`` section
            user_agent: User-Agent header value
            **kwargs: Passed through to the constructor (session, sleep, ...)

        Returns:
            KibelaClient instance
        """
        format_name = get_nested(config, 'kibela.format', 'msgpack')

        return cls(
            team=get_nested(config, 'kibela.team'),
            access_token=get_nested(config, 'kibela.access_token'),
            user_agent=user_agent,
            endpoint=get_nested(config, 'kibela.endpoint') or None,
            format=FORMAT_ALIASES.get(format_name, format_name),
            least_delay_ms=get_nested(config, 'kibela.least_delay_ms'),
            retry_count=get_nested(config, 'kibela.retry_count'),
            timeout=get_nested(config, 'kibela.request_timeout', DEFAULT_TIMEOUT),
            verify_ssl=get_nested(config, 'kibela.verify_ssl', True),
            **kwargs
        )


def _elapsed_ms(start: float, end: float) -> int:
    return int(round((end - start) * 1000))


def _parse_runtime_ms(value: Optional[str]) -> int:
    """Convert an ``x-runtime`` header (fractional seconds) to milliseconds."""
    if not value:
        return 0
    try:
        return int(round(float(value) * 1000))
    except ValueError:
        return 0
