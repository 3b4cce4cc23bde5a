"""Error types raised by the Kibela GraphQL client."""

from typing import Any, Dict, List, Optional, Sequence

NOT_FOUND = "NOT_FOUND"
TOKEN_BUDGET_EXHAUSTED = "TOKEN_BUDGET_EXHAUSTED"
TEAM_BUDGET_EXHAUSTED = "TEAM_BUDGET_EXHAUSTED"
BUDGET_EXHAUSTED_CODES = frozenset({TOKEN_BUDGET_EXHAUSTED, TEAM_BUDGET_EXHAUSTED})


class KibelaClientError(Exception):
    """Base exception for every failure raised by KibelaClient."""
    pass


class ConfigurationError(KibelaClientError):
    """Caller or configuration bug. Never retried."""
    pass


class UnrecognizedFormatError(ConfigurationError):
    """Serialization was requested for an unsupported MIME type."""

    def __init__(self, mime_type: str):
        self.mime_type = mime_type
        super().__init__(f"Unrecognized MIME type: {mime_type}")


class GraphqlError(KibelaClientError):
    """The API executed the request and answered with GraphQL errors."""

    def __init__(
        self,
        message: str,
        query: str,
        variables: Optional[Dict[str, Any]],
        errors: Sequence[Dict[str, Any]]
    ):
        """
        Initialize GraphQL error.

        Args:
            message: Human-readable summary
            query: Printed GraphQL document that was sent
            variables: Variables that were sent with the query
            errors: Error records exactly as the API returned them
        """
        self.query = query
        self.variables = variables
        self.errors: List[Dict[str, Any]] = list(errors)
        super().__init__(message)

    @property
    def codes(self) -> List[Optional[str]]:
        """Error codes in the order the API reported them."""
        return [error_code(error) for error in self.errors]

    def __str__(self) -> str:
        messages = "; ".join(
            str(error.get('message', error_code(error))) if isinstance(error, dict) else str(error)
            for error in self.errors
        )
        return f"{self.args[0]}: {messages}" if messages else self.args[0]


class NotFoundError(GraphqlError):
    """GraphQL error whose leading record carries the NOT_FOUND code."""
    pass


class NetworkError(KibelaClientError):
    """No usable response was obtained after all attempts."""

    def __init__(self, message: str, errors: Sequence[BaseException]):
        self.errors: List[BaseException] = list(errors)
        super().__init__(message)


def error_code(error: Dict[str, Any]) -> Optional[str]:
    """Return ``extensions.code`` of an error record, if any."""
    extensions = error.get('extensions') if isinstance(error, dict) else None
    if isinstance(extensions, dict):
        return extensions.get('code')
    return None


def error_records(body: Any) -> Optional[List[Dict[str, Any]]]:
    """
    Return the ``errors`` of a decoded body as a list of dict records.

    A lone object is wrapped in a list and a record that is not a dict
    becomes ``{'message': str(record)}``. Returns None when the body
    carries no errors.
    """
    errors = body.get('errors') if isinstance(body, dict) else None
    if not errors:
        return None
    if not isinstance(errors, (list, tuple)):
        errors = [errors]
    return [error if isinstance(error, dict) else {'message': str(error)} for error in errors]


def budget_wait_ms(errors: Sequence[Dict[str, Any]]) -> Optional[int]:
    """
    Return the suggested wait if ``errors`` is a sole budget-exhausted error.

    Args:
        errors: Error records from a decoded response

    Returns:
        ``extensions.waitMilliseconds`` (0 when missing or not a number) or None when
        the errors are anything other than a single budget-exhausted record
    """
    if not isinstance(errors, (list, tuple)) or len(errors) != 1:
        return None

    if error_code(errors[0]) not in BUDGET_EXHAUSTED_CODES:
        return None

    wait = errors[0]['extensions'].get('waitMilliseconds')
    if not isinstance(wait, (int, float)) or isinstance(wait, bool):
        return 0
    return int(wait)


def graphql_error_from(
    message: str,
    query: str,
    variables: Optional[Dict[str, Any]],
    errors: Sequence[Dict[str, Any]]
) -> GraphqlError:
    """Build the matching GraphqlError subclass for an error list."""
    if errors and error_code(errors[0]) == NOT_FOUND:
        return NotFoundError(message, query, variables, errors)
    return GraphqlError(message, query, variables, errors)


def is_not_found_error(error: BaseException) -> bool:
    """Check whether an exception reports a missing remote resource."""
    return isinstance(error, NotFoundError)


__all__ = [
    'KibelaClientError',
    'ConfigurationError',
    'UnrecognizedFormatError',
    'GraphqlError',
    'NotFoundError',
    'NetworkError',
    'NOT_FOUND',
    'TOKEN_BUDGET_EXHAUSTED',
    'TEAM_BUDGET_EXHAUSTED',
    'BUDGET_EXHAUSTED_CODES',
    'error_code',
    'error_records',
    'budget_wait_ms',
    'graphql_error_from',
    'is_not_found_error',
]
