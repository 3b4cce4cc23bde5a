"""GraphQL operations used by the migration tools.

Each operation is parsed once at import time with ``gql``; the client only
needs its document and operation name.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from gql import gql
from graphql import DocumentNode, OperationDefinitionNode, parse, print_ast


def as_document(query: Any) -> DocumentNode:
    """
    Normalize a query to a graphql-core DocumentNode.

    Args:
        query: Operation, DocumentNode, object exposing ``.document``
            (gql's GraphQLRequest) or GraphQL source text

    Returns:
        Parsed document
    """
    if isinstance(query, Operation):
        return query.document
    if isinstance(query, DocumentNode):
        return query
    if isinstance(query, str):
        return parse(query)

    document = getattr(query, 'document', None)
    if isinstance(document, DocumentNode):
        return document

    raise TypeError(f"Unsupported GraphQL query type: {type(query).__name__}")


def get_operation_name(query: Any) -> Optional[str]:
    """Return the name of the first named operation definition, or None."""
    for definition in as_document(query).definitions:
        if isinstance(definition, OperationDefinitionNode) and definition.name is not None:
            return definition.name.value
    return None


@dataclass(frozen=True)
class Operation:
    """A named GraphQL request template."""

    name: Optional[str]
    document: DocumentNode

    @classmethod
    def define(cls, source: str) -> 'Operation':
        document = as_document(gql(source))
        return cls(name=get_operation_name(document), document=document)

    @property
    def query(self) -> str:
        """Printed document text, as sent on the wire."""
        return print_ast(self.document)


QueryLike = Union[Operation, DocumentNode, str]


HELLO_KIBELA_CLIENT = Operation.define("""
    query HelloKibelaClient {
        currentUser {
            account
        }
    }
""")

GET_AUTHOR = Operation.define("""
    query GetAuthor($account: String!) {
        user: userFromAccount(account: $account) {
            id
            account
        }
    }
""")

UPLOAD_ATTACHMENT = Operation.define("""
    mutation UploadAttachment($input: UploadAttachmentInput!) {
        uploadAttachment(input: $input) {
            attachment {
                id
                path
            }
        }
    }
""")

CREATE_NOTE = Operation.define("""
    mutation CreateNote($input: CreateNoteInput!) {
        createNote(input: $input) {
            note {
                id
                path
            }
        }
    }
""")

CREATE_COMMENT = Operation.define("""
    mutation CreateComment($input: CreateCommentInput!) {
        createComment(input: $input) {
            comment {
                id
                path
            }
        }
    }
""")

DELETE_NOTE = Operation.define("""
    mutation DeleteNote($input: DeleteNoteInput!) {
        deleteNote(input: $input) {
            clientMutationId
        }
    }
""")

DELETE_COMMENT = Operation.define("""
    mutation DeleteComment($input: DeleteCommentInput!) {
        deleteComment(input: $input) {
            clientMutationId
        }
    }
""")

DELETE_ATTACHMENT = Operation.define("""
    mutation DeleteAttachment($input: DeleteAttachmentInput!) {
        deleteAttachment(input: $input) {
            clientMutationId
        }
    }
""")


__all__ = [
    'Operation',
    'QueryLike',
    'as_document',
    'get_operation_name',
    'HELLO_KIBELA_CLIENT',
    'GET_AUTHOR',
    'UPLOAD_ATTACHMENT',
    'CREATE_NOTE',
    'CREATE_COMMENT',
    'DELETE_NOTE',
    'DELETE_COMMENT',
    'DELETE_ATTACHMENT',
]
