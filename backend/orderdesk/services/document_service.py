# Overview: Human-readable document numbers (ORD-000042); one atomic counter per document type.

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


ORDER_DOCUMENT = "ORD"
PAYMENT_DOCUMENT = "PAY"
REWARD_DOCUMENT = "RWD"


class DocumentSequenceError(Exception):
    """A number could not be allocated for a document type."""
    pass


def format_document_number(document_type: str, number: int, *, pad: int = 6) -> str:
    return f"{document_type}-{number:0{pad}d}"


def _bump(document_type: str) -> int | None:
    """Advance the counter; returns the number taken, or None if no counter row exists yet."""
    result = db.session.execute(
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    taken = db.session.execute(
        select(DocumentSequence.next_number).where(DocumentSequence.document_type == document_type)
    ).scalar_one()
    return taken - 1


def next_document_number(*, document_type: str, pad: int = 6) -> str:
    """
    Take the next number of a document type inside the caller's transaction.

    The number is only consumed if that transaction commits, so numbers
    of committed documents have no gaps from failed checkouts. The first
    allocation of a type creates its counter in a savepoint; a concurrent
    creator hitting the unique constraint falls back to bumping the row the
    winner made.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    number = _bump(document_type)
    if number is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            number = 1
        except IntegrityError:
            number = _bump(document_type)
            if number is None:
                raise DocumentSequenceError(f"Could not allocate a {document_type} number")

    return format_document_number(document_type, number, pad=pad)
