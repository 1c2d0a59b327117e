"""
Data Access Layer (DAL) for record storage.

Handlers depend on the ``RecordRepository`` protocol; the DynamoDB implementation
lives in ``dynamodb_handler``.
"""

from typing import Protocol, runtime_checkable

from lambda_resilience.models.record import Record


@runtime_checkable
class RecordRepository(Protocol):
    """Protocol defining the record storage interface."""

    def put_record(self, record: Record) -> Record:
        """Store a new record, failing if the record id is taken."""
        ...

    def get_record(self, record_id: str) -> Record:
        """Retrieve a record by its id."""
        ...
