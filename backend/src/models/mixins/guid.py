"""
Prefixed GUIDs for rows exposed through the API.

Rows keep an integer primary key internally; clients only ever see
``{prefix}_{base32}``, where base32 is the 26-character lowercase Crockford
encoding of a time-ordered UUIDv7.

    ntf_01hgw2bbg0000000000000000   Notification
    ndq_01hgw2bbg0000000000000001   DeliveryQueueEntry
"""

import uuid as uuid_module
from typing import ClassVar, Optional

import base32_crockford
from sqlalchemy import Column, LargeBinary, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from uuid_extensions import uuid7


ENCODED_LENGTH = 26


def encode_guid(prefix: str, value: uuid_module.UUID) -> str:
    encoded = base32_crockford.encode(value.int).zfill(ENCODED_LENGTH)
    return f"{prefix}_{encoded.lower()}"


def decode_guid(prefix: str, guid: str) -> uuid_module.UUID:
    """
    Decode a prefixed GUID back to its UUID.

    Raises:
        ValueError: empty input, wrong prefix, wrong length or bad characters
    """
    if not guid:
        raise ValueError("GUID cannot be empty")

    head, sep, encoded = guid.partition("_")
    if not sep or head.lower() != prefix:
        raise ValueError(f"Expected a '{prefix}_' GUID, got '{guid}'")
    if len(encoded) != ENCODED_LENGTH:
        raise ValueError(
            f"Invalid GUID length: expected {ENCODED_LENGTH} characters after prefix, "
            f"got {len(encoded)}"
        )

    try:
        return uuid_module.UUID(int=base32_crockford.decode(encoded.upper()))
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid GUID encoding: {e}") from e


class UUIDType(TypeDecorator):
    """Native UUID on PostgreSQL, 16 raw bytes elsewhere (SQLite)."""

    impl = LargeBinary
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(LargeBinary(16))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, uuid_module.UUID):
            value = uuid_module.UUID(bytes=value) if isinstance(value, bytes) else uuid_module.UUID(str(value))
        return value if dialect.name == "postgresql" else value.bytes

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid_module.UUID):
            return value
        if isinstance(value, bytes):
            return uuid_module.UUID(bytes=value)
        return uuid_module.UUID(str(value))


class GuidMixin:
    """
    Adds a UUIDv7 ``uuid`` column, the ``guid`` property and ``parse_guid``.

    Subclasses set GUID_PREFIX (``ntf``, ``ndq``).
    """

    GUID_PREFIX: ClassVar[str]

    uuid = Column(
        UUIDType(),
        nullable=False,
        unique=True,
        index=True,
        default=uuid7,
    )

    @property
    def guid(self) -> Optional[str]:
        """Prefixed GUID, or None until the row has been flushed."""
        if self.uuid is None:
            return None
        value = self.uuid
        if isinstance(value, bytes):
            value = uuid_module.UUID(bytes=value)
        return encode_guid(self.GUID_PREFIX, value)

    @classmethod
    def parse_guid(cls, guid: str) -> uuid_module.UUID:
        return decode_guid(cls.GUID_PREFIX, guid)
