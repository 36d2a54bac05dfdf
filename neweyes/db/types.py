import uuid

from sqlalchemy import JSON, String, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB

JSONType = JSON().with_variant(JSONB(), "postgresql")


class GUID(TypeDecorator):
    """UUID primary/foreign keys: native UUID on PostgreSQL, CHAR(36) elsewhere."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return uuid.UUID(str(value))


class TagList(TypeDecorator):
    """Ordered list of unique, non-empty strings kept in a JSON column."""

    impl = JSONType
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        out: list[str] = []
        for item in value:
            text = str(item or "").strip()
            if text and text not in out:
                out.append(text)
        return out

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return [str(item) for item in value]
