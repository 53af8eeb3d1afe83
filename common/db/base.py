from sqlalchemy import BigInteger, MetaData
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator, Integer

# Deterministic constraint names so migrations and ON CONFLICT targets agree
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))


class BigIntegerType(TypeDecorator):
    """BigInteger on PostgreSQL, Integer on SQLite (keeps AUTOINCREMENT working)."""

    impl = Integer
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(BigInteger())
        else:
            return dialect.type_descriptor(Integer())
