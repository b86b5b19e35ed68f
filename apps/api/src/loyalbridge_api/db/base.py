from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models with automatic table naming."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()


# Import models so Alembic and create_all see every table
try:  # pragma: no cover - import side effects only
    import loyalbridge_api.models  # noqa: F401
except ImportError:  # pragma: no cover - partial imports during migrations
    pass
