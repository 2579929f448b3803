from sqlalchemy import select, update

from otpcore.models.schema.db_config import Databases


def _conditions(model, filters: dict) -> list:
    conditions = []
    for field, value in filters.items():
        if not hasattr(model, field):
            raise ValueError(
                f"{model.__name__} has no column '{field}'"
            )

        column = getattr(model, field)

        if value is None:
            conditions.append(column.is_(None))
        else:
            conditions.append(column == value)
    return conditions


def _add_record(session, db: str, **kwargs):
    model = getattr(Databases, db)

    instance = model(**kwargs)
    session.add(instance)
    session.flush()
    return instance


def _select_one_or_none(session, db: str, *, for_update: bool = False, **filters):
    model = getattr(Databases, db)

    stmt = select(model).where(*_conditions(model, filters))
    if for_update:
        stmt = stmt.with_for_update()

    return session.execute(stmt).scalars().unique().one_or_none()


def _select_latest(session, db: str, **filters):
    """Newest row matching ``filters``, by insertion order."""
    model = getattr(Databases, db)

    stmt = (
        select(model)
        .where(*_conditions(model, filters))
        .order_by(model.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalars().first()


def _update_records(session, db: str, *, values: dict, **filters) -> int:
    """Bulk UPDATE of the rows matching ``filters``; returns the row count."""
    model = getattr(Databases, db)
    stmt = update(model).where(*_conditions(model, filters)).values(**values)
    return session.execute(stmt).rowcount
