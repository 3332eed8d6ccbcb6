from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from report_validation.db import db_session


def check_db() -> tuple[bool, str | None]:
    try:
        with db_session() as session:
            session.execute(text("SELECT 1"))
        return True, None
    except SQLAlchemyError as exc:
        return False, str(exc)
