from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from shared.core import get_logger


class BaseService:
    """Holds the session every service operation runs in.

    Each public write goes through ``unit_of_work`` so it either commits as a
    whole or leaves the database untouched.
    """

    def __init__(self, db: Session):
        self.db = db
        self.logger = get_logger(type(self).__module__)

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        try:
            yield self.db
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
