import logging

from sqlalchemy import types
from sqlalchemy.exc import IntegrityError
from sqlalchemy.schema import Column, UniqueConstraint

from . import db


class LocalValue(db.Base):
    __tablename__ = 'local_value'

    owner = Column(db.EthAddress, index=True, nullable=False)
    key = Column(types.String(64), nullable=False)
    value = Column(types.LargeBinary, nullable=False)

    __table_args__ = (UniqueConstraint('owner', 'key'),)


class LocalStore:
    """Durable per-participant key-value store.

    Values are only ever written through :meth:`compare_and_set`, so a value
    that was set once stays authoritative: a second writer that expected the
    key to be absent loses and is told so.
    """

    def __init__(self, owner: int):
        self.owner = owner

    def _get_record(self, key: str) -> LocalValue:
        return (
            db.Session
            .query(LocalValue)
            .filter(LocalValue.owner == self.owner,
                    LocalValue.key == key)
            .scalar()
        )

    def get(self, key: str) -> bytes:
        record = self._get_record(key)
        if record is not None:
            return record.value

    def compare_and_set(self, key: str, expected: bytes, new: bytes) -> bool:
        record = self._get_record(key)
        current = None if record is None else record.value

        if current != expected:
            logging.debug('local value {} for {:040x} already set; not overwriting'.format(key, self.owner))
            return False

        if record is None:
            db.Session.add(LocalValue(owner=self.owner, key=key, value=new))
        else:
            record.value = new

        try:
            db.Session.commit()
        except IntegrityError:
            db.Session.rollback()
            logging.debug('lost race setting local value {} for {:040x}'.format(key, self.owner))
            return False

        return True
