import sqlalchemy.types as types
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, declared_attr, scoped_session, sessionmaker
from sqlalchemy import Column, Integer

from . import util

DEFAULT_URL = 'sqlite:///:memory:'

engine = None
Session = None


class Base(object):
    @declared_attr
    def __tablename__(cls):
        return cls.__name__.lower()

    id = Column(Integer, primary_key=True)


Base = declarative_base(cls=Base)


def init(url: str = DEFAULT_URL):
    global engine, Session
    if Session is not None:
        Session.remove()
    engine = create_engine(url)
    Session = scoped_session(sessionmaker(engine))
    Base.metadata.create_all(engine)


class CurvePoint(types.TypeDecorator):
    impl = types.LargeBinary
    python_type = tuple  # (int, int)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return util.curve_point_to_bytes(value)

    def process_result_value(self, value, dialect):
        if value is not None:
            return util.bytes_to_curve_point(value)


class Signature(types.TypeDecorator):
    impl = types.LargeBinary
    python_type = tuple  # rsv (int, int, int)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return util.signature_to_bytes(value)

    def process_result_value(self, value, dialect):
        if value is not None:
            return util.bytes_to_signature(value)


class EthAddress(types.TypeDecorator):
    impl = types.LargeBinary
    python_type = int
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return util.address_to_bytes(value)

    def process_result_value(self, value, dialect):
        if value is not None:
            return util.bytes_to_address(value)


class G1PointTuple(types.TypeDecorator):
    impl = types.LargeBinary
    python_type = tuple  # of G1 points
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return util.g1_point_tuple_to_bytes(value)

    def process_result_value(self, value, dialect):
        if value is not None:
            return util.bytes_to_g1_point_tuple(value)


class IndexedBytes(types.TypeDecorator):
    impl = types.LargeBinary
    python_type = dict  # of participant index to bytes
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return util.indexed_bytes_to_bytes(value)

    def process_result_value(self, value, dialect):
        if value is not None:
            return util.bytes_to_indexed_bytes(value)


class Flags(types.TypeDecorator):
    impl = types.LargeBinary
    python_type = tuple  # of bools
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return bytes(1 if flag else 0 for flag in value)

    def process_result_value(self, value, dialect):
        if value is not None:
            return tuple(bool(b) for b in value)
