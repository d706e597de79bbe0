"""
--------------
eventlens.rdbs
--------------

Relational database JournalStore implementation.

The journal lives in a single ``messages`` table whose primary key is the full event key, so that a range query on
the partition key ``(stream_id, partition_nr)`` ordered by ``sequence_nr`` follows the index order.
"""
from logging import getLogger

from sqlalchemy import Column, String, Integer, BigInteger, LargeBinary, create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from eventlens.errors import ScanError, JournalWriteException
from eventlens.model import EventKey, RawRecord
from eventlens.storeapi import JournalStore, JournalReader


log = getLogger(__name__)


Base = declarative_base()


class MessageRecord(Base):
    """SQLAlchemy model of one persisted journal row.
    """

    __tablename__ = 'messages'

    stream_id = Column(String, primary_key=True)
    partition_nr = Column(Integer, primary_key=True)
    sequence_nr = Column(BigInteger, primary_key=True)
    ser_id = Column(Integer, nullable=False)
    ser_manifest = Column(String, nullable=False, default='')
    event = Column(LargeBinary, nullable=False)

    def __repr__(self):
        return 'Message<%s/%d #%d>' % (self.stream_id, self.partition_nr, self.sequence_nr)

    def to_record(self):
        return RawRecord(key=EventKey(stream_id=self.stream_id,
                                      partition_index=self.partition_nr,
                                      sequence_nr=self.sequence_nr),
                         serializer_id=self.ser_id,
                         manifest=self.ser_manifest or '',
                         payload=bytes(self.event))


class RDBSJournalReader(JournalReader):
    """Reader session holding one SQLAlchemy session for its whole lifetime.

    :param session: the SQLAlchemy session.
    """

    def __init__(self, session):
        self.session = session

    def read_partition(self, stream_id, partition_index, from_sequence_nr, to_sequence_nr):
        qry = (select(MessageRecord)
               .where(MessageRecord.stream_id == stream_id)
               .where(MessageRecord.partition_nr == partition_index)
               .where(MessageRecord.sequence_nr >= from_sequence_nr)
               .where(MessageRecord.sequence_nr <= to_sequence_nr)
               .order_by(MessageRecord.sequence_nr))
        try:
            return [row.to_record() for row in self.session.scalars(qry)]
        except SQLAlchemyError as e:
            raise ScanError('Failed to read partition %s/%d: %s' % (stream_id, partition_index, e)) from e

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class RDBSJournalStore(JournalStore):
    """JournalStore that reads the journal from a relational database.

    The implementation relies on SQLAlchemy ORM framework.

    :param session_factory: the SQLAlchemy sessionmaker function.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def stream_ids(self):
        sess = self.session_factory()
        try:
            qry = select(MessageRecord.stream_id).distinct().order_by(MessageRecord.stream_id)
            return list(sess.scalars(qry))
        except SQLAlchemyError as e:
            raise ScanError('Failed to list stream ids: %s' % e) from e
        finally:
            sess.close()

    def highest_sequence_nr(self, stream_id):
        sess = self.session_factory()
        try:
            qry = select(func.max(MessageRecord.sequence_nr)).where(MessageRecord.stream_id == stream_id)
            return sess.scalar(qry) or 0
        except SQLAlchemyError as e:
            raise ScanError('Failed to probe highest sequence number of %s: %s' % (stream_id, e)) from e
        finally:
            sess.close()

    def session(self):
        return RDBSJournalReader(self.session_factory())

    def append(self, record):
        """Inserts the record.

        Note that this method only does *INSERT*; the journal is append-only. Adding the same key twice results in
        a :class:`eventlens.errors.JournalWriteException`.
        """
        message = MessageRecord(stream_id=record.key.stream_id,
                                partition_nr=record.key.partition_index,
                                sequence_nr=record.key.sequence_nr,
                                ser_id=record.serializer_id,
                                ser_manifest=record.manifest or '',
                                event=bytes(record.payload))
        sess = self.session_factory()
        try:
            sess.add(message)
            sess.commit()
        except SQLAlchemyError as e:
            sess.rollback()
            raise JournalWriteException(str(e)) from e
        finally:
            sess.close()

    def close(self):
        """Closes the store.

        Does nothing in this implementation.
        """
        pass


def create_store(db_url, verbose=False):
    """Creates new RDBSJournalStore.

    :param db_url: ``str``, the database URL in SQLAlchemy form.
    :param verbose: ``bool``, ``True`` to echo the SQL statements issued by the store.

    Returns :class:`RDBSJournalStore`.
    """
    url = make_url(db_url)
    options = {}
    if url.get_backend_name() == 'sqlite' and url.database in (None, '', ':memory:'):
        # one shared connection, otherwise every worker thread sees its own empty database
        options = {'poolclass': StaticPool, 'connect_args': {'check_same_thread': False}}
    engine = create_engine(url, echo=verbose, **options)
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine)

    log.info('Using journal database %s', engine.url.render_as_string(hide_password=True))
    return RDBSJournalStore(session_factory)
