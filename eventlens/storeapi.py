"""
-------------------
eventlens.storeapi
-------------------

Journal Store API
^^^^^^^^^^^^^^^^^

Defines the read-side interface of a backing journal store.

The persisted layout is owned by the backing store: records are grouped by the partition key
``(stream_id, partition_index)`` and ordered by ``sequence_nr`` within a partition. Each row value is the tuple
``(serializer_id, manifest, payload)``.
"""
from abc import abstractmethod


class JournalStore:
    """JournalStore is the basic interface for reading the persisted event journal.

    A store exposes the stream catalog, a max-sequence probe and scoped reader sessions used by the scan tasks.
    An instance of this class is thread-safe; sessions are not and must stay within one task.
    """

    @abstractmethod
    def stream_ids(self):
        """Lists all stream ids known to the store (the catalog).

        Returns an iterable of ``str``.
        """
        pass

    @abstractmethod
    def highest_sequence_nr(self, stream_id):
        """Probes the highest committed sequence number of a stream.

        :param stream_id: ``str``, the stream id.

        Returns ``int``, the highest sequence number, or ``0`` if the stream has no events.
        """
        pass

    @abstractmethod
    def session(self):
        """Opens a reader session.

        The session is a context manager that yields a :class:`JournalReader` and releases every connection or
        file handle it holds when the ``with`` block exits, on normal exit as well as on error or cancellation:

        .. code-block:: python

            with store.session() as reader:
                records = reader.read_partition('order-1', 0, 1, 5000000)

        """
        pass

    @abstractmethod
    def append(self, record):
        """Appends a record to the journal.

        The write side is not part of the analytic core. This operation exists so that journals can be loaded and
        simulated; it does not enforce any ordering guarantee.

        :param record: :class:`eventlens.model.RawRecord`, the record to append.
        """
        pass

    @abstractmethod
    def close(self):
        """Close and cleanup the underlying store.
        """
        pass


class JournalReader:
    """Reads records from a single physical partition at a time.
    """

    @abstractmethod
    def read_partition(self, stream_id, partition_index, from_sequence_nr, to_sequence_nr):
        """Issues one range query for the partition key ``(stream_id, partition_index)``.

        :param stream_id: ``str``, the stream id.
        :param partition_index: ``int``, the physical partition index.
        :param from_sequence_nr: ``int``, lower bound (inclusive).
        :param to_sequence_nr: ``int``, upper bound (inclusive).

        Returns a ``list`` of :class:`eventlens.model.RawRecord` in the physical storage order of the partition,
        which is increasing ``sequence_nr``. Raises :class:`eventlens.errors.ScanError` on read failures.
        """
        pass
