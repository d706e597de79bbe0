"""
-----------------
eventlens.dataset
-----------------

Batch access to the whole historical journal.

:func:`events_dataset` plans the partitions of the requested streams and returns a lazy :class:`EventDataset`.
Computing the dataset runs one scan-and-materialize task per partition range on the execution context:

.. code-block:: python

    from eventlens.execution import ExecutionContext
    from eventlens.dataset import events_dataset
    from eventlens.naivestore import NaiveJournalStore

    with ExecutionContext(parallelism=8) as context:
        dataset = events_dataset(context, NaiveJournalStore('./data')).persist()
        print(dataset.count(), 'events')
        for key, event in dataset.sorted():
            print(key, event.data)

The dataset is the exact union of the partitions. There is no order across partitions; use
:meth:`EventDataset.sorted` for a total order.
"""
from logging import getLogger
from threading import RLock

from eventlens.materializer import materialize_batch
from eventlens.model import DecodeFailure
from eventlens.planner import PartitionPlanner, DEFAULT_PARTITION_CAPACITY
from eventlens.scanner import PartitionScanner
from eventlens.serialization import ResolverFactory


log = getLogger(__name__)


class EventDataset:
    """Lazy, unordered collection of ``(EventKey, Event)`` pairs.

    Pairs whose payload could not be decoded carry a :class:`eventlens.model.DecodeFailure` instead of the event.

    :param context: :class:`eventlens.execution.ExecutionContext`, runs the partition tasks.
    :param ranges: ``list`` of :class:`eventlens.model.PartitionRange`, the planned ranges.
    :param task: ``function``, the task body computing the materialized pairs of one range.
    """

    def __init__(self, context, ranges, task):
        self.context = context
        self.ranges = ranges
        self.task = task
        self._persist = False
        self._cached = None
        self._lock = RLock()

    def persist(self):
        """Marks the dataset to be materialized once and reused by every later action.

        Returns the dataset itself.
        """
        self._persist = True
        return self

    def unpersist(self):
        with self._lock:
            self._persist = False
            self._cached = None
        return self

    @property
    def is_persisted(self):
        return self._persist

    def partitions(self):
        """Computes the dataset.

        Returns a ``list`` with one ``list`` of pairs per partition range, in the order of :attr:`ranges`.
        """
        with self._lock:
            if self._cached is not None:
                return self._cached
            partitions = self.context.run_all(self.task, self.ranges)
            if self._persist:
                self._cached = partitions
        return partitions

    def collect(self):
        """Returns all pairs as a ``list``.
        """
        return [pair for partition in self.partitions() for pair in partition]

    def __iter__(self):
        for partition in self.partitions():
            yield from partition

    def count(self):
        return sum(len(partition) for partition in self.partitions())

    def events(self):
        """Returns the successfully decoded ``(EventKey, Event)`` pairs.
        """
        return [(key, value) for key, value in self if not isinstance(value, DecodeFailure)]

    def failures(self):
        """Returns the :class:`eventlens.model.DecodeFailure` sentinels.
        """
        return [value for _, value in self if isinstance(value, DecodeFailure)]

    def sorted(self):
        """Returns all pairs in total order by ``(stream_id, partition_index, sequence_nr)``.
        """
        return sorted(self.collect(), key=lambda pair: pair[0])


def events_dataset(context, store, stream_ids=None, settings=None, custom_bindings=None, capacity=None):
    """Batch entry point: the dataset of all events of the journal.

    The resolver configuration is validated and the partitions are planned before this function returns, so
    :class:`eventlens.errors.ConfigurationError` and :class:`eventlens.errors.PlanningError` fail fast without
    scanning anything.

    :param context: :class:`eventlens.execution.ExecutionContext`, the active execution context.
    :param store: :class:`eventlens.storeapi.JournalStore`, the journal to read.
    :param stream_ids: ``list`` of ``str``, streams to read. ``None`` reads all streams in the store catalog.
    :param settings: :class:`eventlens.serialization.SerializerSettings`, the serialization configuration.
    :param custom_bindings: ``dict``, manifest pattern to codec or decode function.
    :param capacity: ``int``, the partition capacity the journal was written with.

    Returns :class:`EventDataset`.
    """
    resolvers = ResolverFactory(settings, custom_bindings)
    resolvers.create()

    planner = PartitionPlanner(store, capacity or DEFAULT_PARTITION_CAPACITY)
    ranges = planner.plan(stream_ids)
    scanner = PartitionScanner(store)

    def scan_partition(partition_range):
        """Scans one partition range and materializes its records.
        """
        records = scanner.scan(partition_range)
        return list(materialize_batch(records, resolvers.get()))

    return EventDataset(context, ranges, scan_partition)
