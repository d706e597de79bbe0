"""
-----------------
eventlens.planner
-----------------

Partition planning.

A stream's log is split into physical partitions of a fixed capacity. Partition ``i`` holds the sequence numbers
``i * capacity + 1`` up to ``(i + 1) * capacity``. The planner probes the highest committed sequence number of each
stream and emits one :class:`eventlens.model.PartitionRange` per partition that holds at least one event.

The capacity must be the one the journal was written with. A mismatch cannot be detected from the data; the scan
would silently miss the records that ended up in other partitions.
"""
from logging import getLogger

from eventlens.errors import JournalException, PlanningError
from eventlens.model import PartitionRange


log = getLogger(__name__)


DEFAULT_PARTITION_CAPACITY = 5000000


def partition_for(sequence_nr, capacity=DEFAULT_PARTITION_CAPACITY):
    """Returns the physical partition index holding ``sequence_nr``.
    """
    return (sequence_nr - 1) // capacity


class PartitionPlanner:
    """Computes the partitions that must be scanned to cover the full event range of streams.

    :param store: :class:`eventlens.storeapi.JournalStore`, provides the stream catalog and the max-sequence probe.
    :param capacity: ``int``, the number of sequence numbers held by one physical partition.
    """

    def __init__(self, store, capacity=DEFAULT_PARTITION_CAPACITY):
        if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity < 1:
            raise PlanningError('Invalid partition capacity: %r' % (capacity,))
        self.store = store
        self.capacity = capacity

    def plan(self, stream_ids=None):
        """Plans the partition ranges of the given streams.

        :param stream_ids: iterable of ``str``, the streams to plan, without duplicates. If ``None``, all stream ids
            known to the store catalog are planned.

        Returns a ``list`` of :class:`eventlens.model.PartitionRange`, ordered by stream (in the given order) and
        partition index. Raises :class:`eventlens.errors.PlanningError` if the catalog or the probe fails or returns
        inconsistent data.
        """
        if stream_ids is None:
            stream_ids = self._catalog()
        else:
            stream_ids = self._validate(list(stream_ids))
        ranges = []
        for stream_id in stream_ids:
            ranges.extend(self.plan_stream(stream_id))
        log.info('Planned %d partition ranges over %d streams (capacity %d)',
                 len(ranges), len(stream_ids), self.capacity)
        return ranges

    def plan_stream(self, stream_id):
        highest = self._probe(stream_id)
        ranges = []
        for partition_index in range(partition_for(highest, self.capacity) + 1 if highest else 0):
            from_seq = partition_index * self.capacity + 1
            ranges.append(PartitionRange(stream_id=stream_id,
                                         partition_index=partition_index,
                                         from_sequence_nr=from_seq,
                                         to_sequence_nr=min(from_seq + self.capacity - 1, highest),
                                         capacity=self.capacity))
        log.debug('Stream %s: highest sequence number %d, %d partitions', stream_id, highest, len(ranges))
        return ranges

    def _catalog(self):
        try:
            stream_ids = list(self.store.stream_ids())
        except (JournalException, OSError) as e:
            raise PlanningError('Stream catalog unreachable: %s' % e) from e
        return self._validate(stream_ids)

    def _validate(self, stream_ids):
        for stream_id in stream_ids:
            if not isinstance(stream_id, str) or not stream_id:
                raise PlanningError('Invalid stream id: %r' % (stream_id,))
        if len(set(stream_ids)) != len(stream_ids):
            raise PlanningError('Duplicate stream ids: %s' % ', '.join(stream_ids))
        return stream_ids

    def _probe(self, stream_id):
        try:
            highest = self.store.highest_sequence_nr(stream_id)
        except (JournalException, OSError) as e:
            raise PlanningError('Max-sequence probe failed for stream %s: %s' % (stream_id, e)) from e
        if highest is None:
            return 0
        if not isinstance(highest, int) or isinstance(highest, bool) or highest < 0:
            raise PlanningError('Inconsistent highest sequence number for stream %s: %r' % (stream_id, highest))
        return highest
