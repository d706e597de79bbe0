"""
-----------------
eventlens.scanner
-----------------

Partition scan task bodies.

Each :class:`eventlens.model.PartitionRange` is read with exactly one range query scoped to its partition key. The
records come back in the physical order of the partition, which is increasing sequence number; the scanner does not
re-sort them. It does verify that the partition returned exactly the planned sequence numbers: records out of order, from
another partition key, or a gap mean missing rows or a store (or partition capacity) that does not match the plan.
"""
from logging import getLogger

from eventlens.errors import ScanError


log = getLogger(__name__)


class PartitionScanner:
    """Scans partition ranges of a journal store.

    The scanner holds no per-scan state; :meth:`scan` can run concurrently on any number of worker threads.

    :param store: :class:`eventlens.storeapi.JournalStore`, the backing store.
    """

    def __init__(self, store):
        self.store = store

    def scan(self, partition_range):
        """Reads all records of one partition range.

        The store session is acquired for the duration of the scan and released on every exit path.

        :param partition_range: :class:`eventlens.model.PartitionRange`, the range to scan.

        Returns ``list`` of :class:`eventlens.model.RawRecord` in increasing sequence number order. Raises
        :class:`eventlens.errors.ScanError` on read failures.
        """
        with self.store.session() as reader:
            records = reader.read_partition(partition_range.stream_id,
                                            partition_range.partition_index,
                                            partition_range.from_sequence_nr,
                                            partition_range.to_sequence_nr)
        check_order(partition_range, records)
        log.debug('Scanned %d records from %s/%d', len(records), partition_range.stream_id,
                  partition_range.partition_index)
        return records


def check_order(partition_range, records):
    """Checks that the records are exactly the sequence numbers of the range, in increasing order.

    Every sequence number up to the planned bound is committed, so a missing one means rows are missing from the
    partition.
    """
    expected = partition_range.from_sequence_nr
    for record in records:
        key = record.key
        if key.stream_id != partition_range.stream_id or key.partition_index != partition_range.partition_index:
            raise ScanError('Record %s does not belong to partition %s/%d' % (str(key), partition_range.stream_id,
                                                                             partition_range.partition_index))
        if key.sequence_nr != expected:
            raise ScanError('Record %s out of order in partition %s/%d, expected sequence number %d' %
                            (str(key), partition_range.stream_id, partition_range.partition_index, expected))
        expected += 1
    if expected != partition_range.to_sequence_nr + 1:
        raise ScanError('Partition %s/%d ends at sequence number %d, expected %d' %
                        (partition_range.stream_id, partition_range.partition_index, expected - 1,
                         partition_range.to_sequence_nr))
