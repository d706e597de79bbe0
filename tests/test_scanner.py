from unittest import mock
from eventlens.scanner import PartitionScanner, check_order
from eventlens.naivestore import NaiveJournalStore
from eventlens.model import EventKey, RawRecord, PartitionRange
from eventlens.planner import PartitionPlanner, partition_for
from eventlens.errors import ScanError
import tempfile

import pytest


def _record(stream_id, seq, capacity=3, partition_index=None):
    if partition_index is None:
        partition_index = partition_for(seq, capacity)
    return RawRecord(key=EventKey(stream_id, partition_index, seq), serializer_id=1, manifest='', payload=b'x')


def test_scan_partitions():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NaiveJournalStore(root_dir=tmpdir)
        for seq in range(1, 8):
            store.append(_record('order-1', seq))

        scanner = PartitionScanner(store)
        ranges = PartitionPlanner(store, capacity=3).plan()

        scanned = [[r.key.sequence_nr for r in scanner.scan(partition_range)] for partition_range in ranges]

        assert scanned == [[1, 2, 3], [4, 5, 6], [7]]


def test_scan_releases_session_on_error():
    reader = mock.MagicMock()
    reader.read_partition.side_effect = ScanError('connection reset')
    store = mock.MagicMock()
    store.session.return_value.__enter__.return_value = reader

    with pytest.raises(ScanError):
        PartitionScanner(store).scan(PartitionRange('a', 0, 1, 3, 3))

    store.session.return_value.__exit__.assert_called_once()


def test_scan_issues_one_range_query():
    reader = mock.MagicMock()
    reader.read_partition.return_value = [_record('a', 4), _record('a', 5), _record('a', 6)]
    store = mock.MagicMock()
    store.session.return_value.__enter__.return_value = reader

    records = PartitionScanner(store).scan(PartitionRange('a', 1, 4, 6, 3))

    assert len(records) == 3
    reader.read_partition.assert_called_once_with('a', 1, 4, 6)


def test_check_order():
    partition_range = PartitionRange('a', 1, 4, 6, 3)

    check_order(partition_range, [_record('a', 4), _record('a', 5), _record('a', 6)])

    with pytest.raises(ScanError):
        check_order(partition_range, [_record('a', 5), _record('a', 4)])
    with pytest.raises(ScanError):
        check_order(partition_range, [_record('a', 5), _record('a', 5)])
    with pytest.raises(ScanError):
        check_order(partition_range, [_record('b', 4)])
    with pytest.raises(ScanError):
        check_order(partition_range, [_record('a', 7, partition_index=1)])
    with pytest.raises(ScanError):
        check_order(partition_range, [_record('a', 4, partition_index=0)])


def test_check_order_rejects_missing_records():
    partition_range = PartitionRange('a', 1, 4, 6, 3)

    for sequence_nrs in [[4, 6], [5, 6], [4, 5], [4], []]:
        with pytest.raises(ScanError):
            check_order(partition_range, [_record('a', seq) for seq in sequence_nrs])


def test_scan_fails_on_gap():
    reader = mock.MagicMock()
    reader.read_partition.return_value = [_record('a', 4), _record('a', 6)]
    store = mock.MagicMock()
    store.session.return_value.__enter__.return_value = reader

    with pytest.raises(ScanError):
        PartitionScanner(store).scan(PartitionRange('a', 1, 4, 6, 3))
