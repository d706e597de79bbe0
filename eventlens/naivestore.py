"""
--------------------
eventlens.naivestore
--------------------

Naive implementation of the Journal Store.

This module provides an implementation of :class:`eventlens.storeapi.JournalStore` that keeps the journal in plain
files. Every stream has its own directory (the URL-quoted stream id) and every physical partition of the stream is one
file in that directory, named by the partition index:

.. code-block:: text

    data/
        order-1/
            0
            1
        order%2F2/
            0

Each partition file holds framed records (see :mod:`eventlens.model`) written sequentially and separated by a new
line, so the physical order of a file is the order of the sequence numbers.

The store writes to the files atomically: the buffered partition file is written to a temporary file which is then
renamed over the actual partition file.

.. code-block:: python

    from eventlens.naivestore import NaiveJournalStore
    from eventlens.model import EventKey, RawRecord

    store = NaiveJournalStore(root_dir='./data')
    store.append(RawRecord(EventKey('order-1', 0, 1), 3, 'orders.Created', b'{"total": 10}'))

    with store.session() as reader:
        for record in reader.read_partition('order-1', 0, 1, 100):
            print(record.key, record.payload)

"""

from tempfile import NamedTemporaryFile
from io import BytesIO, SEEK_CUR
from threading import RLock, Thread, Event as ThreadingEvent
from os import listdir, makedirs, replace
from os.path import join as join_paths, isdir, isfile
from urllib.parse import quote, unquote
import re
from logging import getLogger

from eventlens.errors import ScanError, JournalWriteException
from eventlens.model import RecordSerializer, RecordParser, EOFException
from eventlens.storeapi import JournalStore, JournalReader


log = getLogger(__name__)


class PeriodicTimer(Thread):
    """Timer that executes an action periodically with a given interval.

    The first execution of the action is delayed by ``interval`` seconds. The timer waits ``interval`` seconds after
    the action completes until the next call.

    :param interval: ``numeric``, seconds to wait between subsequent calls to ``action`` callback.
    :param action: ``function``, the action callback. This callback takes no arguments.
    """
    def __init__(self, interval, action):
        super(PeriodicTimer, self).__init__(name='periodic-timer@%f:[%s]' % (interval, str(action)), daemon=True)
        self.interval = interval
        self.action = action
        self.stopped = ThreadingEvent()

    def run(self):
        while not self.stopped.wait(self.interval):
            try:
                self.action()
            except Exception as e:
                log.exception(e)

    def cancel(self):
        """Cancels the running timer. A running action completes, then the thread exits.
        """
        self.stopped.set()


class SequentialRecordReader:
    """Reads records (:class:`eventlens.model.RawRecord`) from a binary stream.

    This reader implements the context manager interface and closes the underlying stream on exit:

    .. code-block:: python

        with SequentialRecordReader(open(path, 'rb'), RecordParser()) as reader:
            for record in reader.records():
                print(record)

    :param stream: binary stream to read records from.
    :param parser: :class:`eventlens.model.RecordParser`, the parser for the record frames.
    """
    def __init__(self, stream, parser):
        self.stream = stream
        self.parser = parser

    def records(self, skip_payload=False):
        """Reads the records from the stream until it is exhausted.

        :param skip_payload: ``bool``, skip loading the record payloads.
        """
        while True:
            try:
                yield self._actual_read(skip_payload)
            except EOFException:
                break

    def _actual_read(self, skip_payload=False):
        record = self.parser.parse_record(self.stream, skip_payload=skip_payload)
        # skip the record separator
        self.stream.seek(1, SEEK_CUR)
        return record

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.stream.close()


class MemoryFile:
    """File-system backed in-memory buffer.

    The writes go to the in-memory buffer, which then can be flushed to the actual file in the file-system. If the
    file already exists, its content is loaded into the buffer first so that flushing appends to it.

    The flushing of the buffer is atomic: the buffer is written to a temporary file in the same directory, synced and
    then renamed as the actual file.

    The instances of this class are thread-safe.

    :param name: ``str``, the name of the file, without the directory.
    :param path: ``str``, the directory holding the file.
    """
    def __init__(self, name, path):
        self.name = name
        self.path = path
        self.buffer = BytesIO()
        self.lock = RLock()
        self.dirty = False
        file_path = join_paths(path, name)
        if isfile(file_path):
            with open(file_path, 'rb') as f:
                self.buffer.write(f.read())

    def write(self, data):
        with self.lock:
            self.buffer.write(data)
            self.dirty = True

    def stream(self):
        """Returns a copy of the underlying in-memory stream.
        """
        with self.lock:
            return BytesIO(self.buffer.getvalue())

    def flush(self):
        """Writes the in-memory buffer to the file in the file-system.
        """
        with self.lock:
            if not self.dirty:
                return
            tmpf = NamedTemporaryFile(dir=self.path, prefix='.tmp-', delete=False)
            with tmpf:
                tmpf.write(self.buffer.getvalue())
                tmpf.flush()
            replace(tmpf.name, join_paths(self.path, self.name))
            self.dirty = False


class NaiveJournalReader(JournalReader):
    """Reader session over a :class:`NaiveJournalStore`.

    Keeps track of the partition file handles it opens and closes all of them when the session ends.
    """

    def __init__(self, store):
        self.store = store
        self.parser = RecordParser()
        self.handles = []

    def read_partition(self, stream_id, partition_index, from_sequence_nr, to_sequence_nr):
        stream = self._open(stream_id, partition_index)
        if stream is None:
            return []
        records = []
        try:
            with SequentialRecordReader(stream, self.parser) as reader:
                for record in reader.records():
                    seq = record.key.sequence_nr
                    if seq > to_sequence_nr:
                        break
                    if seq >= from_sequence_nr:
                        records.append(record)
        except OSError as e:
            raise ScanError('Failed to read partition %s/%d: %s' % (stream_id, partition_index, e)) from e
        log.debug('Read %d records from %s/%d', len(records), stream_id, partition_index)
        return records

    def _open(self, stream_id, partition_index):
        stream = self.store._open_partition(stream_id, partition_index)
        if stream is not None:
            self.handles.append(stream)
        return stream

    def close(self):
        for handle in self.handles:
            try:
                handle.close()
            except OSError as e:
                log.debug('Error closing partition handle: %s', e)
        self.handles = []

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class NaiveJournalStore(JournalStore):
    """A naive implementation of :class:`eventlens.storeapi.JournalStore` that keeps the journal in plain files.

    Appended records are written to in-memory partition buffers. By default (``flush_interval=0``) every append is
    flushed to disk immediately. With a positive ``flush_interval`` the buffers are flushed periodically, which is
    faster but loses the buffered records on an outage. Reads always see the buffered records. A buffer is dropped
    once flushed, so only the partitions written since the last flush are held in memory.

    The instances of this class are thread-safe and can be shared between threads.

    :param root_dir: ``str``, the root directory of the journal.
    :param flush_interval: ``int``, flush interval in milliseconds. ``0`` or less flushes on every append.
    """
    PARTITION_FILE = re.compile(r'\d+')

    def __init__(self, root_dir, flush_interval=0):
        self.root_dir = root_dir
        self.serializer = RecordSerializer()
        self.parser = RecordParser()
        self.open_files = {}
        self.write_lock = RLock()
        self.flush_interval = flush_interval
        self.timer = None
        makedirs(root_dir, exist_ok=True)
        if flush_interval > 0:
            self.timer = PeriodicTimer(flush_interval / 1000, self._flush_open_files)
            self.timer.start()
            log.info('Flushing buffers every %dms', flush_interval)

    def _stream_dir(self, stream_id):
        return join_paths(self.root_dir, quote(stream_id, safe=''))

    def _partitions(self, stream_id):
        stream_dir = self._stream_dir(stream_id)
        if not isdir(stream_dir):
            return []
        return sorted(int(name) for name in listdir(stream_dir) if self.PARTITION_FILE.fullmatch(name))

    def _open_partition(self, stream_id, partition_index):
        path = join_paths(self._stream_dir(stream_id), str(partition_index))
        with self.write_lock:
            mem_file = self.open_files.get(path)
            if mem_file is not None:
                return mem_file.stream()
        if not isfile(path):
            return None
        try:
            return open(path, 'rb')
        except OSError as e:
            raise ScanError('Failed to open partition %s/%d: %s' % (stream_id, partition_index, e)) from e

    def _flush_open_files(self):
        with self.write_lock:
            for path, open_file in list(self.open_files.items()):
                try:
                    open_file.flush()
                except OSError as e:
                    log.error('Error while flushing %s. Error: %s', path, e)
                    continue
                del self.open_files[path]

    def stream_ids(self):
        try:
            names = listdir(self.root_dir)
        except OSError as e:
            raise ScanError('Failed to list journal directory %s: %s' % (self.root_dir, e)) from e
        return sorted(unquote(name) for name in names if isdir(join_paths(self.root_dir, name)))

    def highest_sequence_nr(self, stream_id):
        partitions = self._partitions(stream_id)
        # the highest partition may be empty if a flush was interrupted
        for partition_index in reversed(partitions):
            stream = self._open_partition(stream_id, partition_index)
            if stream is None:
                continue
            highest = 0
            with SequentialRecordReader(stream, self.parser) as reader:
                for record in reader.records(skip_payload=True):
                    highest = record.key.sequence_nr
            if highest:
                return highest
        return 0

    def session(self):
        return NaiveJournalReader(self)

    def append(self, record):
        stream_dir = self._stream_dir(record.key.stream_id)
        path = join_paths(stream_dir, str(record.key.partition_index))
        data = self.serializer.serialize(record) + b'\n'
        with self.write_lock:
            try:
                makedirs(stream_dir, exist_ok=True)
                mem_file = self.open_files.get(path)
                if mem_file is None:
                    mem_file = self.open_files[path] = MemoryFile(name=str(record.key.partition_index),
                                                                  path=stream_dir)
                mem_file.write(data)
                if self.flush_interval <= 0:
                    try:
                        mem_file.flush()
                    finally:
                        del self.open_files[path]
            except OSError as e:
                raise JournalWriteException('Failed to append %s: %s' % (str(record.key), e)) from e

    def close(self):
        if self.timer:
            self.timer.cancel()
            self.timer.join()
        self._flush_open_files()
        log.info('Naive journal store closed')
