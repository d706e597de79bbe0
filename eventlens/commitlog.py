"""
-------------------
eventlens.commitlog
-------------------

Commit-log consumer API.

The streaming path reads journal records from a partitioned pub/sub log. Offsets (where a consumer group resumes,
and what happens when there is no committed offset) are owned entirely by the commit log; eventlens keeps no offset
store of its own.

Producers must route all records of one stream id to the same topic partition and preserve their order. The
:class:`InMemoryCommitLog` does that by hashing the stream id; remote logs rely on their producers doing the same.
"""
import zlib
from collections import namedtuple
from logging import getLogger
from threading import Condition, RLock

from eventlens.errors import ConfigurationError, CommitLogError, NoOffsetError
from eventlens.model import RecordSerializer


log = getLogger(__name__)


OFFSET_RESET_POLICIES = ('earliest', 'latest', 'none')


Message = namedtuple('Message', ['topic', 'partition', 'offset', 'key', 'value'])
"""A message read from a topic partition. ``value`` is the framed record (``bytes``).
"""


class ConsumerSettings(namedtuple('ConsumerSettings', ['group_id', 'offset_reset', 'endpoints', 'auto_commit'])):
    """Consumer parameters of a streaming session.

    :param group_id: ``str``, the consumer group id.
    :param offset_reset: ``str``, where to start without a committed offset: ``earliest``, ``latest`` or ``none``.
    :param endpoints: ``dict`` of ``str`` to ``str``, connection endpoints, for example
        ``{'bootstrap.servers': 'localhost:6434'}``.
    :param auto_commit: ``bool``, let the commit log commit the consumed positions.
    """
    __slots__ = ()

    def __new__(cls, group_id, offset_reset='latest', endpoints=None, auto_commit=True):
        if not group_id:
            raise ConfigurationError('A consumer group id is required')
        if offset_reset not in OFFSET_RESET_POLICIES:
            raise ConfigurationError('Invalid offset reset policy %r. Expected one of: %s' %
                                     (offset_reset, ', '.join(OFFSET_RESET_POLICIES)))
        endpoints = dict(endpoints or {})
        for name, value in endpoints.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ConfigurationError('Endpoints must map strings to strings, got %r: %r' % (name, value))
        return super(ConsumerSettings, cls).__new__(cls, group_id, offset_reset, endpoints, auto_commit)


def route(key, partitions):
    """Returns the partition of a message key. Stable across processes.
    """
    return zlib.crc32(key.encode('utf-8')) % partitions


class CommitLog:
    """A partitioned commit log.
    """

    def partitions_for(self, topic):
        """Returns the number of partitions of ``topic``.
        """
        raise NotImplementedError()

    def consumer(self, topic, partition, settings):
        """Creates a consumer of one topic partition.

        :param topic: ``str``, the topic name.
        :param partition: ``int``, the partition.
        :param settings: :class:`ConsumerSettings`, the consumer parameters.

        Returns :class:`CommitLogConsumer`.
        """
        raise NotImplementedError()

    def close(self):
        """Releases the connections of the commit log.
        """
        pass


class CommitLogConsumer:
    """Consumes one topic partition in offset order.
    """

    def poll(self, max_records=500, timeout=0.0):
        """Returns up to ``max_records`` :class:`Message` objects, waiting up to ``timeout`` seconds for the first.
        """
        raise NotImplementedError()

    def commit(self, offset=None):
        """Commits ``offset`` (the next offset to read) for the consumer group. ``None`` commits the current
        position.
        """
        raise NotImplementedError()

    def close(self):
        raise NotImplementedError()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class InMemoryCommitLog(CommitLog):
    """Commit log kept in memory.

    Topics are created on first use with ``partitions`` partitions. The instances of this class are thread-safe.

    :param partitions: ``int``, default number of partitions of new topics.
    """

    def __init__(self, partitions=1):
        self.default_partitions = partitions
        self.topics = {}
        self.offsets = {}
        self.serializer = RecordSerializer()
        self.lock = RLock()
        self.appended = Condition(self.lock)

    def create_topic(self, topic, partitions=None):
        with self.lock:
            if topic not in self.topics:
                self.topics[topic] = [[] for _ in range(partitions or self.default_partitions)]
                log.info('Created topic %s with %d partitions', topic, len(self.topics[topic]))
            return len(self.topics[topic])

    def partitions_for(self, topic):
        return self.create_topic(topic)

    def publish(self, topic, key, value, partition=None):
        """Appends a message.

        :param topic: ``str``, the topic.
        :param key: ``str``, the message key, routes the message to its partition.
        :param value: ``bytes``, the message value.
        :param partition: ``int``, explicit partition, overrides the routing by key.

        Returns ``(partition, offset)`` of the appended message.
        """
        with self.lock:
            partitions = self.create_topic(topic)
            if partition is None:
                partition = route(key, partitions)
            if not 0 <= partition < partitions:
                raise CommitLogError('Topic %s has no partition %d' % (topic, partition))
            messages = self.topics[topic][partition]
            messages.append((key, value))
            self.appended.notify_all()
            return partition, len(messages) - 1

    def publish_record(self, topic, record):
        """Publishes a :class:`eventlens.model.RawRecord` keyed by its stream id.
        """
        return self.publish(topic, record.key.stream_id, self.serializer.serialize(record))

    def end_offset(self, topic, partition):
        with self.lock:
            return len(self._partition(topic, partition))

    def committed(self, group_id, topic, partition):
        with self.lock:
            return self.offsets.get((group_id, topic, partition))

    def commit(self, group_id, topic, partition, offset):
        with self.lock:
            self.offsets[(group_id, topic, partition)] = offset
        log.debug('Group %s committed %s/%d at offset %d', group_id, topic, partition, offset)

    def read(self, topic, partition, offset, max_records, timeout=0.0):
        """Reads up to ``max_records`` messages starting at ``offset``, waiting up to ``timeout`` seconds if none
        is available.
        """
        with self.lock:
            messages = self._partition(topic, partition)
            if timeout and len(messages) <= offset:
                self.appended.wait_for(lambda: len(messages) > offset, timeout)
            return [Message(topic, partition, off, key, value)
                    for off, (key, value) in enumerate(messages[offset:offset + max_records], start=offset)]

    def _partition(self, topic, partition):
        partitions = self.topics.get(topic)
        if partitions is None or not 0 <= partition < len(partitions):
            raise CommitLogError('Unknown topic partition %s/%d' % (topic, partition))
        return partitions[partition]

    def consumer(self, topic, partition, settings):
        return InMemoryConsumer(self, topic, partition, settings)


class InMemoryConsumer(CommitLogConsumer):
    """Consumer of an :class:`InMemoryCommitLog` topic partition.

    With ``auto_commit`` the position of the previous poll is committed when the next poll starts and on close,
    so records handed out are committed only once the caller comes back for more.
    """

    def __init__(self, commit_log, topic, partition, settings):
        self.log = commit_log
        self.topic = topic
        self.partition = partition
        self.settings = settings
        self.closed = False
        self.position = self._start_position()
        self._uncommitted = None

    def _start_position(self):
        committed = self.log.committed(self.settings.group_id, self.topic, self.partition)
        if committed is not None:
            return committed
        if self.settings.offset_reset == 'earliest':
            return 0
        if self.settings.offset_reset == 'latest':
            return self.log.end_offset(self.topic, self.partition)
        raise NoOffsetError('No committed offset for group %s on %s/%d' %
                            (self.settings.group_id, self.topic, self.partition))

    def poll(self, max_records=500, timeout=0.0):
        if self.closed:
            raise CommitLogError('Consumer of %s/%d is closed' % (self.topic, self.partition))
        if self._uncommitted is not None:
            self.commit(self._uncommitted)
            self._uncommitted = None
        messages = self.log.read(self.topic, self.partition, self.position, max_records, timeout)
        if messages:
            self.position = messages[-1].offset + 1
            if self.settings.auto_commit:
                self._uncommitted = self.position
        return messages

    def commit(self, offset=None):
        self.log.commit(self.settings.group_id, self.topic, self.partition,
                        self.position if offset is None else offset)

    def close(self):
        if self.closed:
            return
        if self._uncommitted is not None:
            self.commit(self._uncommitted)
        self.closed = True
