"""
----------------
eventlens.stream
----------------

Continuous access to newly appended events.

:func:`event_stream` subscribes a consumer group to one or more commit-log topics and returns a :class:`Subscription`.
Iterating :meth:`Subscription.batches` yields an unbounded sequence of :class:`MicroBatch` objects:

.. code-block:: python

    from eventlens.commitlog import ConsumerSettings
    from eventlens.execution import ExecutionContext
    from eventlens.stream import event_stream

    consumer = ConsumerSettings(group_id='reports', offset_reset='earliest',
                                endpoints={'bootstrap.servers': 'localhost:6434'})

    with ExecutionContext() as context:
        subscription = event_stream(context, consumer, topics={'orders': 2})
        for batch in subscription.batches():
            for stream_id, sequence_nr, event in batch:
                print(stream_id, sequence_nr, event.data)
            batch.commit()

For a fixed stream id the events arrive in non-decreasing sequence number order, provided the producers keep the
records of one stream id in one topic partition and in order. Ordering across stream ids is not defined.
"""
from io import BytesIO
from logging import getLogger
from threading import Event as ThreadingEvent

from eventlens.errors import ConfigurationError, CorruptRecordError, DeserializationError, SubscriptionError
from eventlens.materializer import materialize_stream
from eventlens.model import RecordParser
from eventlens.serialization import ResolverFactory


log = getLogger(__name__)


class MicroBatch:
    """Events consumed in one polling round of a subscription.

    :param batch_id: ``int``, the sequential id of the batch within the subscription.
    :param events: ``list`` of ``(stream_id, sequence_nr, Event)`` triples.
    :param offsets: ``dict``, ``(topic, partition)`` to the next offset to read after this batch.
    :param subscription: :class:`Subscription`, the subscription that produced the batch.
    """

    def __init__(self, batch_id, events, offsets, subscription):
        self.batch_id = batch_id
        self.events = events
        self.offsets = offsets
        self.subscription = subscription

    def commit(self):
        """Acknowledges the offsets of this batch to the commit log.
        """
        self.subscription.commit(self.offsets)

    def __iter__(self):
        return iter(self.events)

    def __len__(self):
        return len(self.events)

    def __repr__(self):
        return 'MicroBatch<%d: %d events>' % (self.batch_id, len(self.events))


class ConsumeLoop:
    """Polls a fixed set of topic partitions, one after the other, and materializes their records.

    :param topic: ``str``, the topic.
    :param consumers: ``dict``, partition to :class:`eventlens.commitlog.CommitLogConsumer`.
    """

    def __init__(self, topic, consumers):
        self.topic = topic
        self.consumers = consumers
        self.parser = RecordParser()

    def poll(self, resolver, max_records, timeout):
        """Polls every partition of the loop once.

        Returns ``(events, offsets)`` where ``events`` is the list of materialized triples in partition, then offset
        order, and ``offsets`` maps ``(topic, partition)`` to the next offset for the partitions that returned data.
        """
        events = []
        offsets = {}
        for partition, consumer in sorted(self.consumers.items()):
            messages = consumer.poll(max_records=max_records, timeout=timeout)
            if not messages:
                continue
            records = self._parse(messages, resolver)
            events.extend(materialize_stream(records, resolver))
            offsets[(self.topic, partition)] = messages[-1].offset + 1
        return events, offsets

    def _parse(self, messages, resolver):
        records = []
        for message in messages:
            try:
                records.append(self.parser.parse_record(BytesIO(message.value)))
            except CorruptRecordError as e:
                if resolver.strict:
                    raise DeserializationError('Corrupt record at %s/%d@%d: %s' %
                                               (message.topic, message.partition, message.offset, e)) from e
                log.warning('Dropping corrupt record at %s/%d@%d: %s', message.topic, message.partition,
                            message.offset, e)
        return records

    def close(self):
        for partition, consumer in self.consumers.items():
            try:
                consumer.close()
            except Exception as e:
                log.warning('Error closing consumer of %s/%d: %s', self.topic, partition, e)


class Subscription:
    """Cancellable subscription of a consumer group to commit-log topics.

    Each topic is consumed by ``parallelism`` consume loops (at most one per partition); the partitions of a topic
    are assigned to its loops round-robin. A subscription can be iterated only once. After it ends, a new
    subscription must be created, which starts where the commit log's offset reset policy says.

    :param context: :class:`eventlens.execution.ExecutionContext`, runs the consume loops.
    :param commit_log: :class:`eventlens.commitlog.CommitLog`, the commit log.
    :param consumer: :class:`eventlens.commitlog.ConsumerSettings`, the consumer parameters.
    :param topics: ``dict``, topic name to parallelism.
    :param resolvers: :class:`eventlens.serialization.ResolverFactory`, builds the per-worker resolvers.
    :param max_records: ``int``, maximum records polled per partition per batch.
    :param poll_timeout: ``float``, seconds a partition poll waits for new records.
    :param close_commit_log: ``bool``, close the commit log when the subscription ends.
    """

    def __init__(self, context, commit_log, consumer, topics, resolvers, max_records=500, poll_timeout=0.5,
                 close_commit_log=False):
        if not topics:
            raise ConfigurationError('At least one topic is required')
        for topic, parallelism in topics.items():
            if not isinstance(parallelism, int) or parallelism < 1:
                raise ConfigurationError('Invalid parallelism for topic %s: %r' % (topic, parallelism))
        self.context = context
        self.commit_log = commit_log
        self.consumer = consumer
        self.topics = dict(topics)
        self.resolvers = resolvers
        self.max_records = max_records
        self.poll_timeout = poll_timeout
        self.close_commit_log = close_commit_log
        self.loops = []
        self._started = False
        self._cancelled = ThreadingEvent()

    def _open_loops(self):
        for topic, parallelism in self.topics.items():
            partitions = self.commit_log.partitions_for(topic)
            loops = [ConsumeLoop(topic, {}) for _ in range(min(parallelism, partitions))]
            # visible to _close() before any consumer is created
            self.loops.extend(loops)
            for partition in range(partitions):
                loops[partition % len(loops)].consumers[partition] = self.commit_log.consumer(topic, partition,
                                                                                              self.consumer)
            log.info('Subscribed group %s to %s: %d partitions, %d consume loops', self.consumer.group_id, topic,
                     partitions, len(loops))
        return self.loops

    def _poll(self, loop):
        return loop.poll(self.resolvers.get(), self.max_records, self.poll_timeout)

    @property
    def active(self):
        return self._started and not self._cancelled.is_set()

    def batches(self):
        """Returns the lazy, unbounded sequence of :class:`MicroBatch`.

        The sequence ends when the subscription or its execution context is cancelled; the consumers are closed on
        every exit path. Raises :class:`eventlens.errors.SubscriptionError` if the subscription was already iterated.
        """
        if self._started:
            raise SubscriptionError('A subscription is not restartable. Create a new subscription.')
        self._started = True
        try:
            self._open_loops()
            batch_id = 0
            while not self._cancelled.is_set() and not self.context.cancelled:
                events = []
                offsets = {}
                for loop_events, loop_offsets in self.context.run_all(self._poll, self.loops):
                    events.extend(loop_events)
                    offsets.update(loop_offsets)
                if not offsets:
                    continue
                yield MicroBatch(batch_id, events, offsets, self)
                batch_id += 1
        finally:
            self._close()

    def foreach_batch(self, callback):
        """Calls ``callback(batch)`` for every :class:`MicroBatch` until the subscription is cancelled.

        Returns the number of processed batches.
        """
        count = 0
        for batch in self.batches():
            callback(batch)
            count += 1
        return count

    def commit(self, offsets):
        """Commits ``(topic, partition)`` to offset mappings through the owning consumers.
        """
        consumers = {}
        for loop in self.loops:
            for partition, consumer in loop.consumers.items():
                consumers[(loop.topic, partition)] = consumer
        for topic_partition, offset in offsets.items():
            consumer = consumers.get(topic_partition)
            if consumer is None:
                raise SubscriptionError('Partition %s/%d is not consumed by this subscription' % topic_partition)
            consumer.commit(offset)

    def cancel(self):
        """Cancels the subscription. The batch sequence ends after the current polling round.
        """
        log.info('Subscription of group %s cancelled', self.consumer.group_id)
        self._cancelled.set()

    def _close(self):
        self._cancelled.set()
        for loop in self.loops:
            loop.close()
        if self.close_commit_log:
            self.commit_log.close()
        log.info('Subscription of group %s closed', self.consumer.group_id)


def event_stream(context, consumer, topics, commit_log=None, settings=None, custom_bindings=None,
                 max_records=500, poll_timeout=0.5):
    """Streaming entry point: the stream of newly appended events.

    :param context: :class:`eventlens.execution.ExecutionContext`, the active execution context.
    :param consumer: :class:`eventlens.commitlog.ConsumerSettings`, group id, offset reset policy and endpoints.
    :param topics: ``dict``, topic name to parallelism.
    :param commit_log: :class:`eventlens.commitlog.CommitLog`. If ``None``, a
        :class:`eventlens.broker.RemoteCommitLog` connecting to ``consumer.endpoints`` is used.
    :param settings: :class:`eventlens.serialization.SerializerSettings`, the serialization configuration.
    :param custom_bindings: ``dict``, manifest pattern to codec or decode function.

    Returns :class:`Subscription`.
    """
    resolvers = ResolverFactory(settings, custom_bindings)
    resolvers.create()
    owned = commit_log is None
    if owned:
        from eventlens.broker import RemoteCommitLog
        commit_log = RemoteCommitLog(consumer.endpoints)
    return Subscription(context, commit_log, consumer, topics, resolvers, max_records=max_records,
                        poll_timeout=poll_timeout, close_commit_log=owned)
