"""
----------------------
eventlens.materializer
----------------------

Turns raw records into typed events.

The materializer is stateless; the only state it touches is the memo of the :class:`eventlens.serialization.Resolver`
it is given. A record that fails to decode is never silently replaced by a value: the batch form emits a
:class:`eventlens.model.DecodeFailure` sentinel in its place, the streaming form drops it with a warning. In strict
mode both forms raise.
"""
from logging import getLogger

from eventlens.errors import DeserializationError
from eventlens.model import Event, DecodeFailure


log = getLogger(__name__)


def to_event(record, resolver):
    """Decodes a single record into an :class:`eventlens.model.Event`.

    Raises :class:`eventlens.errors.DeserializationError` if the payload cannot be decoded.
    """
    data = resolver.resolve(record.serializer_id, record.manifest).decode(record.payload)
    return Event(stream_id=record.key.stream_id, sequence_nr=record.key.sequence_nr, data=data)


def materialize_batch(records, resolver):
    """Materializes records for the batch path.

    :param records: iterable of :class:`eventlens.model.RawRecord`.
    :param resolver: :class:`eventlens.serialization.Resolver`.

    Yields ``(EventKey, Event)`` pairs, or ``(EventKey, DecodeFailure)`` for records that failed to decode.
    """
    for record in records:
        try:
            yield record.key, to_event(record, resolver)
        except DeserializationError as e:
            if resolver.strict:
                raise
            log.debug('Failed to decode %s: %s', str(record.key), e)
            yield record.key, DecodeFailure(key=record.key, serializer_id=record.serializer_id,
                                            manifest=record.manifest, error=e)


def materialize_stream(records, resolver):
    """Materializes records for the streaming path.

    :param records: iterable of :class:`eventlens.model.RawRecord`.
    :param resolver: :class:`eventlens.serialization.Resolver`.

    Yields ``(stream_id, sequence_nr, Event)`` triples. Records that fail to decode are dropped with a warning.
    """
    for record in records:
        try:
            event = to_event(record, resolver)
        except DeserializationError as e:
            if resolver.strict:
                raise
            log.warning('Dropping undecodable record %s/%d: %s', record.key.stream_id, record.key.sequence_nr, e)
            continue
        yield event.stream_id, event.sequence_nr, event
