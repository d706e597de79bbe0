from eventlens.materializer import to_event, materialize_batch, materialize_stream
from eventlens.serialization import Resolver, SerializerSettings
from eventlens.model import EventKey, RawRecord, Event, DecodeFailure
from eventlens.errors import DeserializationError

import pytest


def _record(seq, payload, stream_id='order-1', manifest='orders.Created'):
    return RawRecord(EventKey(stream_id, 0, seq), 3, manifest, payload)


STRICT = SerializerSettings(strict=True, default='json', bindings=(), required_manifests=())


def test_to_event():
    event = to_event(_record(4, b'{"total": 10}'), Resolver())
    assert event == Event('order-1', 4, {'total': 10})


def test_materialize_batch_keeps_failures():
    records = [_record(1, b'{"a": 1}'), _record(2, b'{corrupt'), _record(3, b'{"a": 3}')]

    pairs = list(materialize_batch(records, Resolver()))

    assert [key.sequence_nr for key, _ in pairs] == [1, 2, 3]
    assert pairs[0][1] == Event('order-1', 1, {'a': 1})
    failure = pairs[1][1]
    assert isinstance(failure, DecodeFailure)
    assert failure.key == EventKey('order-1', 0, 2)
    assert failure.manifest == 'orders.Created'
    assert isinstance(failure.error, DeserializationError)
    assert pairs[2][1].data == {'a': 3}


def test_materialize_batch_strict():
    records = [_record(1, b'{"a": 1}'), _record(2, b'{corrupt')]

    with pytest.raises(DeserializationError):
        list(materialize_batch(records, Resolver(STRICT)))


def test_materialize_stream_drops_failures():
    records = [_record(1, b'{"a": 1}'), _record(2, b'{corrupt'), _record(3, b'{"a": 3}')]

    triples = list(materialize_stream(records, Resolver()))

    assert [(sid, seq) for sid, seq, _ in triples] == [('order-1', 1), ('order-1', 3)]
    assert triples[1][2] == Event('order-1', 3, {'a': 3})


def test_materialize_stream_strict():
    with pytest.raises(DeserializationError):
        list(materialize_stream([_record(1, b'{corrupt')], Resolver(STRICT)))


def test_materialize_preserves_order():
    records = [_record(seq, b'%d' % seq) for seq in range(1, 50)]

    assert [seq for _, seq, _ in materialize_stream(records, Resolver())] == list(range(1, 50))
