from eventlens.model import (EventKey, RawRecord, Event, RecordSerializer, RecordParser, EOFException)
from eventlens.errors import CorruptRecordError

from io import BytesIO

from unittest import TestCase

import pytest


def _record(stream_id='order-1', seq=1, payload=b'{}', manifest='orders.Created'):
    return RawRecord(key=EventKey(stream_id, 0, seq), serializer_id=3, manifest=manifest, payload=payload)


class TestRecordSerializer(TestCase):

    def test_serialize_record(self):
        data = RecordSerializer().serialize(
            RawRecord(key=EventKey('a', 0, 1), serializer_id=3, manifest='m', payload=b'{}'))
        expected = [b'record: 58 56 2', b'stream:a', b'partition:0', b'sequence:1', b'serializer:3',
                    b'manifest:m', b'{}']
        assert data.split(b'\n') == expected

    def test_serialize_rejects_new_lines(self):
        with pytest.raises(ValueError):
            RecordSerializer().serialize(_record(stream_id='bad\nid'))
        with pytest.raises(ValueError):
            RecordSerializer().serialize(_record(manifest='bad\nmanifest'))

    def test_serialize_binary_payload(self):
        payload = bytes(range(256))
        data = RecordSerializer().serialize(_record(payload=payload))
        assert data.endswith(payload)


class TestRecordParser(TestCase):

    def test_parse_record(self):
        data = b'\n'.join([b'record: 58 56 2', b'stream:a', b'partition:0', b'sequence:1', b'serializer:3',
                           b'manifest:m', b'{}'])
        record = RecordParser().parse_record(BytesIO(data))

        assert record.key == EventKey('a', 0, 1)
        assert record.serializer_id == 3
        assert record.manifest == 'm'
        assert record.payload == b'{}'

    def test_parse_serialized(self):
        record = RawRecord(key=EventKey('orders/7', 4, 20000001), serializer_id=99, manifest='x.Y',
                           payload=b'\x00\n\xff')
        stream = BytesIO(RecordSerializer().serialize(record))

        assert RecordParser().parse_record(stream) == record
        with pytest.raises(EOFException):
            RecordParser().parse_record(stream)

    def test_parse_skip_payload(self):
        stream = BytesIO(RecordSerializer().serialize(_record(payload=b'0123456789')))
        record = RecordParser().parse_record(stream, skip_payload=True)

        assert record.payload is None
        assert stream.read() == b''

    def test_parse_truncated_payload(self):
        data = RecordSerializer().serialize(_record(payload=b'0123456789'))
        with pytest.raises(CorruptRecordError):
            RecordParser().parse_record(BytesIO(data[:-3]))

    def test_parse_invalid_preamble(self):
        with pytest.raises(CorruptRecordError):
            RecordParser().parse_record(BytesIO(b'garbage\n'))
        with pytest.raises(CorruptRecordError):
            RecordParser().parse_record(BytesIO(b'record: 1 2\n'))
        with pytest.raises(CorruptRecordError):
            RecordParser().parse_record(BytesIO(b'record: a b c\n'))

    def test_parse_invalid_header(self):
        hdr = b'stream:a\nsequence:one\nserializer:3\n'
        data = b'record: %d %d 0\n' % (len(hdr), len(hdr)) + hdr
        with pytest.raises(CorruptRecordError):
            RecordParser().parse_record(BytesIO(data))

    def test_parse_incomplete_header(self):
        hdr = b'stream:a\n'
        data = b'record: %d %d 0\n' % (len(hdr), len(hdr)) + hdr
        with pytest.raises(CorruptRecordError):
            RecordParser().parse_record(BytesIO(data))

    def test_parse_empty_stream(self):
        with pytest.raises(EOFException):
            RecordParser().parse_record(BytesIO(b''))


def test_event_equality():
    assert Event('a', 1, {'x': 1}) == Event('a', 1, {'x': 1})
    assert Event('a', 1, {'x': 1}) != Event('a', 2, {'x': 1})
    assert Event('a', 1) != ('a', 1)
    assert repr(Event('a', 7)) == 'Event<a #7>'


def test_event_key_ordering():
    keys = [EventKey('b', 0, 1), EventKey('a', 1, 4), EventKey('a', 0, 2)]
    assert sorted(keys) == [EventKey('a', 0, 2), EventKey('a', 1, 4), EventKey('b', 0, 1)]
