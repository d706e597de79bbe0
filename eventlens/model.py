"""
---------------
eventlens.model
---------------

Journal data model and the framed record wire format.

A :class:`RawRecord` is stored (and published on the commit log) as a length-prefixed frame:

.. code-block:: text

    record: <total> <header-size> <payload-size>
    stream:<stream id>
    partition:<partition index>
    sequence:<sequence number>
    serializer:<serializer id>
    manifest:<manifest>
    <payload bytes>

The header is UTF-8 text, the payload is opaque bytes.
"""
from collections import namedtuple
from io import StringIO, SEEK_CUR

from eventlens.errors import CorruptRecordError


EventKey = namedtuple('EventKey', ['stream_id', 'partition_index', 'sequence_nr'])
"""Uniquely identifies one event in the journal.
"""

EventKey.stream_id.__doc__ = """
    ``str``, the logical stream id.
"""

EventKey.partition_index.__doc__ = """
    ``int``, the physical partition index (``>= 0``) holding the event.
"""

EventKey.sequence_nr.__doc__ = """
    ``int``, the 1-based position of the event in the stream log.
"""


PartitionRange = namedtuple('PartitionRange', ['stream_id', 'partition_index', 'from_sequence_nr',
                                               'to_sequence_nr', 'capacity'])
"""The sequence number bounds covered by one physical partition of a stream.

Derived on each planning pass, never persisted.
"""


RawRecord = namedtuple('RawRecord', ['key', 'serializer_id', 'manifest', 'payload'])
"""A serialized event as read from the backing store or the commit log.
"""


DecodeFailure = namedtuple('DecodeFailure', ['key', 'serializer_id', 'manifest', 'error'])
"""Error sentinel standing in for an event whose payload could not be decoded.

``error`` is the :class:`eventlens.errors.DeserializationError` raised for the record.
"""


RecordPreamble = namedtuple('RecordPreamble', ['total', 'header', 'payload'])


class Event:
    """A decoded journal event.

    :param stream_id: ``str``, the stream id of the event.
    :param sequence_nr: ``int``, the sequence number within the stream.
    :param data: the decoded payload.
    """

    def __init__(self, stream_id, sequence_nr, data=None):
        self.stream_id = stream_id
        self.sequence_nr = sequence_nr
        self.data = data

    def __eq__(self, other):
        if not isinstance(other, Event):
            return False
        return (self.stream_id, self.sequence_nr, self.data) == (other.stream_id, other.sequence_nr, other.data)

    def __hash__(self):
        return hash((self.stream_id, self.sequence_nr))

    def __repr__(self):
        return 'Event<%s #%d>' % (self.stream_id, self.sequence_nr)


class Header:

    def __init__(self, stream_id=None, partition_index=None, sequence_nr=None, serializer_id=None, manifest=None):
        self.stream_id = stream_id
        self.partition_index = partition_index
        self.sequence_nr = sequence_nr
        self.serializer_id = serializer_id
        self.manifest = manifest


class RecordSerializer:
    """Serializes :class:`RawRecord` into the framed binary format.

    :param encoding: ``str``, the header encoding. Default is ``utf-8``.
    """

    def __init__(self, encoding='utf-8'):
        self.encoding = encoding

    def serialize(self, record):
        """Serializes the record.

        :param record: :class:`RawRecord`, the record to serialize.

        Returns the serialized record as ``bytes``.
        """
        hdr = self._serialize_header(record).encode(self.encoding)
        payload = bytes(record.payload or b'')
        preamble = 'record: %d %d %d\n' % (len(hdr) + len(payload), len(hdr), len(payload))
        return preamble.encode(self.encoding) + hdr + payload

    def _serialize_header(self, record):
        for name, value in (('stream id', record.key.stream_id), ('manifest', record.manifest or '')):
            if '\n' in value:
                raise ValueError('%s must not contain new lines: %r' % (name, value))
        hdr = ''
        hdr += 'stream:' + record.key.stream_id + '\n'
        hdr += 'partition:%d\n' % record.key.partition_index
        hdr += 'sequence:%d\n' % record.key.sequence_nr
        hdr += 'serializer:%d\n' % record.serializer_id
        hdr += 'manifest:' + (record.manifest or '') + '\n'
        return hdr


class RecordParser:
    """Parses :class:`RawRecord` from a binary stream.

    :param encoding: ``str``, the header encoding. Default is ``utf-8``.
    """

    def __init__(self, encoding='utf-8'):
        self.encoding = encoding

    def parse_header(self, hdr_size, stream):
        data = stream.read(hdr_size)
        if len(data) != hdr_size:
            raise CorruptRecordError('Invalid read size from buffer. The stream is either unreadable or corrupted. '
                                     '%d read, expected %d' % (len(data), hdr_size))
        header = Header()
        sio = StringIO(data.decode(self.encoding))

        ln = sio.readline()
        while ln:
            ln = ln.rstrip('\n')
            if ':' not in ln:
                raise CorruptRecordError('Invalid header line: %r' % ln)
            prop, _, value = ln.partition(':')
            try:
                if prop == 'stream':
                    header.stream_id = value
                elif prop == 'partition':
                    header.partition_index = int(value)
                elif prop == 'sequence':
                    header.sequence_nr = int(value)
                elif prop == 'serializer':
                    header.serializer_id = int(value)
                elif prop == 'manifest':
                    header.manifest = value
                else:
                    raise CorruptRecordError('Unknown property in header %s' % prop)
            except ValueError as e:
                raise CorruptRecordError('Invalid value for %s: %r' % (prop, value)) from e
            ln = sio.readline()
        sio.close()
        if header.stream_id is None or header.sequence_nr is None or header.serializer_id is None:
            raise CorruptRecordError('Incomplete record header')
        return header

    def parse_preamble(self, stream):
        pstr = stream.readline()
        if not pstr:
            raise EOFException()
        pstr = pstr.decode(self.encoding).strip()
        if not pstr:
            raise EOFException()
        if not pstr.startswith('record:'):
            raise CorruptRecordError('Invalid preamble line')

        values = pstr[len('record:'):].split()
        if len(values) != 3:
            raise CorruptRecordError('Invalid preamble values')

        try:
            return RecordPreamble(total=int(values[0]), header=int(values[1]), payload=int(values[2]))
        except ValueError as e:
            raise CorruptRecordError('Invalid preamble values') from e

    def parse_record(self, stream, skip_payload=False):
        """Parses the record at the current position of the stream.

        :param stream: binary stream (:class:`io.BytesIO` or a file opened in ``'rb'`` mode).
        :param skip_payload: ``bool``, if ``True`` the payload is skipped and the record carries ``None`` payload.

        Raises :class:`EOFException` if there are no more records in the stream and
        :class:`eventlens.errors.CorruptRecordError` if the frame is malformed.
        """
        preamble = self.parse_preamble(stream)
        header = self.parse_header(preamble.header, stream)
        payload = None
        if skip_payload:
            stream.seek(preamble.payload, SEEK_CUR)
        else:
            payload = stream.read(preamble.payload)
            if len(payload) != preamble.payload:
                raise CorruptRecordError('Invalid payload size. The stream is either unreadable or corrupted.')

        key = EventKey(stream_id=header.stream_id,
                       partition_index=header.partition_index or 0,
                       sequence_nr=header.sequence_nr)
        return RawRecord(key=key, serializer_id=header.serializer_id, manifest=header.manifest or '',
                         payload=payload)


class EOFException(Exception):
    """No more records are available in the stream.
    """
    pass
