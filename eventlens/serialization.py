"""
-----------------------
eventlens.serialization
-----------------------

Deserialization of journal payloads.

Every stored record carries a serializer id and a manifest. The :class:`Resolver` maps such a pair to a tagged
:class:`Decoder`, looking in order at:

1. the caller-supplied custom bindings (``{manifest pattern: codec or decode function}``),
2. the bindings from the ``eventlens.serialization`` configuration section,
3. the built-in codec registered for the serializer id,
4. the configured default codec.

Manifest patterns are regular expressions matched against the whole manifest. Within one binding table an exact
manifest match wins over pattern matches, and patterns are tried in declaration order.

The resolved decoders are memoized per ``(serializer_id, manifest)``. The bindings are built once from an
immutable :class:`SerializerSettings` snapshot; every worker thread builds its own :class:`Resolver` through a
:class:`ResolverFactory`.
"""
import json
import re
from collections import namedtuple
from logging import getLogger
from threading import RLock, local

from eventlens.config import get_section
from eventlens.errors import ConfigurationError, DeserializationError


log = getLogger(__name__)


class Codec:
    """Encodes values to and decodes values from record payloads.
    """
    name = None
    serializer_id = None

    def encode(self, value):
        raise NotImplementedError('%s cannot encode values' % self.name)

    def decode(self, payload, manifest):
        raise NotImplementedError()


class BytesCodec(Codec):
    name = 'bytes'
    serializer_id = 1

    def encode(self, value):
        return bytes(value)

    def decode(self, payload, manifest):
        return bytes(payload)


class TextCodec(Codec):
    name = 'text'
    serializer_id = 2

    def __init__(self, encoding='utf-8'):
        self.encoding = encoding

    def encode(self, value):
        return value.encode(self.encoding)

    def decode(self, payload, manifest):
        return bytes(payload).decode(self.encoding)


class JsonCodec(Codec):
    name = 'json'
    serializer_id = 3

    def encode(self, value):
        return json.dumps(value, sort_keys=True).encode('utf-8')

    def decode(self, payload, manifest):
        return json.loads(bytes(payload).decode('utf-8'))


class FunctionCodec(Codec):
    """Adapts plain functions to the :class:`Codec` interface.

    :param decode_fn: ``function``, takes the payload ``bytes`` and returns the decoded value.
    :param encode_fn: ``function``, optional, the inverse of ``decode_fn``.
    :param name: ``str``, the tag of the codec. Defaults to the name of ``decode_fn``.
    """

    def __init__(self, decode_fn, encode_fn=None, name=None):
        self.decode_fn = decode_fn
        self.encode_fn = encode_fn
        self.name = name or getattr(decode_fn, '__name__', 'custom')

    def encode(self, value):
        if self.encode_fn is None:
            return super(FunctionCodec, self).encode(value)
        return self.encode_fn(value)

    def decode(self, payload, manifest):
        return self.decode_fn(payload)


BUILTIN_CODECS = {codec.name: codec for codec in (BytesCodec(), TextCodec(), JsonCodec())}

DEFAULT_CODECS = {codec.serializer_id: codec for codec in BUILTIN_CODECS.values()}


Decoder = namedtuple('Decoder', ['tag', 'decode'])
"""A resolved decode function, tagged with the name of the codec it came from.

``decode`` takes the payload ``bytes`` and returns the decoded value, or raises
:class:`eventlens.errors.DeserializationError`.
"""


class SerializerSettings(namedtuple('SerializerSettings', ['strict', 'default', 'bindings', 'required_manifests'])):
    """Immutable snapshot of the serialization configuration.

    :param strict: ``bool``, escalate any decoding failure to abort the job.
    :param default: ``str``, name of the default codec, or ``None`` for no default.
    :param bindings: ``tuple`` of ``(manifest pattern, codec name)`` pairs, in declaration order.
    :param required_manifests: ``tuple`` of ``(serializer id, manifest)`` pairs that must be resolvable.
    """
    __slots__ = ()

    @classmethod
    def from_config(cls, config, strict=None):
        """Reads the settings from the ``eventlens.serialization`` section of the configuration.

        :param config: ``dict``, the whole configuration.
        :param strict: ``bool``, overrides the configured ``strict`` flag if not ``None``.
        """
        section = get_section(config, 'eventlens.serialization', {})
        if not isinstance(section, dict):
            raise ConfigurationError('eventlens.serialization must be a mapping')

        bindings = section.get('bindings') or {}
        if not isinstance(bindings, dict):
            raise ConfigurationError('eventlens.serialization.bindings must be a mapping')

        required = []
        for entry in section.get('required-manifests') or []:
            if not isinstance(entry, dict) or 'serializer' not in entry or 'manifest' not in entry:
                raise ConfigurationError('Invalid required manifest entry: %r' % (entry,))
            try:
                required.append((int(entry['serializer']), str(entry['manifest'])))
            except (TypeError, ValueError) as e:
                raise ConfigurationError('Invalid serializer id in required manifest entry: %r' % (entry,)) from e

        return cls(strict=bool(section.get('strict', False)) if strict is None else strict,
                   default=section['default'] if 'default' in section else 'json',
                   bindings=tuple((str(pattern), codec) for pattern, codec in bindings.items()),
                   required_manifests=tuple(required))


DEFAULT_SETTINGS = SerializerSettings(strict=False, default='json', bindings=(), required_manifests=())


class BindingTable:
    """Manifest pattern to codec mapping.

    :param name: ``str``, name of the table, used in log messages.
    """

    def __init__(self, name):
        self.name = name
        self.exact = {}
        self.patterns = []

    def add(self, pattern, codec):
        matcher = re.compile(pattern)
        self.exact.setdefault(pattern, codec)
        self.patterns.append((matcher, codec))

    def lookup(self, manifest):
        codec = self.exact.get(manifest)
        if codec is not None:
            return codec
        for matcher, codec in self.patterns:
            if matcher.fullmatch(manifest):
                return codec
        return None

    def __len__(self):
        return len(self.patterns)


class Resolver:
    """Resolves ``(serializer_id, manifest)`` pairs to :class:`Decoder` functions.

    Resolution is memoized; the memo is guarded by a lock local to the resolver, so one instance can be shared
    by the threads of a single worker.

    In strict mode, a malformed binding or an unresolvable required manifest raises
    :class:`eventlens.errors.ConfigurationError` from the constructor, before any record is read. Otherwise the
    malformed binding is skipped with a warning.

    :param settings: :class:`SerializerSettings`, the configuration snapshot.
    :param custom_bindings: ``dict``, manifest pattern to :class:`Codec` or decode function.
    """

    def __init__(self, settings=None, custom_bindings=None):
        self.settings = settings or DEFAULT_SETTINGS
        self.strict = self.settings.strict
        self.custom = self._build_table('custom', (custom_bindings or {}).items())
        self.configured = self._build_table('configured', self.settings.bindings)
        self.default = self._default_codec(self.settings.default)
        self._cache = {}
        self._lock = RLock()
        self._check_required()

    def _build_table(self, name, bindings):
        table = BindingTable(name)
        for pattern, target in bindings:
            try:
                table.add(pattern, self._to_codec(target))
            except (re.error, ConfigurationError) as e:
                self._misconfigured('Invalid %s binding %r: %s' % (name, pattern, e), e)
        return table

    def _to_codec(self, target):
        if isinstance(target, Codec):
            return target
        if isinstance(target, str):
            codec = BUILTIN_CODECS.get(target)
            if codec is None:
                raise ConfigurationError('unknown codec %s' % target)
            return codec
        if callable(target):
            return FunctionCodec(target)
        raise ConfigurationError('a binding must name a codec or be a decode function, got %r' % (target,))

    def _default_codec(self, name):
        if name is None:
            return None
        try:
            return self._to_codec(name)
        except ConfigurationError as e:
            self._misconfigured('Invalid default codec: %s' % e, e)
        return None

    def _misconfigured(self, message, cause):
        if self.strict:
            raise ConfigurationError(message) from cause
        log.warning('%s. Binding ignored.', message)

    def _check_required(self):
        for serializer_id, manifest in self.settings.required_manifests:
            try:
                self.resolve(serializer_id, manifest)
            except DeserializationError as e:
                log.warning('Required manifest %s (serializer %d) has no binding: %s', manifest, serializer_id, e)

    def resolve(self, serializer_id, manifest):
        """Resolves the decoder for the given serializer id and manifest.

        :param serializer_id: ``int``, the serializer id of the record.
        :param manifest: ``str``, the manifest of the record.

        Returns :class:`Decoder`. Raises :class:`eventlens.errors.DeserializationError` if no binding and no
        default applies, or :class:`eventlens.errors.ConfigurationError` for the same condition in strict mode.
        """
        key = (serializer_id, manifest)
        with self._lock:
            decoder = self._cache.get(key)
            if decoder is None:
                decoder = self._cache[key] = self._resolve(serializer_id, manifest)
        return decoder

    def _resolve(self, serializer_id, manifest):
        codec = (self.custom.lookup(manifest)
                 or self.configured.lookup(manifest)
                 or DEFAULT_CODECS.get(serializer_id)
                 or self.default)
        if codec is None:
            message = 'No binding for manifest %r (serializer %s) and no default codec' % (manifest, serializer_id)
            if self.strict:
                raise ConfigurationError(message)
            raise DeserializationError(message, serializer_id, manifest)
        log.debug('Resolved manifest %r (serializer %s) to codec %s', manifest, serializer_id, codec.name)
        return Decoder(tag=codec.name, decode=_decode_fn(codec, serializer_id, manifest))

    def decode(self, record):
        """Decodes the payload of a :class:`eventlens.model.RawRecord`.
        """
        return self.resolve(record.serializer_id, record.manifest).decode(record.payload)


def _decode_fn(codec, serializer_id, manifest):
    def decode(payload):
        if payload is None:
            raise DeserializationError('Record has no payload', serializer_id, manifest)
        try:
            return codec.decode(payload, manifest)
        except DeserializationError:
            raise
        # pylint: disable=broad-except
        # custom codecs may fail with any error
        except Exception as e:
            raise DeserializationError('Cannot decode %r with codec %s: %s' % (manifest, codec.name, e),
                                       serializer_id, manifest) from e
    return decode


class ResolverFactory:
    """Builds one :class:`Resolver` per worker thread from an immutable settings snapshot.

    The factory itself holds no live resolver state that is shared across threads and can be passed to
    other workers; the per-thread resolvers are dropped when it is pickled.

    :param settings: :class:`SerializerSettings`, the configuration snapshot.
    :param custom_bindings: ``dict``, manifest pattern to :class:`Codec` or decode function.
    """

    def __init__(self, settings=None, custom_bindings=None):
        self.settings = settings or DEFAULT_SETTINGS
        self.custom_bindings = tuple((custom_bindings or {}).items())
        self._local = local()

    @property
    def strict(self):
        return self.settings.strict

    def create(self):
        """Builds a new :class:`Resolver`. Raises :class:`eventlens.errors.ConfigurationError` in strict mode for
        malformed or missing required bindings.
        """
        return Resolver(self.settings, dict(self.custom_bindings))

    def get(self):
        """Returns the resolver of the calling thread, building it on first use.
        """
        resolver = getattr(self._local, 'resolver', None)
        if resolver is None:
            resolver = self._local.resolver = self.create()
        return resolver

    def __getstate__(self):
        return {'settings': self.settings, 'custom_bindings': self.custom_bindings}

    def __setstate__(self, state):
        self.settings = state['settings']
        self.custom_bindings = state['custom_bindings']
        self._local = local()
