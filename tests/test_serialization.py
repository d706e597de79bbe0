from eventlens.serialization import (Resolver, ResolverFactory, SerializerSettings, DEFAULT_SETTINGS, BUILTIN_CODECS,
                                     BindingTable, FunctionCodec, JsonCodec, TextCodec)
from eventlens.model import EventKey, RawRecord
from eventlens.errors import ConfigurationError, DeserializationError
from threading import Thread
import pickle

import pytest


def _settings(strict=False, default='json', bindings=(), required_manifests=()):
    return SerializerSettings(strict=strict, default=default, bindings=bindings,
                              required_manifests=required_manifests)


def _tagged(tag):
    return FunctionCodec(lambda payload: tag, name=tag)


def test_binding_table_exact_beats_pattern():
    table = BindingTable('test')
    table.add('orders\\..*', 'pattern')
    table.add('orders.Created', 'exact')

    assert table.lookup('orders.Created') == 'exact'
    assert table.lookup('orders.Paid') == 'pattern'
    assert table.lookup('xorders.Paid') is None
    assert table.lookup('orders.Paid.v2') == 'pattern'


def test_binding_table_declaration_order():
    table = BindingTable('test')
    table.add('a.*', 'first')
    table.add('ab.*', 'second')

    assert table.lookup('abc') == 'first'


def test_builtin_codec_by_serializer_id():
    resolver = Resolver(_settings(default=None))

    assert resolver.resolve(1, 'any').tag == 'bytes'
    assert resolver.resolve(2, 'any').tag == 'text'
    assert resolver.resolve(3, 'any').tag == 'json'


def test_custom_bindings_first():
    resolver = Resolver(_settings(bindings=(('orders\\..*', 'text'),)),
                        custom_bindings={'orders\\..*': _tagged('custom'), 'orders.Created': _tagged('exact')})

    assert resolver.resolve(3, 'orders.Created').tag == 'exact'
    assert resolver.resolve(3, 'orders.Paid').tag == 'custom'


def test_configured_bindings_before_builtin():
    resolver = Resolver(_settings(bindings=(('audit\\..*', 'text'),)))

    assert resolver.resolve(3, 'audit.Line').tag == 'text'
    assert resolver.resolve(3, 'orders.Created').tag == 'json'


def test_default_codec():
    resolver = Resolver(_settings(default='text'))

    assert resolver.resolve(99, 'unknown').tag == 'text'


def test_no_binding_no_default():
    resolver = Resolver(_settings(default=None))

    with pytest.raises(DeserializationError) as e:
        resolver.resolve(99, 'X')
    assert e.value.serializer_id == 99
    assert e.value.manifest == 'X'


def test_no_binding_no_default_strict():
    resolver = Resolver(_settings(strict=True, default=None))

    with pytest.raises(ConfigurationError):
        resolver.resolve(99, 'X')


def test_strict_required_manifest_unbound():
    with pytest.raises(ConfigurationError):
        Resolver(_settings(strict=True, default=None, required_manifests=((99, 'X'),)))


def test_required_manifest_unbound_lenient():
    resolver = Resolver(_settings(default=None, required_manifests=((99, 'X'),)))
    assert resolver.strict is False


def test_malformed_binding():
    resolver = Resolver(_settings(bindings=(('(', 'json'), ('a', 'no-such-codec'), ('b', 'text'))))
    assert len(resolver.configured) == 1
    assert resolver.resolve(3, 'b').tag == 'text'

    with pytest.raises(ConfigurationError):
        Resolver(_settings(strict=True, bindings=(('(', 'json'),)))
    with pytest.raises(ConfigurationError):
        Resolver(_settings(strict=True, bindings=(('a', 'no-such-codec'),)))
    with pytest.raises(ConfigurationError):
        Resolver(_settings(strict=True, default='no-such-codec'))


def test_resolve_is_memoized():
    resolver = Resolver()

    first = resolver.resolve(3, 'orders.Created')
    second = resolver.resolve(3, 'orders.Created')

    assert first is second
    assert first.decode(b'{"a": 1}') == second.decode(b'{"a": 1}') == {'a': 1}


def test_builtin_round_trip():
    values = {'bytes': b'\x00\x01', 'text': 'zdravo', 'json': {'total': 10, 'items': [1, 2]}}
    resolver = Resolver()

    for name, codec in BUILTIN_CODECS.items():
        payload = codec.encode(values[name])
        assert resolver.resolve(codec.serializer_id, 'm').decode(payload) == values[name]


def test_custom_round_trip():
    codec = FunctionCodec(decode_fn=lambda payload: payload.decode('utf-8')[::-1],
                          encode_fn=lambda value: value[::-1].encode('utf-8'), name='reversed')
    resolver = Resolver(custom_bindings={'rev\\..*': codec})

    assert resolver.resolve(7, 'rev.Name').decode(codec.encode('hello')) == 'hello'


def test_plain_function_binding():
    def upper(payload):
        return payload.decode('utf-8').upper()

    resolver = Resolver(custom_bindings={'shout': upper})

    decoder = resolver.resolve(2, 'shout')
    assert decoder.tag == 'upper'
    assert decoder.decode(b'hi') == 'HI'


def test_decode_errors_are_wrapped():
    resolver = Resolver()

    with pytest.raises(DeserializationError) as e:
        resolver.resolve(3, 'orders.Created').decode(b'{corrupt')
    assert e.value.manifest == 'orders.Created'
    assert e.value.serializer_id == 3

    with pytest.raises(DeserializationError):
        resolver.resolve(3, 'orders.Created').decode(None)

    with pytest.raises(DeserializationError):
        resolver.resolve(2, 'text').decode(b'\xff\xfe')


def test_decode_record():
    record = RawRecord(EventKey('a', 0, 1), 3, 'm', JsonCodec().encode({'x': 1}))
    assert Resolver().decode(record) == {'x': 1}


def test_text_codec_encoding():
    codec = TextCodec(encoding='latin-1')
    assert codec.decode(codec.encode('é'), 'm') == 'é'


def test_settings_from_config():
    config = {
        'eventlens': {
            'serialization': {
                'strict': True,
                'default': None,
                'bindings': {'orders\\..*': 'json', 'audit': 'text'},
                'required-manifests': [{'serializer': '3', 'manifest': 'orders.Created'}],
            }
        }
    }
    settings = SerializerSettings.from_config(config)

    assert settings.strict is True
    assert settings.default is None
    assert settings.bindings == (('orders\\..*', 'json'), ('audit', 'text'))
    assert settings.required_manifests == ((3, 'orders.Created'),)

    assert SerializerSettings.from_config(config, strict=False).strict is False


def test_settings_from_empty_config():
    assert SerializerSettings.from_config({}) == DEFAULT_SETTINGS


def test_settings_from_invalid_config():
    for section in [[], {'bindings': ['json']}, {'required-manifests': [{'manifest': 'x'}]},
                    {'required-manifests': [{'serializer': 'three', 'manifest': 'x'}]}]:
        with pytest.raises(ConfigurationError):
            SerializerSettings.from_config({'eventlens': {'serialization': section}})


def test_resolver_factory_per_thread():
    factory = ResolverFactory()
    resolvers = []

    def worker():
        resolvers.append((factory.get(), factory.get()))

    threads = [Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    (first, again), (other, _) = resolvers
    assert first is again
    assert first is not other


def test_resolver_factory_create_fails_fast():
    factory = ResolverFactory(_settings(strict=True, default=None, required_manifests=((99, 'X'),)))
    assert factory.strict

    with pytest.raises(ConfigurationError):
        factory.create()


def test_resolver_factory_pickle():
    factory = ResolverFactory(_settings(bindings=(('audit', 'text'),)))
    factory.get()

    restored = pickle.loads(pickle.dumps(factory))

    assert restored.settings == factory.settings
    assert restored.get() is not factory.get()
    assert restored.get().resolve(3, 'audit').tag == 'text'
