from eventlens.commitlog import ConsumerSettings, InMemoryCommitLog, Message, route
from eventlens.errors import ConfigurationError, CommitLogError, NoOffsetError
from threading import Timer

import pytest


def _settings(group_id='g1', offset_reset='earliest', auto_commit=True):
    return ConsumerSettings(group_id=group_id, offset_reset=offset_reset, auto_commit=auto_commit)


def test_consumer_settings():
    settings = ConsumerSettings('g1', endpoints={'bootstrap.servers': 'localhost:6434'})

    assert settings.offset_reset == 'latest'
    assert settings.auto_commit is True
    assert settings.endpoints == {'bootstrap.servers': 'localhost:6434'}


def test_consumer_settings_invalid():
    with pytest.raises(ConfigurationError):
        ConsumerSettings('')
    with pytest.raises(ConfigurationError):
        ConsumerSettings('g1', offset_reset='smallest')
    with pytest.raises(ConfigurationError):
        ConsumerSettings('g1', endpoints={'bootstrap.servers': 6434})


def test_route_is_stable():
    assert route('order-1', 8) == route('order-1', 8)
    assert all(0 <= route('order-%d' % i, 3) < 3 for i in range(100))
    assert len({route('order-%d' % i, 3) for i in range(100)}) == 3


def test_publish_routes_by_key():
    commit_log = InMemoryCommitLog(partitions=4)

    placements = [commit_log.publish('events', 'order-1', b'%d' % i) for i in range(5)]

    assert {partition for partition, _ in placements} == {route('order-1', 4)}
    assert [offset for _, offset in placements] == [0, 1, 2, 3, 4]
    assert commit_log.end_offset('events', route('order-1', 4)) == 5


def test_publish_explicit_partition():
    commit_log = InMemoryCommitLog(partitions=2)

    assert commit_log.publish('events', 'k', b'v', partition=1) == (1, 0)
    with pytest.raises(CommitLogError):
        commit_log.publish('events', 'k', b'v', partition=2)


def test_read():
    commit_log = InMemoryCommitLog()
    for i in range(5):
        commit_log.publish('events', 'k', b'%d' % i)

    messages = commit_log.read('events', 0, 1, 2)

    assert messages == [Message('events', 0, 1, 'k', b'1'), Message('events', 0, 2, 'k', b'2')]
    assert commit_log.read('events', 0, 5, 10) == []
    with pytest.raises(CommitLogError):
        commit_log.read('unknown', 0, 0, 10)


def test_read_waits_for_records():
    commit_log = InMemoryCommitLog()
    commit_log.create_topic('events')
    timer = Timer(0.1, commit_log.publish, args=('events', 'k', b'late'))
    timer.start()

    messages = commit_log.read('events', 0, 0, 10, timeout=5)
    timer.join()

    assert [m.value for m in messages] == [b'late']


def test_offset_reset_earliest():
    commit_log = InMemoryCommitLog()
    commit_log.publish('events', 'k', b'old')

    with commit_log.consumer('events', 0, _settings(offset_reset='earliest')) as consumer:
        assert [m.value for m in consumer.poll()] == [b'old']


def test_offset_reset_latest():
    commit_log = InMemoryCommitLog()
    commit_log.publish('events', 'k', b'old')

    with commit_log.consumer('events', 0, _settings(offset_reset='latest')) as consumer:
        assert consumer.poll() == []
        commit_log.publish('events', 'k', b'new')
        assert [m.value for m in consumer.poll()] == [b'new']


def test_offset_reset_none():
    commit_log = InMemoryCommitLog()
    commit_log.create_topic('events')

    with pytest.raises(NoOffsetError):
        commit_log.consumer('events', 0, _settings(offset_reset='none'))

    commit_log.commit('g1', 'events', 0, 0)
    with commit_log.consumer('events', 0, _settings(offset_reset='none')) as consumer:
        assert consumer.position == 0


def test_auto_commit():
    commit_log = InMemoryCommitLog()
    for i in range(3):
        commit_log.publish('events', 'k', b'%d' % i)

    consumer = commit_log.consumer('events', 0, _settings())
    assert len(consumer.poll(max_records=2)) == 2
    assert commit_log.committed('g1', 'events', 0) is None

    assert len(consumer.poll(max_records=2)) == 1
    assert commit_log.committed('g1', 'events', 0) == 2

    consumer.close()
    assert commit_log.committed('g1', 'events', 0) == 3
    with pytest.raises(CommitLogError):
        consumer.poll()


def test_manual_commit():
    commit_log = InMemoryCommitLog()
    for i in range(3):
        commit_log.publish('events', 'k', b'%d' % i)

    consumer = commit_log.consumer('events', 0, _settings(auto_commit=False))
    consumer.poll()
    consumer.close()
    assert commit_log.committed('g1', 'events', 0) is None

    consumer = commit_log.consumer('events', 0, _settings(auto_commit=False))
    consumer.poll(max_records=1)
    consumer.commit()
    assert commit_log.committed('g1', 'events', 0) == 1
    consumer.commit(3)
    assert commit_log.committed('g1', 'events', 0) == 3


def test_group_resumes_from_committed_offset():
    commit_log = InMemoryCommitLog()
    for i in range(3):
        commit_log.publish('events', 'k', b'%d' % i)
    commit_log.commit('g1', 'events', 0, 2)

    with commit_log.consumer('events', 0, _settings(offset_reset='earliest')) as consumer:
        assert [m.offset for m in consumer.poll()] == [2]
    with commit_log.consumer('events', 0, _settings(group_id='g2')) as consumer:
        assert [m.offset for m in consumer.poll()] == [0, 1, 2]
