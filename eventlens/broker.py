"""
----------------
eventlens.broker
----------------

Websocket commit-log broker and its client.

The :class:`Broker` serves an :class:`eventlens.commitlog.InMemoryCommitLog` over websockets:

* ``/publish/<topic>`` - every binary message is a framed record; it is appended to the partition of its stream id.
  The broker answers with ``{"partition": p, "offset": o}``.
* ``/partitions/<topic>`` - any message is answered with ``{"partitions": n}``.
* ``/subscribe/<topic>/<partition>`` - the first message carries the consumer parameters
  ``{"group_id": ..., "offset_reset": ...}``. The broker answers ``{"subscribed": true, "position": n}`` and then
  pushes ``{"offset": o, "key": k, "value": <base64 record>}`` for every record. The client acknowledges offsets
  with ``{"commit": o}``.

The broker never commits on its own: a pushed record has only reached the client buffer. Auto commit is done by
:class:`RemoteConsumer`, which commits the position of a poll when the next poll starts and on close.

Errors are answered with ``{"error": message, "type": error class}``.

:class:`RemoteCommitLog` implements :class:`eventlens.commitlog.CommitLog` on top of a broker, so that
:func:`eventlens.stream.event_stream` can consume it.
"""
import asyncio
import json
import queue
from base64 import b64encode, b64decode
from io import BytesIO
from logging import getLogger
from threading import Event as ThreadingEvent

from websockets.exceptions import ConnectionClosed

from eventlens.comm import Client, LoopThread, Server
from eventlens.commitlog import CommitLog, CommitLogConsumer, ConsumerSettings, InMemoryCommitLog, Message
from eventlens.errors import CommitLogError, ConfigurationError, NoOffsetError
from eventlens.model import RecordParser


log = getLogger(__name__)


class Broker:
    """Commit-log broker server.

    :param host: ``str``, hostname to bind to.
    :param port: ``int``, port to listen on.
    :param commit_log: :class:`eventlens.commitlog.InMemoryCommitLog`, the served log. A new one with
        ``partitions`` partitions per topic is created if not given.
    :param partitions: ``int``, default number of partitions of new topics.
    """

    def __init__(self, host='0.0.0.0', port=6434, commit_log=None, partitions=1):
        self.host = host
        self.port = port
        self.commit_log = commit_log if commit_log is not None else InMemoryCommitLog(partitions)
        self.parser = RecordParser()
        self.loop_thread = None
        self.server = None
        self.subscriptions = {}
        self._stopped = ThreadingEvent()

    def start(self):
        """Starts the broker in a background thread. Non blocking.
        """
        self.loop_thread = LoopThread(name='eventlens-broker').start()
        self.server = Server(loop=self.loop_thread.loop, host=self.host, port=self.port)
        self.server.on_action('/publish', self._publish)
        self.server.on_action('/partitions', self._partitions)
        self.server.on_action('/subscribe', self._subscribe)
        self.server.start()
        log.info('Broker started on %s:%d', self.host, self.port)

    def run(self):
        """Starts the broker and blocks until :meth:`stop` is called.
        """
        self.start()
        self._stopped.wait()

    def stop(self):
        if self.server is not None:
            self.server.stop()
        if self.loop_thread is not None:
            self.loop_thread.stop()
        self._stopped.set()
        log.info('Broker stopped')

    def _publish(self, path, message, websocket, resp):
        topic = _path_args(path, 1)[0]
        if isinstance(message, str):
            message = message.encode('utf-8')
        record = self.parser.parse_record(BytesIO(message), skip_payload=True)
        partition, offset = self.commit_log.publish(topic, record.key.stream_id, message)
        return json.dumps({'partition': partition, 'offset': offset})

    def _partitions(self, path, message, websocket, resp):
        topic = _path_args(path, 1)[0]
        return json.dumps({'partitions': self.commit_log.partitions_for(topic)})

    def _subscribe(self, path, message, websocket, resp):
        subscription = self.subscriptions.get(websocket)
        request = json.loads(message)
        if subscription is not None:
            if 'commit' in request:
                subscription['consumer'].commit(int(request['commit']))
            return None

        topic, partition = _path_args(path, 2)
        partition = int(partition)
        if not 0 <= partition < self.commit_log.partitions_for(topic):
            raise CommitLogError('Topic %s has no partition %d' % (topic, partition))
        settings = ConsumerSettings(group_id=request.get('group_id'),
                                    offset_reset=request.get('offset_reset', 'latest'),
                                    auto_commit=False)
        consumer = self.commit_log.consumer(topic, partition, settings)
        task = asyncio.ensure_future(self._push(websocket, consumer))
        self.subscriptions[websocket] = {'consumer': consumer, 'task': task}
        self.server.on_websocket_close(websocket, self._unsubscribe)
        log.info('Group %s subscribed to %s/%d at offset %d', settings.group_id, topic, partition, consumer.position)
        return json.dumps({'subscribed': True, 'position': consumer.position})

    def _unsubscribe(self, websocket, path):
        subscription = self.subscriptions.pop(websocket, None)
        if subscription is not None:
            subscription['task'].cancel()
            subscription['consumer'].close()
            log.debug('Unsubscribed %s', path)

    async def _push(self, websocket, consumer):
        loop = asyncio.get_running_loop()
        try:
            while not consumer.closed:
                messages = await loop.run_in_executor(None, consumer.poll, 500, 0.5)
                for message in messages:
                    await websocket.send(json.dumps({'offset': message.offset,
                                                     'key': message.key,
                                                     'value': b64encode(message.value).decode('ascii')}))
        except (CommitLogError, ConnectionClosed) as e:
            log.debug('Stopped pushing %s/%d: %s', consumer.topic, consumer.partition, e)


def _path_args(path, count):
    args = [arg for arg in path.split('/') if arg][1:]
    if len(args) != count:
        raise CommitLogError('Invalid request path %s' % path)
    return args


def parse_bootstrap(endpoints):
    """Returns ``(host, port)`` of the first server in the ``bootstrap.servers`` endpoint.
    """
    servers = endpoints.get('bootstrap.servers')
    if not servers:
        raise ConfigurationError('Missing bootstrap.servers endpoint')
    server = servers.split(',')[0].strip()
    host, _, port = server.rpartition(':')
    if not host or not port.isdigit():
        raise ConfigurationError('Invalid bootstrap server %r. Expected host:port' % server)
    return host, int(port)


class RemoteCommitLog(CommitLog):
    """Commit log served by a remote :class:`Broker`.

    :param endpoints: ``dict``, connection endpoints. ``bootstrap.servers`` holds ``host:port`` of the broker;
        ``security.protocol`` set to ``SSL`` connects over ``wss://``.
    :param timeout: ``float``, seconds to wait for the broker to answer requests.
    """

    def __init__(self, endpoints, timeout=10):
        self.host, self.port = parse_bootstrap(endpoints)
        self.secure = endpoints.get('security.protocol', '').upper() == 'SSL'
        self.timeout = timeout
        self.loop_thread = None

    def _loop(self):
        if self.loop_thread is None:
            self.loop_thread = LoopThread(name='eventlens-commitlog').start()
        return self.loop_thread.loop

    def client(self, path, recv):
        return Client(loop=self._loop(), host=self.host, port=self.port, secure=self.secure, path=path, recv=recv)

    def partitions_for(self, topic):
        responses = queue.Queue()
        client = self.client('/partitions/%s' % topic, responses.put)
        client.connect(self.timeout)
        try:
            client.send('{}')
            response = _check_response(json.loads(responses.get(timeout=self.timeout)))
            return int(response['partitions'])
        except queue.Empty as e:
            raise CommitLogError('No answer from broker %s:%d' % (self.host, self.port)) from e
        finally:
            client.close()

    def consumer(self, topic, partition, settings):
        consumer = RemoteConsumer(self, topic, partition, settings)
        consumer.subscribe()
        return consumer

    def close(self):
        if self.loop_thread is not None:
            self.loop_thread.stop()
            self.loop_thread = None


def _check_response(response):
    if 'error' in response:
        if response.get('type') == NoOffsetError.__name__:
            raise NoOffsetError(response['error'])
        raise CommitLogError(response['error'])
    return response


class RemoteConsumer(CommitLogConsumer):
    """Consumer of a topic partition served by a :class:`Broker`.

    The broker pushes the records as they are appended; they are buffered until polled. With ``auto_commit`` the
    position of a poll is sent to the broker when the next poll starts and on close.
    """

    def __init__(self, commit_log, topic, partition, settings):
        self.commit_log = commit_log
        self.topic = topic
        self.partition = partition
        self.settings = settings
        self.position = None
        self.buffer = queue.Queue()
        self.error = None
        self.closed = False
        self._uncommitted = None
        self._subscribed = ThreadingEvent()
        self.client = commit_log.client('/subscribe/%s/%d' % (topic, partition), self._on_message)
        self.client.on_close(self._on_close)

    def subscribe(self):
        self.client.connect(self.commit_log.timeout)
        self.client.send(json.dumps({'group_id': self.settings.group_id,
                                     'offset_reset': self.settings.offset_reset}))
        if not self._subscribed.wait(self.commit_log.timeout):
            self.close()
            raise CommitLogError('Subscription to %s/%d timed out' % (self.topic, self.partition))
        if self.error is not None:
            self.close()
            raise self.error

    def _on_message(self, message):
        try:
            data = _check_response(json.loads(message))
        except CommitLogError as e:
            self.error = e
            self._subscribed.set()
            return
        if data.get('subscribed'):
            self.position = data['position']
            self._subscribed.set()
        elif 'offset' in data:
            self.buffer.put(Message(self.topic, self.partition, data['offset'], data['key'],
                                    b64decode(data['value'])))

    def _on_close(self, websocket, code, reason):
        if not self.closed and code != 1000:
            self.error = CommitLogError('Connection to broker lost (%s): %s' % (code, reason))
        self._subscribed.set()

    def poll(self, max_records=500, timeout=0.0):
        if self.error is not None:
            raise self.error
        if self.closed:
            raise CommitLogError('Consumer of %s/%d is closed' % (self.topic, self.partition))
        if self._uncommitted is not None:
            self.commit(self._uncommitted)
            self._uncommitted = None
        messages = []
        try:
            messages.append(self.buffer.get(timeout=timeout) if timeout else self.buffer.get_nowait())
            while len(messages) < max_records:
                messages.append(self.buffer.get_nowait())
        except queue.Empty:
            pass
        if messages:
            self.position = messages[-1].offset + 1
            if self.settings.auto_commit:
                self._uncommitted = self.position
        return messages

    def commit(self, offset=None):
        self.client.send(json.dumps({'commit': self.position if offset is None else offset}))

    def close(self):
        if self.closed:
            return
        self.closed = True
        if self._uncommitted is not None and self.error is None:
            self.commit(self._uncommitted)
            self._uncommitted = None
        self.client.close()
