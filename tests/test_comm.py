from eventlens.comm import Client, Server, LoopThread
from unittest import mock
from threading import Event
import asyncio
import json
import queue
import socket


def _free_port():
    with socket.socket() as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


def test_client_ws_url():
    assert Client(loop=None, host='localhost', port=1122, path='/path')._get_ws_url() == 'ws://localhost:1122/path'
    assert Client(loop=None, host='localhost', port=1122, path='path')._get_ws_url() == 'ws://localhost:1122/path'
    assert Client(loop=None, host='example.com', port=None, secure=True)._get_ws_url() == 'wss://example.com'


def test_client_close_handlers():
    mock_close_handler = mock.MagicMock()
    mock_websocket = mock.MagicMock()

    client = Client(host='localhost', port=11223, loop=None)
    client.websocket = mock_websocket
    client._is_open = True

    client.on_close(mock_close_handler)

    client._closed(code=1006, reason='unit test')

    mock_close_handler.assert_called_once_with(mock_websocket, 1006, 'unit test')
    assert not client.is_open()


def test_server_process_req():
    ser = Server(loop=None, host='localhost', port=11224)
    websocket = mock.MagicMock()

    def first(path, message, ws, resp):
        assert ws is websocket
        assert resp is None
        return 'first:' + message

    def second(path, message, ws, resp):
        return resp + ':second'

    def broken(path, message, ws, resp):
        raise ValueError('broken action')

    ser.on_action('/test-path', first)
    ser.on_action('/test-path', second)
    ser.on_action('/broken', broken)

    assert ser._process_req('/test-path', 'msg', websocket) == 'first:msg:second'
    assert ser._process_req('/test-path/sub/1', 'msg', websocket) == 'first:msg:second'
    assert json.loads(ser._process_req('/broken', 'msg', websocket)) == {'error': 'broken action',
                                                                          'type': 'ValueError'}
    assert json.loads(ser._process_req('/test-pathology', 'msg', websocket))['type'] == 'NotFound'


def test_server_on_websocket_close_unknown():
    ser = Server(loop=None)
    assert ser.on_websocket_close(mock.MagicMock(), mock.MagicMock()) is False


def test_loop_thread_run():
    loop_thread = LoopThread(name='test-loop').start()

    async def answer():
        await asyncio.sleep(0.01)
        return 42

    try:
        assert loop_thread.run(answer(), timeout=5) == 42
    finally:
        loop_thread.stop()

    assert not loop_thread.thread.is_alive()


def test_client_server_round_trip():
    port = _free_port()
    loop_thread = LoopThread(name='test-loop').start()
    ser = Server(loop=loop_thread.loop, host='127.0.0.1', port=port)
    closed = Event()
    paths = []

    def echo(path, message, websocket, resp):
        paths.append(path)
        ser.on_websocket_close(websocket, lambda ws, p: closed.set())
        return 'echo:' + message

    ser.on_action('/echo', echo)
    ser.start()

    responses = queue.Queue()
    client = Client(loop=loop_thread.loop, host='127.0.0.1', port=port, path='/echo/1', recv=responses.put)
    try:
        client.connect(timeout=5)
        assert client.is_open()

        client.send('hello')
        assert responses.get(timeout=5) == 'echo:hello'
        assert paths == ['/echo/1']

        client.close(reason='test-close')
        assert closed.wait(5)
        assert not client.is_open()
    finally:
        ser.stop()
        loop_thread.stop()
