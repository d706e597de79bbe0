"""
--------------
eventlens.comm
--------------

Eventlens communication module.

Defines classes for building websocket servers and clients on top of an :mod:`asyncio` loop that runs in its own
thread:

* :class:`LoopThread` runs an event loop in a background thread.
* :class:`Server` an async server handling and managing WebSocket connections from multiple clients.
* :class:`Client` an async client connection to a server.

The public methods of :class:`Client` and :class:`Server` may be called from any thread.
"""

import asyncio
import json
from concurrent.futures import TimeoutError as FutureTimeoutError
from logging import getLogger
from threading import Thread

from websockets.asyncio.client import connect
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed


log = getLogger(__name__)


class LoopThread:
    """Runs an :mod:`asyncio` event loop in a separate thread.

    :param name: ``str``, name of the thread.
    """

    def __init__(self, name='eventlens-loop'):
        self.loop = asyncio.new_event_loop()
        self.thread = Thread(target=self._run, name=name, daemon=True)

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()
        self.loop.close()
        log.debug('Event loop %s is shut down.', self.thread.name)

    def start(self):
        self.thread.start()
        return self

    def run(self, coro, timeout=None):
        """Runs the coroutine in the loop and waits for its result.
        """
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def stop(self):
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join()


class Client:
    """Client represents a client connection to a websocket server.

    :param loop: :mod:`asyncio` event loop, running in another thread, to use for this client.
    :param host: ``str``, server hostname.
    :param port: ``int``, server port.
    :param secure: ``bool``, is the connection secure.
    :param path: ``str``, the request path - for example: ``"/subscribe/orders/0"``.
    :param recv: ``function``, receive handler. Called in the loop thread with every message received from the
        server.
    """

    def __init__(self, loop, host, port, secure=False, path=None, recv=None):
        self.loop = loop
        self.host = host
        self.port = port
        self.secure = secure
        self.path = path
        self.recv_handler = recv
        self.websocket = None
        self._is_open = False
        self._close_handlers = []

    async def _open_websocket(self):
        self.websocket = await connect(self._get_ws_url())
        self._is_open = True
        asyncio.ensure_future(self._recv())
        log.debug('[%s:%d]: connected', self.host, self.port)

    def connect(self, timeout=10):
        """Connect to the remote server.
        """
        asyncio.run_coroutine_threadsafe(self._open_websocket(), self.loop).result(timeout)

    def close(self, reason=None, timeout=10):
        """Close the connection to the remote server.

        Blocks until the closing handshake completes or ``timeout`` seconds pass. Must not be called from the loop
        thread.

        :param reason: ``str``, the reason for disconnecting. Defaults to ``"normal close"``.
        :param timeout: ``float``, seconds to wait for the connection to close.
        """
        reason = reason or 'normal close'
        self._is_open = False
        if self.websocket is not None and self.loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self.websocket.close(code=1000, reason=reason), self.loop)
            try:
                future.result(timeout)
            except FutureTimeoutError:
                log.warning('[%s:%d]: connection did not close within %s seconds', self.host, self.port, timeout)
        log.debug('[%s:%d]: explicitly closed. Reason=%s', self.host, self.port, reason)

    def _get_ws_url(self):
        url = 'wss://' if self.secure else 'ws://'
        url += self.host
        if self.port:
            url += ':' + str(self.port)
        if self.path:
            if self.path.startswith('/'):
                url += self.path
            else:
                url += '/' + self.path
        return url

    def send(self, message):
        """Send a ``str`` or ``bytes`` message to the remote server.

        Returns the :class:`asyncio.Handle` to the scheduled task for sending the actual data.
        """
        return self.loop.call_soon_threadsafe(self._call_send, message)

    def _call_send(self, message):
        asyncio.ensure_future(self.websocket.send(message))

    async def _recv(self):
        while self._is_open:
            try:
                message = await self.websocket.recv()
                self._process_message(message)
            except ConnectionClosed as wse:
                code = wse.rcvd.code if wse.rcvd else 1006
                reason = wse.rcvd.reason if wse.rcvd else None
                self._closed(code, reason)
                log.debug('[%s:%d] connection closed', self.host, self.port)
            # pylint: disable=broad-except
            # General case
            except Exception as e:
                log.exception(e)
                self._closed(1006, reason=str(e))

    def _process_message(self, message):
        if self.recv_handler:
            self.recv_handler(message)

    def on_close(self, handler):
        """Add close handler.

        The handler is called when the connection is closed either by the client or by the server:

        .. code-block:: python

            def callback(websocket, code, reason):
                pass

        """
        self._close_handlers.append(handler)

    def _closed(self, code=1000, reason=None):
        self._is_open = False
        for hnd in self._close_handlers:
            try:
                hnd(self.websocket, code, reason)
            except Exception as e:
                log.debug(e)

    def is_open(self):
        return self._is_open


class wsHandler:
    """Wrapper for an incoming websocket connection.

    Used by the :class:`Server` in the client connections life-cycle management.

    :param websocket: the underlying websocket server connection.
    :param path: ``str``, the request path of the websocket connection.
    """
    def __init__(self, websocket, path):
        self.ws = websocket
        self.path = path
        self.close_handlers = []

    def trigger(self):
        """Triggers the close handlers for this websocket.
        """
        for hnd in self.close_handlers:
            try:
                hnd(self.ws, self.path)
            # pylint: disable=broad-except
            except Exception as ex:
                log.debug(ex)

    def add_close_handler(self, hnd):
        self.close_handlers.append(hnd)


class Server:
    """Listens for and manages multiple client connections.

    Actions are registered per path prefix: an action registered on ``/subscribe`` receives the messages of
    connections to ``/subscribe`` and ``/subscribe/<anything>``.

    :param loop: :mod:`asyncio` event loop, running in another thread.
    :param host: ``str``, the hostname to bind to.
    :param port: ``int``, the port to listen on.
    """
    def __init__(self, loop, host='localhost', port=6434):
        self.loop = loop
        self.host = host
        self.port = port
        self.websockets = {}
        self.actions = {}
        self.server = None
        self._started = False

    def on_action(self, path, cb):
        """Register a callback for messages received on connections to ``path``.

        If multiple callbacks are registered on the same path, they are called in registration order and the
        response of each one is passed to the next:

        .. code-block:: python

            def callback(path, message, websocket, resp):
                return resp

        The last response, if not ``None``, is sent back to the client.
        """
        self.actions.setdefault(path, []).append(cb)

    async def _on_client_connection(self, websocket):
        path = websocket.request.path
        self.websockets[websocket] = wsHandler(websocket, path)
        try:
            while self._started:
                message = await websocket.recv()
                resp = self._process_req(path, message, websocket)
                if resp is not None:
                    await websocket.send(resp)
        except ConnectionClosed:
            log.debug('[Server:%s:%d] Closing websocket connection: %s', self.host, self.port, path)
        except Exception as e:
            log.error('[Server:%s:%d] Closing websocket connection because of unknown error: %s',
                      self.host, self.port, path)
            log.exception(e)
        finally:
            self._remove_websocket(websocket)

    def _remove_websocket(self, websocket):
        hnd = self.websockets.pop(websocket, None)
        if hnd is not None:
            hnd.trigger()

    def on_websocket_close(self, websocket, cb):
        """Register a close callback ``cb(websocket, path)`` for this websocket.

        Returns ``True`` if the callback was added; ``False`` if the websocket is not managed by this server.
        """
        hnd = self.websockets.get(websocket)
        if hnd is not None:
            hnd.add_close_handler(cb)
            return True
        return False

    def _process_req(self, path, message, websocket):
        resp = None
        for reg_path, actions in self.actions.items():
            if path == reg_path or path.startswith(reg_path.rstrip('/') + '/'):
                try:
                    for action in actions:
                        resp = action(path, message, websocket, resp)
                # pylint: disable=broad-except
                # Intended to be broad as it handles generic action
                except Exception as e:
                    log.exception(e)
                    return json.dumps({'error': str(e), 'type': type(e).__name__})
                return resp
        return json.dumps({'error': 'unknown path %s' % path, 'type': 'NotFound'})

    async def _serve(self):
        self.server = await serve(self._on_client_connection, self.host, self.port)
        self._started = True

    def start(self, timeout=10):
        """Starts the server.

        This call blocks until the server is started or an error occurs.
        """
        asyncio.run_coroutine_threadsafe(self._serve(), self.loop).result(timeout)
        log.info('Listening on %s:%d', self.host, self.port)

    async def _shutdown(self):
        self._started = False
        self.server.close()
        await self.server.wait_closed()

    def stop(self, timeout=10):
        """Stops the server.

        Closes all client websocket connections then shuts down the server.
        """
        if self.server is None:
            return
        asyncio.run_coroutine_threadsafe(self._shutdown(), self.loop).result(timeout)
        log.debug('All done. Server stopped.')
