import asyncio
import logging
import struct
import warnings

import aiokafka07.errors as Errors
from aiokafka07.protocol.api import Request, Response
from aiokafka07.protocol.fetch import FetchRequest, FetchResponse
from aiokafka07.protocol.offset import OffsetsRequest
from aiokafka07.util import get_running_loop, wait_for

__all__ = ["Kafka07Connection", "create_conn", "CloseReason"]


READER_LIMIT = 2**16
DEFAULT_BUFFER_SIZE = 1024 * 1024


class CloseReason:

    CONNECTION_BROKEN = 0
    CONNECTION_TIMEOUT = 1
    IDLE_DROP = 2
    SHUTDOWN = 3
    INVALIDATED = 4


async def create_conn(
    host,
    port,
    *,
    request_timeout_ms=30000,
    buffer_size=DEFAULT_BUFFER_SIZE,
):
    conn = Kafka07Connection(
        host,
        port,
        request_timeout_ms=request_timeout_ms,
        buffer_size=buffer_size,
    )
    await conn.connect()
    return conn


class Kafka07Connection:
    """Connection to a single Kafka 0.7 broker.

    Like the 0.7 ``SimpleConsumer`` it connects lazily on the first request
    and reconnects on the next request after a failure closed it. The 0.7
    protocol has no correlation ids, so only one request may be on the wire at
    a time; requests are serialised by a lock.

    Arguments:
        host (str): broker host
        port (int): broker port
        request_timeout_ms (int): timeout for connecting and for each
            request-response round trip. Default: 30000.
        buffer_size (int): default ``max_size`` of fetch requests.
            Default: 1048576.
    """

    log = logging.getLogger(__name__)

    _writer = None  # For __del__ to work properly, just in case

    def __init__(
        self,
        host,
        port,
        *,
        request_timeout_ms=30000,
        buffer_size=DEFAULT_BUFFER_SIZE,
    ):
        self._host = host
        self._port = port
        self._request_timeout = request_timeout_ms / 1000
        self._buffer_size = buffer_size

        self._loop = None
        self._reader = self._writer = None
        self._lock = asyncio.Lock()
        self._in_flight = False
        self._last_action = None

    def __del__(self, _warnings=warnings):
        if self.connected():
            _warnings.warn(
                f"Unclosed Kafka07Connection {self!r}", ResourceWarning, source=self
            )
            if self._loop.is_closed():
                return
            self.close()

    def __repr__(self):
        return f"<Kafka07Connection host={self.host} port={self.port}>"

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def buffer_size(self):
        return self._buffer_size

    @property
    def last_action(self):
        """Loop time of the last completed request, `None` if never used."""
        return self._last_action

    def connected(self):
        return bool(self._reader is not None and not self._reader.at_eof())

    def in_flight(self):
        return self._in_flight

    async def connect(self):
        self._loop = get_running_loop()
        self.log.debug("Connecting to broker at %s:%s", self._host, self._port)
        try:
            self._reader, self._writer = await wait_for(
                asyncio.open_connection(self._host, self._port, limit=READER_LIMIT),
                self._request_timeout,
            )
        except asyncio.TimeoutError as err:
            raise Errors.KafkaConnectionError(
                f"Connection to {self._host}:{self._port} timed out"
            ) from err
        except OSError as err:
            raise Errors.KafkaConnectionError(
                f"Unable to connect to {self._host}:{self._port}: {err}"
            ) from err
        self._last_action = self._loop.time()

    async def send(self, request: Request) -> Response:
        """Send a request and wait for its response.

        Raises:
            aiokafka07.errors.KafkaConnectionError
            aiokafka07.errors.KafkaTimeoutError
            aiokafka07.errors.KafkaProtocolError
        """
        async with self._lock:
            self._in_flight = True
            try:
                if not self.connected():
                    await self.connect()
                return await wait_for(
                    self._send_and_receive(request), self._request_timeout
                )
            except asyncio.TimeoutError as err:
                self.close(reason=CloseReason.CONNECTION_TIMEOUT)
                raise Errors.KafkaTimeoutError(
                    f"Request to {self._host}:{self._port} timed out"
                ) from err
            except (OSError, EOFError) as err:
                self.close(reason=CloseReason.CONNECTION_BROKEN)
                raise Errors.KafkaConnectionError(
                    f"Connection at {self._host}:{self._port} broken: {err}"
                ) from err
            finally:
                self._in_flight = False
                if self._loop is not None:
                    self._last_action = self._loop.time()

    async def _send_and_receive(self, request):
        self._writer.write(request.to_frame())
        await self._writer.drain()
        self.log.debug("%s Request: %s", self, request)

        resp = await self._reader.readexactly(4)
        (size,) = struct.unpack(">i", resp)
        if size < 2:
            self.close(reason=CloseReason.CONNECTION_BROKEN)
            raise Errors.KafkaProtocolError(f"Invalid response size {size}")
        resp = await self._reader.readexactly(size)
        try:
            response = request.RESPONSE_TYPE.decode(resp)
        except ValueError as err:
            self.close(reason=CloseReason.CONNECTION_BROKEN)
            raise Errors.KafkaProtocolError(
                f"Malformed response from {self._host}:{self._port}: {err}"
            ) from err
        self.log.debug("%s Response: %s", self, response)
        return response

    async def fetch(self, topic, partition, offset, max_size=None) -> FetchResponse:
        if max_size is None:
            max_size = self._buffer_size
        return await self.send(FetchRequest(topic, partition, offset, max_size))

    async def offsets_before(self, topic, partition, time, max_offsets):
        """Returns up to `max_offsets` offsets before `time`.

        Raises the error matching the broker error code, if any.
        """
        response = await self.send(
            OffsetsRequest(topic, partition, time, max_offsets)
        )
        error_type = Errors.for_code(response.error_code)
        if error_type is not Errors.NoError:
            raise error_type(
                f"Offsets request for {topic}-{partition} failed on"
                f" {self._host}:{self._port}"
            )
        return response.offsets

    def close(self, reason=None):
        if self._writer is not None:
            self.log.debug(
                "Closing connection at %s:%s (reason %s)",
                self._host,
                self._port,
                reason,
            )
            self._writer.close()
            self._writer = self._reader = None
