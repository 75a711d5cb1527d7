import asyncio, inspect, logging
from enum import Enum
from fastcore.basics import store_attr
import zmq, zmq.asyncio
from .events import KernelFault, KernelMessage
from .wire import DecodeError
from . import debug as _dbg_mod
from .debug import dbg

log = logging.getLogger("ipytui.transport")


class TransportError(RuntimeError): "A kernel socket could not connect, send or receive."
class ProtocolTimeout(TransportError): "The kernel stopped answering heartbeats, or can no longer be watched."


class Channel(str, Enum):
    SHELL = "shell"
    CONTROL = "control"
    IOPUB = "iopub"
    STDIN = "stdin"
    HB = "hb"

socket_types = {Channel.SHELL: zmq.DEALER, Channel.CONTROL: zmq.DEALER, Channel.STDIN: zmq.DEALER, Channel.IOPUB: zmq.SUB,
    Channel.HB: zmq.REQ}


async def maybe_await(value):
    "Await `value` if it is awaitable, else return it."
    return await value if inspect.isawaitable(value) else value


class Heartbeat:
    "Periodic echo probe; reports `ProtocolTimeout` via `on_lost` after `max_misses` consecutive misses."

    def __init__(self, context: zmq.asyncio.Context, addr:str, interval:float, max_misses:int, on_lost, process=None):
        store_attr()
        self.misses = 0
        self.responsive = True
        self.sock = None

    def _socket(self)->zmq.asyncio.Socket:
        sock = self.context.socket(zmq.REQ)
        sock.linger = 0
        sock.connect(self.addr)
        return sock

    def _reset_socket(self):
        # a REQ socket that missed its reply cannot send again
        self.sock.close(0)
        self.sock = self._socket()

    async def probe(self)->bool:
        "Send one ping; return whether the echo came back within `interval`."
        await self.sock.send(b"ping")
        if not await self.sock.poll(int(self.interval * 1000), zmq.POLLIN): return False
        await self.sock.recv()
        return True

    async def _process_alive(self)->bool:
        try: return bool(await maybe_await(self.process.is_alive()))
        except Exception as e:
            log.error("Kernel process check failed: %s", e)
            return False

    async def run(self):
        loop = asyncio.get_running_loop()
        try:
            self.sock = self._socket()
            while True:
                start = loop.time()
                if await self.probe():
                    if not self.responsive: log.info("Heartbeat recovered after %d missed probe(s)", self.misses)
                    self.misses, self.responsive = 0, True
                else:
                    self.misses += 1
                    self.responsive = False
                    log.warning("Heartbeat missed (%d/%d)", self.misses, self.max_misses)
                    self._reset_socket()
                    if self.misses >= self.max_misses:
                        await self.on_lost(ProtocolTimeout(f"no heartbeat reply for {self.misses} consecutive probes"))
                        return
                if self.process is not None and not await self._process_alive():
                    await self.on_lost(ProtocolTimeout("kernel process exited"))
                    return
                if (remaining := self.interval - (loop.time() - start)) > 0: await asyncio.sleep(remaining)
        except zmq.ZMQError as e:
            # without a heartbeat socket the kernel can no longer be watched
            log.error("Heartbeat socket failed: %s", e)
            await self.on_lost(ProtocolTimeout(f"heartbeat socket failed: {e}"))
        finally:
            if self.sock is not None: self.sock.close(0)
            self.sock = None


class KernelChannels:
    "Shell, control, iopub and stdin sockets plus the heartbeat, feeding decoded messages into `queue`."

    def __init__(self, connection, codec, queue: asyncio.Queue, config, process=None, context: zmq.asyncio.Context|None=None):
        store_attr("connection,codec,queue,config,process")
        self.context = context or zmq.asyncio.Context.instance()
        self.sockets = {}
        self.locks = {}
        self.tasks = []
        self.heartbeat = None
        self.iopub_ready = asyncio.Event()
        self.connected = False
        self.closed = False

    @property
    def responsive(self)->bool: return self.heartbeat is None or self.heartbeat.responsive

    def _connect_socket(self, channel: Channel)->zmq.asyncio.Socket:
        sock = self.context.socket(socket_types[channel])
        sock.linger = 0
        if channel is Channel.IOPUB: sock.setsockopt(zmq.SUBSCRIBE, b"")
        else: sock.identity = self.codec.session.bsession  # shared identity lets the kernel route stdin to us
        sock.connect(self.connection.addr(channel.value))
        return sock

    async def connect(self):
        "Connect all channels, then start one receive task per socket and the heartbeat."
        if self.closed: raise TransportError("channels already closed")
        if self.connected: return
        for channel in (Channel.SHELL, Channel.CONTROL, Channel.STDIN, Channel.IOPUB):
            try: self.sockets[channel] = self._connect_socket(channel)
            except zmq.ZMQError as e:
                await self.close()
                raise TransportError(f"cannot connect {channel.value} channel at {self.connection.addr(channel.value)}: {e}") from e
            self.locks[channel] = asyncio.Lock()
        for channel, sock in self.sockets.items():
            self.tasks.append(asyncio.create_task(self._recv_loop(channel, sock), name=f"{channel.value}-recv"))
        self.heartbeat = Heartbeat(self.context, self.connection.addr("hb"), self.config.hb_interval, self.config.hb_misses,
            self._heartbeat_lost, self.process)
        self.tasks.append(asyncio.create_task(self.heartbeat.run(), name="heartbeat"))
        self.connected = True
        dbg(f"channels connected session={self.codec.session_id}")

    async def send(self, channel: Channel, msg):
        "Encode and send `msg` on `channel`; sends on one channel are serialized."
        channel = Channel(channel)
        sock = self.sockets.get(channel)
        if self.closed or sock is None: raise TransportError(f"{channel.value} channel is not connected")
        frames = self.codec.encode(msg)
        _dbg_mod.tlog(log, f"{channel.value} send", msg)
        async with self.locks[channel]:
            try: await sock.send_multipart(frames)
            except zmq.ZMQError as e: raise TransportError(f"{channel.value} send failed: {e}") from e

    async def _recv_loop(self, channel: Channel, sock: zmq.asyncio.Socket):
        while True:
            try: frames = await sock.recv_multipart()
            except zmq.ZMQError as e:
                if self.closed: return
                log.error("%s receive failed: %s", channel.value, e)
                await self.queue.put(KernelFault(TransportError(f"{channel.value} receive failed: {e}"), channel, self))
                return
            try: msg = self.codec.decode(frames)
            except DecodeError as e:
                log.warning("Dropping undecodable %s message: %s", channel.value, e)
                continue
            _dbg_mod.tlog(log, f"{channel.value} recv", msg)
            if channel is Channel.IOPUB: self.iopub_ready.set()
            # a full queue parks this task, which leaves messages queued in zmq instead of dropping them
            await self.queue.put(KernelMessage(channel, msg, self))

    async def _heartbeat_lost(self, error: ProtocolTimeout):
        log.error("Kernel heartbeat lost: %s", error)
        await self.queue.put(KernelFault(error, Channel.HB, self))

    async def close(self):
        "Cancel receive and heartbeat tasks and close every socket; idempotent."
        if self.closed: return
        self.closed = True
        tasks, self.tasks = self.tasks, []
        for task in tasks: task.cancel()
        if tasks: await asyncio.gather(*tasks, return_exceptions=True)
        for channel, sock in self.sockets.items():
            # a queued shutdown_request still gets a moment to leave
            sock.close(1000 if channel is Channel.CONTROL else 0)
        self.sockets.clear()
        dbg(f"channels closed session={self.codec.session_id}")
