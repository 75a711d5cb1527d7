"""Client-side kernel session: request correlation, kernel state and lifecycle.

`KernelSession.process` is the only place kernel traffic changes session state. Each queued item is turned into
notices (`ExecutionStarted`, `ExecutionOutput`, `ExecutionComplete`, ...) that a UI applies to its model.
"""
import asyncio, itertools, logging, time
from enum import Enum
from .config import ClientConfig
from .connection import ConnectionInfo
from .correlation import CorrelationTable, Pending
from .events import (CompletionResult, ExecutionComplete, ExecutionOutput, ExecutionStarted, InputRequested, KernelFault,
    KernelInfo, KernelStatusChanged, RequestAbandoned, UnattributedMessage)
from .transport import Channel, KernelChannels, ProtocolTimeout, TransportError, maybe_await
from .wire import Codec, Message
from . import debug as _dbg_mod
from .debug import dbg

log = logging.getLogger("ipytui.session")


class KernelState(str, Enum):
    STARTING = "starting"
    IDLE = "idle"
    BUSY = "busy"
    RESTARTING = "restarting"
    DEAD = "dead"


output_types = {"stream", "display_data", "update_display_data", "execute_result", "error", "clear_output"}
reply_kinds = dict(execute_reply="execute_request", complete_reply="complete_request", kernel_info_reply="kernel_info_request")


class RestartFailed(TransportError):
    "The kernel did not come back after a restart; `notices` holds everything the restart reported, ending in `dead`."
    def __init__(self, message:str, notices: list):
        super().__init__(message)
        self.notices = notices


class KernelSession:
    "One client connection to one kernel; owns the channels, the queue they feed and the correlation table."

    def __init__(self, connection: ConnectionInfo, process=None, config: ClientConfig|None=None, channels=None):
        self.connection = connection
        self.kernel_process = process
        self.config = config or ClientConfig.from_env()
        self.codec = Codec.from_connection(connection)
        self.queue = asyncio.Queue(maxsize=self.config.queue_max)
        self.pending = CorrelationTable()
        self.state = KernelState.STARTING
        self.execution_count = 0
        self.kernel_info_reply = None
        self.channels = None
        self.channels_factory = channels or (lambda session: KernelChannels(session.connection, session.codec, session.queue,
            session.config, session.kernel_process))
        self.tokens = itertools.count(1)
        self.nudges = set()

    @property
    def session_id(self)->str: return self.codec.session_id

    @property
    def responsive(self)->bool: return self.channels is not None and self.channels.responsive

    def _channels(self):
        if self.state is KernelState.DEAD: raise TransportError("kernel is dead")
        if self.channels is None: raise TransportError("session is not connected")
        return self.channels

    def _set_state(self, state: KernelState)->list:
        if state is self.state: return []
        log.info("Kernel state %s -> %s", self.state.value, state.value)
        self.state = state
        return [KernelStatusChanged(state)]

    def _abandon(self, reason:str)->list:
        self.nudges.clear()
        drained = self.pending.cancel_all()
        if drained: log.info("Abandoning %d pending request(s): %s", len(drained), reason)
        return [RequestAbandoned(e.msg_id, e.kind, e.context, reason) for e in drained]

    async def connect(self):
        "Create and connect the channel set; a no-op when already connected."
        if self.state is KernelState.DEAD: raise TransportError("kernel is dead")
        if self.channels is not None: return
        channels = self.channels_factory(self)
        await channels.connect()
        self.channels = channels

    async def start(self, timeout:float|None=None):
        await self.connect()
        await self.wait_for_ready(timeout)

    async def wait_for_ready(self, timeout:float|None=None):
        "Nudge the kernel with `kernel_info_request` until IOPub delivers something, so no early output is missed."
        timeout = self.config.ready_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        ready = self._channels().iopub_ready
        while not ready.is_set():
            remaining = deadline - loop.time()
            if remaining <= 0: raise TransportError(f"kernel did not become ready within {timeout}s")
            # nudges stay out of the table so they are never reported back as abandoned
            self.nudges.add(await self._request(Channel.SHELL, "kernel_info_request", {}, track=False))
            try: await asyncio.wait_for(ready.wait(), min(0.2, remaining))
            except asyncio.TimeoutError: pass
        dbg(f"kernel ready session={self.session_id}")

    async def _request(self, channel: Channel, msg_type:str, content: dict, context=None, parent=None, track=True)->str:
        channels = self._channels()
        msg = self.codec.msg(msg_type, content, parent=parent)
        if track: self.pending.register(msg.msg_id, msg_type, context, next(self.tokens))
        try: await channels.send(channel, msg)
        except TransportError:
            self.pending.discard(msg.msg_id)
            raise
        return msg.msg_id

    async def execute(self, code:str, context=None, silent:bool=False, store_history:bool=True, stop_on_error:bool=True,
        user_expressions: dict|None=None)->str:
        "Send `code` for execution on Shell and return the request id."
        content = dict(code=code, silent=silent, store_history=store_history, user_expressions=user_expressions or {},
            allow_stdin=self.config.allow_stdin, stop_on_error=stop_on_error)
        return await self._request(Channel.SHELL, "execute_request", content, context)

    async def complete(self, code:str, cursor_pos:int|None=None, context=None)->str:
        if cursor_pos is None: cursor_pos = len(code)
        return await self._request(Channel.SHELL, "complete_request", dict(code=code, cursor_pos=cursor_pos), context)

    async def kernel_info(self, context=None)->str: return await self._request(Channel.SHELL, "kernel_info_request", {}, context)

    async def interrupt(self)->str:
        "Ask the kernel to interrupt the running cell; the execute entry stays until its reply arrives."
        return await self._request(Channel.CONTROL, "interrupt_request", {}, track=False)

    async def input(self, value:str, parent: Message|None=None)->str:
        "Answer a kernel `input_request` (`parent`) with `value`."
        return await self._request(Channel.STDIN, "input_reply", dict(value=value), parent=parent, track=False)

    async def shutdown(self, restart:bool=False)->list:
        "Ask the kernel to stop (or restart), drain pending requests and tear down the channels."
        channels = self._channels()
        try: await self._request(Channel.CONTROL, "shutdown_request", dict(restart=restart), track=False)
        except TransportError as e: log.warning("shutdown_request not sent: %s", e)
        notices = self._set_state(KernelState.RESTARTING if restart else KernelState.DEAD)
        notices += self._abandon("restart" if restart else "shutdown")
        self.channels = None
        await channels.close()
        if not restart: return notices
        self.execution_count = 0
        proc = self.kernel_process
        try:
            if proc is not None and hasattr(proc, "restart"): await maybe_await(proc.restart())
            await self.connect()
            await self.wait_for_ready()
        except Exception as e:
            log.error("Kernel restart failed: %s", e)
            raise RestartFailed(f"kernel restart failed: {e}", notices + await self._die("dead")) from e
        return notices

    async def restart(self)->list: return await self.shutdown(restart=True)

    async def close(self)->list:
        "Disconnect without asking the kernel to stop; pending requests are abandoned."
        notices = self._abandon("shutdown")
        channels, self.channels = self.channels, None
        if channels is not None: await channels.close()
        return notices

    def expire(self, now:float|None=None)->list:
        "Abandon completion requests the kernel has not answered within `complete_timeout`."
        now = time.monotonic() if now is None else now
        stale = self.pending.expired(("complete_request",), self.config.complete_timeout, now)
        for entry in stale: log.warning("complete_request %s timed out", entry.msg_id)
        # IOPub may drop the closing idle; an answered execute is already complete for the UI
        for entry in self.pending.unsettled(self.config.idle_grace, now):
            log.info("execute_request %s saw no idle status %.1fs after its reply", entry.msg_id, self.config.idle_grace)
            self.pending.discard(entry.msg_id)
        return [RequestAbandoned(e.msg_id, e.kind, e.context, "timeout") for e in stale]

    async def process(self, item)->list:
        "Apply one queued item to the session; the resulting notices are returned and attached to `item.notices`."
        if isinstance(item, KernelFault): notices = await self._on_fault(item)
        elif item.source is not None and item.source is not self.channels:
            log.debug("Dropping %s from closed channels", item.msg.msg_type)
            notices = []
        else:
            channel, msg = Channel(item.channel), item.msg
            _dbg_mod.tlog(log, f"{channel.value} process", msg)
            if channel is Channel.IOPUB: notices = self._on_iopub(msg)
            elif channel is Channel.STDIN: notices = await self._on_stdin(msg)
            else: notices = self._on_reply(msg, channel)
        item.notices.extend(notices)
        return notices

    async def _on_fault(self, fault: KernelFault)->list:
        if fault.source is not None and fault.source is not self.channels:
            log.debug("Ignoring fault from closed channels: %s", fault.error)
            return []
        if not isinstance(fault.error, ProtocolTimeout):
            log.warning("Kernel transport fault: %s", fault.error)
            return []
        if self.state is KernelState.DEAD: return []
        return await self._die("dead")

    async def _die(self, reason:str)->list:
        notices = self._set_state(KernelState.DEAD) + self._abandon(reason)
        channels, self.channels = self.channels, None
        if channels is not None: await channels.close()
        return notices

    def _started(self, entry: Pending)->list:
        if entry.kind != "execute_request" or entry.started: return []
        entry.started = True
        return [ExecutionStarted(entry.msg_id, entry.context)]

    def _on_status(self, execution_state:str, entry: Pending|None)->list:
        notices = []
        # busy during startup belongs to the readiness nudges; the state waits for the first idle
        if execution_state == "idle" and self.state is not KernelState.DEAD: notices += self._set_state(KernelState.IDLE)
        elif execution_state == "busy" and self.state in (KernelState.IDLE, KernelState.BUSY): notices += self._set_state(KernelState.BUSY)
        if entry is None: return notices
        if execution_state == "busy": notices += self._started(entry)
        elif execution_state == "idle":
            entry.idle = True
            if entry.kind == "execute_request" and entry.replied: self.pending.resolve(entry.msg_id)
        return notices

    def _on_iopub(self, msg: Message)->list:
        entry = self.pending.get(msg.parent_id)
        notices = []
        if msg.msg_type == "status": notices += self._on_status(msg.content.execution_state, entry)
        elif entry is not None and msg.msg_type == "execute_input": notices += self._started(entry)
        elif entry is not None and msg.msg_type in output_types:
            notices += self._started(entry)
            notices.append(ExecutionOutput(entry.msg_id, msg.content, entry.context))
        if entry is None and msg.parent_id not in self.nudges: notices.append(UnattributedMessage(msg, Channel.IOPUB))
        return notices

    def _on_reply(self, msg: Message, channel: Channel)->list:
        if msg.parent_id in self.nudges and msg.msg_type == "kernel_info_reply":
            self.kernel_info_reply = msg.content
            return []
        entry = self.pending.get(msg.parent_id)
        if entry is None or reply_kinds.get(msg.msg_type) != entry.kind:
            log.debug("Unattributed %s on %s parent=%s", msg.msg_type, channel.value, msg.parent_id)
            return [UnattributedMessage(msg, channel)]
        content = msg.content
        if msg.msg_type == "execute_reply":
            notices = self._started(entry)
            entry.replied, entry.replied_at = True, time.monotonic()
            if isinstance(content.execution_count, int): self.execution_count = max(self.execution_count, content.execution_count)
            notices.append(ExecutionComplete(entry.msg_id, content.execution_count, content.status, entry.context, content))
            # outputs can still be in flight on IOPub until the matching idle
            if entry.idle: self.pending.resolve(entry.msg_id)
            return notices
        self.pending.resolve(entry.msg_id)
        if msg.msg_type == "complete_reply":
            return [CompletionResult(entry.msg_id, list(content.matches), content.cursor_start, content.cursor_end, entry.context)]
        self.kernel_info_reply = content
        return [KernelInfo(entry.msg_id, content)]

    async def _on_stdin(self, msg: Message)->list:
        if msg.msg_type != "input_request": return [UnattributedMessage(msg, Channel.STDIN)]
        prompt, password = msg.content.prompt, msg.content.password
        if self.config.allow_stdin: return [InputRequested(msg, prompt, password)]
        log.warning("Kernel requested input (%r) but stdin is disabled; sending an empty reply", prompt)
        try: await self.input("", msg)
        except TransportError as e: log.warning("input_reply not sent: %s", e)
        return []
