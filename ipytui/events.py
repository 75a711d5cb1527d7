"""Events the loop dispatches, and the notices the session derives from kernel traffic.

Loop events: `TerminalInput`, `KernelMessage`, `KernelFault`, `Tick`, `Quit`.
Notices ride on `KernelMessage.notices` / `KernelFault.notices`, or are returned by session operations.
"""
from dataclasses import dataclass, field
from typing import Any
from .wire import Content, Message


@dataclass
class TerminalInput:
    key: Any


@dataclass
class KernelMessage:
    "A decoded message, the channel it arrived on and the channel set (`source`) that received it."
    channel: Any
    msg: Message
    source: Any = field(default=None, compare=False, repr=False)
    notices: list = field(default_factory=list)


@dataclass
class KernelFault:
    "A transport-level failure surfaced through the kernel queue; `source` is the channel set that raised it."
    error: Exception
    channel: Any = None
    source: Any = None
    notices: list = field(default_factory=list)


@dataclass
class Tick:
    "Periodic redraw tick; carries completion timeouts found on this tick."
    notices: list = field(default_factory=list)


@dataclass
class Quit: pass


@dataclass
class ExecutionStarted:
    request_id: str
    context: Any = None


@dataclass
class ExecutionOutput:
    request_id: str
    output: Content
    context: Any = None

    @property
    def msg_type(self)->str: return self.output.msg_type

    @property
    def text(self)->str|None: return getattr(self.output, "text", None)


@dataclass
class ExecutionComplete:
    request_id: str
    exec_count: int|None
    status: str
    context: Any = None
    reply: Content|None = None


@dataclass
class CompletionResult:
    request_id: str
    items: list
    cursor_start: int = 0
    cursor_end: int = 0
    context: Any = None


@dataclass
class KernelStatusChanged:
    state: Any


@dataclass
class UnattributedMessage:
    raw: Message
    channel: Any = None


@dataclass
class RequestAbandoned:
    "A pending request that will never be answered: `reason` is restart, shutdown, dead or timeout."
    request_id: str
    kind: str
    context: Any = None
    reason: str = "shutdown"


@dataclass
class KernelInfo:
    request_id: str
    info: Content


@dataclass
class InputRequested:
    "The kernel wants a line of input; answer with `KernelSession.input(value, msg)`."
    msg: Message
    prompt: str = ""
    password: bool = False

    @property
    def request_id(self)->str|None: return self.msg.parent_id
