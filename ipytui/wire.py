"""Jupyter wire-protocol message envelope: typed contents, encoding and HMAC verification.

A wire frame is `[*identities, DELIM, signature, header, parent_header, metadata, content, *buffers]`.
The signature is the hex HMAC of the four JSON body parts, in order, keyed by the connection key.
"""
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from hmac import compare_digest
from typing import ClassVar
from jupyter_client import protocol_version
from jupyter_client.session import Session, json_packer, json_unpacker

log = logging.getLogger("ipytui.wire")
DELIM = b"<IDS|MSG>"


class DecodeError(ValueError): "A wire frame could not be turned into a `Message`."
class BadSignature(DecodeError): "The HMAC digest of a frame does not match the configured key."
class Malformed(DecodeError): "A frame part is missing or not the expected JSON structure."


def utcnow_iso()->str: return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class Content:
    "Base for typed message contents; keys without a field ride along in `extra`."
    msg_type: ClassVar[str] = ""
    required: ClassVar[tuple] = ()
    extra: dict = field(default_factory=dict, kw_only=True)

    @classmethod
    def from_dict(cls, data: dict)->"Content":
        missing = [key for key in cls.required if key not in data]
        if missing: raise Malformed(f"{cls.msg_type} content missing {', '.join(missing)}")
        types = {f.name: f.type for f in fields(cls) if f.name != "extra"}
        bad = [k for k, v in data.items() if k in types and not isinstance(v, types[k])]
        if bad: raise Malformed(f"{cls.msg_type} content has wrongly typed {', '.join(bad)}")
        names = set(types)
        return cls(**{k: v for k, v in data.items() if k in names}, extra={k: v for k, v in data.items() if k not in names})

    def to_dict(self)->dict:
        res = {}
        for f in fields(self):
            if f.name == "extra": continue
            value = getattr(self, f.name)
            # absent and null decode the same when the default is None
            if value is None and f.default is None: continue
            res[f.name] = value
        return res | self.extra


@dataclass
class Opaque(Content):
    "Content of a message type without a schema; kept verbatim."
    data: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict)->"Opaque": return cls(data=dict(data))

    def to_dict(self)->dict: return dict(self.data)


@dataclass
class ExecuteRequest(Content):
    msg_type: ClassVar[str] = "execute_request"
    required: ClassVar[tuple] = ("code",)
    code: str = ""
    silent: bool = False
    store_history: bool = True
    user_expressions: dict = field(default_factory=dict)
    allow_stdin: bool = False
    stop_on_error: bool = True


@dataclass
class ExecuteReply(Content):
    msg_type: ClassVar[str] = "execute_reply"
    required: ClassVar[tuple] = ("status",)
    status: str = "ok"
    execution_count: int|None = None
    user_expressions: dict|None = None
    payload: list|None = None
    ename: str|None = None
    evalue: str|None = None
    traceback: list|None = None


@dataclass
class ExecuteInput(Content):
    msg_type: ClassVar[str] = "execute_input"
    required: ClassVar[tuple] = ("code",)
    code: str = ""
    execution_count: int|None = None


@dataclass
class Stream(Content):
    msg_type: ClassVar[str] = "stream"
    required: ClassVar[tuple] = ("name", "text")
    name: str = "stdout"
    text: str = ""


@dataclass
class ExecuteResult(Content):
    msg_type: ClassVar[str] = "execute_result"
    required: ClassVar[tuple] = ("data",)
    execution_count: int|None = None
    data: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)


@dataclass
class DisplayData(Content):
    msg_type: ClassVar[str] = "display_data"
    required: ClassVar[tuple] = ("data",)
    data: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    transient: dict|None = None


@dataclass
class UpdateDisplayData(DisplayData):
    msg_type: ClassVar[str] = "update_display_data"


@dataclass
class ClearOutput(Content):
    msg_type: ClassVar[str] = "clear_output"
    wait: bool = False


@dataclass
class ErrorOutput(Content):
    msg_type: ClassVar[str] = "error"
    required: ClassVar[tuple] = ("ename", "evalue")
    ename: str = ""
    evalue: str = ""
    traceback: list = field(default_factory=list)


@dataclass
class Status(Content):
    msg_type: ClassVar[str] = "status"
    required: ClassVar[tuple] = ("execution_state",)
    execution_state: str = "idle"


@dataclass
class CompleteRequest(Content):
    msg_type: ClassVar[str] = "complete_request"
    required: ClassVar[tuple] = ("code", "cursor_pos")
    code: str = ""
    cursor_pos: int = 0


@dataclass
class CompleteReply(Content):
    msg_type: ClassVar[str] = "complete_reply"
    required: ClassVar[tuple] = ("status",)
    status: str = "ok"
    matches: list = field(default_factory=list)
    cursor_start: int = 0
    cursor_end: int = 0
    metadata: dict = field(default_factory=dict)


@dataclass
class KernelInfoRequest(Content):
    msg_type: ClassVar[str] = "kernel_info_request"


@dataclass
class KernelInfoReply(Content):
    msg_type: ClassVar[str] = "kernel_info_reply"
    status: str = "ok"
    protocol_version: str = ""
    implementation: str = ""
    implementation_version: str = ""
    language_info: dict = field(default_factory=dict)
    banner: str = ""
    help_links: list = field(default_factory=list)


@dataclass
class InterruptRequest(Content):
    msg_type: ClassVar[str] = "interrupt_request"


@dataclass
class InterruptReply(Content):
    msg_type: ClassVar[str] = "interrupt_reply"
    status: str = "ok"


@dataclass
class ShutdownRequest(Content):
    msg_type: ClassVar[str] = "shutdown_request"
    restart: bool = False


@dataclass
class ShutdownReply(Content):
    msg_type: ClassVar[str] = "shutdown_reply"
    status: str = "ok"
    restart: bool = False


@dataclass
class InputRequest(Content):
    msg_type: ClassVar[str] = "input_request"
    prompt: str = ""
    password: bool = False


@dataclass
class InputReply(Content):
    msg_type: ClassVar[str] = "input_reply"
    required: ClassVar[tuple] = ("value",)
    value: str = ""


content_types = {cls.msg_type: cls for cls in (ExecuteRequest, ExecuteReply, ExecuteInput, Stream, ExecuteResult, DisplayData,
    UpdateDisplayData, ClearOutput, ErrorOutput, Status, CompleteRequest, CompleteReply, KernelInfoRequest, KernelInfoReply,
    InterruptRequest, InterruptReply, ShutdownRequest, ShutdownReply, InputRequest, InputReply)}


def parse_content(msg_type:str, data)->Content:
    "Decode `data` with the schema selected by `msg_type`; unknown types give `Opaque`."
    if not isinstance(data, dict): raise Malformed(f"{msg_type} content is not an object")
    return content_types.get(msg_type, Opaque).from_dict(data)


@dataclass
class Header:
    msg_id: str
    msg_type: str
    session: str = ""
    username: str = ""
    version: str = protocol_version
    date: str = ""
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data, part:str="header")->"Header":
        if not isinstance(data, dict): raise Malformed(f"{part} is not an object")
        for key in ("msg_id", "msg_type"):
            if not isinstance(data.get(key), str): raise Malformed(f"{part} has no {key}")
        names = ("msg_id", "msg_type", "session", "username", "version", "date")
        kw = {k: data[k] if isinstance(data[k], str) else str(data[k]) for k in names if k in data}
        return cls(**kw, extra={k: v for k, v in data.items() if k not in names})

    def to_dict(self)->dict:
        return dict(msg_id=self.msg_id, msg_type=self.msg_type, session=self.session, username=self.username,
            version=self.version, date=self.date) | self.extra


@dataclass
class Message:
    header: Header
    parent_header: Header|None
    metadata: dict
    content: Content
    buffers: list = field(default_factory=list)
    identities: list = field(default_factory=list, compare=False)

    @property
    def msg_id(self)->str: return self.header.msg_id

    @property
    def msg_type(self)->str: return self.header.msg_type

    @property
    def parent_id(self)->str|None: return self.parent_header.msg_id if self.parent_header else None


class Codec:
    "Encode and decode signed wire frames for one connection key."

    def __init__(self, key:bytes=b"", signature_scheme:str="hmac-sha256", session_id:str|None=None, username:str|None=None):
        # a keyless Session warns on the traitlets logger, which writes over the terminal UI
        kw = dict(key=key or b"unsigned", signature_scheme=signature_scheme)
        if session_id: kw["session"] = session_id
        if username: kw["username"] = username
        # jupyter_client's Session owns the HMAC setup; digest history is not used
        self.session = Session(**kw)
        if not key:
            self.session.key = b""
            log.info("Message signing is disabled for session %s", self.session.session)

    @classmethod
    def from_connection(cls, conn)->"Codec":
        return cls(key=conn.key, signature_scheme=conn.signature_scheme, session_id=conn.session_id)

    @property
    def session_id(self)->str: return self.session.session

    @property
    def signing(self)->bool: return self.session.auth is not None

    def msg(self, msg_type:str, content=None, parent: Message|Header|None=None, metadata: dict|None=None,
        buffers: list|None=None)->Message:
        "Build a new `Message` with a fresh id; `content` may be a dict or a `Content`."
        header = Header(msg_id=self.session.msg_id, msg_type=msg_type, session=self.session.session,
            username=self.session.username, version=protocol_version, date=utcnow_iso())
        if isinstance(parent, Message): parent = parent.header
        if not isinstance(content, Content): content = parse_content(msg_type, content or {})
        return Message(header, parent, dict(metadata or {}), content, list(buffers or []))

    def sign(self, parts: list[bytes])->bytes: return self.session.sign(parts)

    def encode(self, msg: Message, identities: list[bytes]|None=None)->list[bytes]:
        "Serialize `msg` into signed frames, prefixed with routing `identities`."
        parent = msg.parent_header.to_dict() if msg.parent_header else {}
        parts = [json_packer(msg.header.to_dict()), json_packer(parent), json_packer(msg.metadata), json_packer(msg.content.to_dict())]
        idents = list(msg.identities if identities is None else identities)
        return [*idents, DELIM, self.sign(parts), *parts, *msg.buffers]

    def decode(self, frames: list)->Message:
        "Parse and verify `frames`; raise `BadSignature` or `Malformed` on bad input."
        frames = [bytes(f) for f in frames]
        try: pos = frames.index(DELIM)
        except ValueError: raise Malformed("no message delimiter") from None
        idents, rest = frames[:pos], frames[pos + 1:]
        if len(rest) < 5: raise Malformed(f"expected at least 5 frames after delimiter, got {len(rest)}")
        signature, parts, buffers = rest[0], rest[1:5], rest[5:]
        if self.signing and not compare_digest(signature, self.sign(parts)): raise BadSignature("invalid message signature")
        try: header, parent, metadata, content = [json_unpacker(p) for p in parts]
        except (ValueError, UnicodeDecodeError, RecursionError) as e: raise Malformed(f"undecodable JSON part: {e}") from e
        header = Header.from_dict(header)
        if not isinstance(metadata, dict): raise Malformed("metadata is not an object")
        if parent is not None and not isinstance(parent, dict): raise Malformed("parent_header is not an object")
        parent = Header.from_dict(parent, "parent_header") if parent else None
        return Message(header, parent, metadata, parse_content(header.msg_type, content), buffers, idents)
