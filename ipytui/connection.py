import json, uuid
from dataclasses import dataclass, field

port_names = ("shell_port", "iopub_port", "stdin_port", "control_port", "hb_port")
channel_ports = dict(shell="shell_port", iopub="iopub_port", stdin="stdin_port", control="control_port", hb="hb_port")


@dataclass(frozen=True)
class ConnectionInfo:
    "Immutable description of how to reach a kernel: transport, ports and signing key."
    transport:str
    ip:str
    shell_port:int
    iopub_port:int
    stdin_port:int
    control_port:int
    hb_port:int
    key:bytes = b""
    signature_scheme:str = "hmac-sha256"
    session_id:str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_dict(cls, data: dict, session_id:str|None=None)->"ConnectionInfo":
        "Build from a connection-file style dict; `key` may be str or bytes."
        missing = [name for name in port_names if name not in data]
        if missing: raise ValueError(f"connection info missing {', '.join(missing)}")
        key = data.get("key") or b""
        if isinstance(key, str): key = key.encode()
        ports = {name: int(data[name]) for name in port_names}
        session_id = session_id or data.get("session_id") or str(uuid.uuid4())
        return cls(transport=data.get("transport", "tcp"), ip=data.get("ip", "127.0.0.1"), key=key,
            signature_scheme=data.get("signature_scheme") or "hmac-sha256", session_id=session_id, **ports)

    @classmethod
    def from_file(cls, path:str, session_id:str|None=None)->"ConnectionInfo":
        "Load connection info from JSON connection file at `path`."
        with open(path, encoding="utf-8") as f: data = json.load(f)
        return cls.from_dict(data, session_id=session_id)

    def port(self, channel:str)->int: return getattr(self, channel_ports[channel])

    def addr(self, channel:str)->str:
        "Return the zmq endpoint for `channel` (shell, iopub, stdin, control or hb)."
        port = self.port(channel)
        if self.transport == "ipc": return f"ipc://{self.ip}-{port}"
        return f"{self.transport}://{self.ip}:{port}"

    def to_dict(self)->dict:
        "Connection-file style dict; the key is returned as str."
        res = {name: getattr(self, name) for name in port_names}
        return res | dict(transport=self.transport, ip=self.ip, key=self.key.decode(), signature_scheme=self.signature_scheme)
