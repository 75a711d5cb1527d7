from importlib.metadata import PackageNotFoundError, version
from .config import ClientConfig
from .connection import ConnectionInfo
from .keys import KeyboardInput
from .launch import ManagedKernel
from .loop import EventLoop
from .session import KernelSession, KernelState, RestartFailed
from .transport import ProtocolTimeout, TransportError
from .wire import BadSignature, Codec, DecodeError, Malformed

try:
    __version__ = version("ipytui")
except PackageNotFoundError:  # pragma: no cover - local editable without metadata
    __version__ = "0.0.0+local"

__all__ = ["ClientConfig", "ConnectionInfo", "KeyboardInput", "ManagedKernel", "EventLoop", "KernelSession", "KernelState", "RestartFailed",
    "TransportError", "ProtocolTimeout", "Codec", "DecodeError", "BadSignature", "Malformed", "__version__"]
