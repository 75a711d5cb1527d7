"Debug switches for ipytui: log routing away from the terminal UI, message tracing and faulthandler dumps."
import faulthandler, logging, os, signal, sys, threading

def envbool(name: str)->bool:
    v = (os.environ.get(name) or "").strip().lower()
    return v not in ("", "0", "false", "no")

enabled = envbool("IPYTUI_DEBUG")
trace_msgs = envbool("IPYTUI_DEBUG_MSGS")
log_file = os.environ.get("IPYTUI_LOG_FILE") or None
_lock = threading.Lock()
_stream = None

def setup():
    "Send logs to `IPYTUI_LOG_FILE` (else the real stderr) when any switch is on; enable faulthandler and a SIGUSR1 dump."
    global _stream
    if _stream is not None or not (enabled or trace_msgs or log_file): return
    # the terminal UI owns the screen, so a log file keeps traces out of it
    _stream = open(log_file, "a", encoding="utf-8", buffering=1) if log_file else sys.__stderr__
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.DEBUG if enabled else logging.WARNING, stream=_stream,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    faulthandler.enable(file=_stream)
    if hasattr(signal, "SIGUSR1"): faulthandler.register(signal.SIGUSR1, file=_stream)

def dbg(*args, **kw):
    "Print a terse `[ipytui]` trace line when debugging is on."
    if not enabled: return
    with _lock: print("[ipytui]", *args, **kw, file=_stream or sys.__stderr__, flush=True)

def tlog(log, prefix: str, msg):
    "Log message flow at high level: msg_type, msg_id, parent msg_id."
    if not trace_msgs or msg is None: return
    log.warning("%s type=%s id=%s parent=%s", prefix, msg.msg_type, msg.msg_id, msg.parent_id)
