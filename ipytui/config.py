import os
from dataclasses import dataclass, fields
from fastcore.basics import str2bool


def env_float(name:str, default:float)->float:
    "Return float env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return float(raw)
    except ValueError: return default


def env_bool(name:str, default:bool)->bool:
    "Return bool env var `name` parsed with `str2bool`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return bool(str2bool(raw))
    except TypeError: return default


def env_int(name:str, default:int)->int:
    "Return int env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return int(raw)
    except ValueError: return default


@dataclass
class ClientConfig:
    "Tunables for the kernel client; every field can be set from an `IPYTUI_*` env var."
    hb_interval:float = 1.0
    hb_misses:int = 3
    queue_max:int = 500
    tick_interval:float = 0.1
    ready_timeout:float = 30.0
    complete_timeout:float = 2.0
    idle_grace:float = 5.0
    allow_stdin:bool = False

    @classmethod
    def from_env(cls, **overrides)->"ClientConfig":
        "Build config from `IPYTUI_*` env vars, then apply `overrides`."
        cfg = cls(hb_interval=env_float("IPYTUI_HB_INTERVAL", cls.hb_interval), hb_misses=env_int("IPYTUI_HB_MISSES", cls.hb_misses),
            queue_max=env_int("IPYTUI_QUEUE_MAX", cls.queue_max), tick_interval=env_float("IPYTUI_TICK", cls.tick_interval),
            ready_timeout=env_float("IPYTUI_READY_TIMEOUT", cls.ready_timeout),
            complete_timeout=env_float("IPYTUI_COMPLETE_TIMEOUT", cls.complete_timeout),
            idle_grace=env_float("IPYTUI_IDLE_GRACE", cls.idle_grace),
            allow_stdin=env_bool("IPYTUI_ALLOW_STDIN", cls.allow_stdin))
        known = {f.name for f in fields(cls)}
        for name, value in overrides.items():
            if name not in known: raise TypeError(f"unknown config field {name!r}")
            setattr(cfg, name, value)
        return cfg
