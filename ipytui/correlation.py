import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Pending:
    "An outstanding request, plus the evidence seen so far about its completion."
    msg_id: str
    kind: str
    context: Any = None
    token: int|None = None
    created: float = field(default_factory=time.monotonic)
    started: bool = False
    replied: bool = False
    idle: bool = False
    replied_at: float|None = None


class CorrelationTable:
    "Map outstanding request ids to their `Pending` entry, in registration order."

    def __init__(self): self.entries = OrderedDict()

    def __len__(self)->int: return len(self.entries)
    def __contains__(self, msg_id)->bool: return msg_id in self.entries
    def __iter__(self): return iter(list(self.entries.values()))

    def register(self, msg_id:str, kind:str, context=None, token:int|None=None)->Pending:
        "Record a new request; at most one live entry per id."
        if msg_id in self.entries: raise ValueError(f"request {msg_id!r} is already pending")
        entry = self.entries[msg_id] = Pending(msg_id, kind, context, token)
        return entry

    def get(self, msg_id:str|None)->Pending|None: return self.entries.get(msg_id) if msg_id else None

    def resolve(self, parent_msg_id:str|None, terminal: bool = True)->Pending|None:
        "Return the entry for `parent_msg_id`, removing it when `terminal`; unknown ids return None."
        entry = self.get(parent_msg_id)
        if entry is not None and terminal: del self.entries[parent_msg_id]
        return entry

    def discard(self, msg_id:str): self.entries.pop(msg_id, None)

    def cancel_all(self)->list[Pending]:
        "Drain every entry, returned in registration order."
        drained = list(self.entries.values())
        self.entries.clear()
        return drained

    def expired(self, kinds, max_age:float, now:float|None=None)->list[Pending]:
        "Remove and return entries of `kinds` older than `max_age` seconds."
        now = time.monotonic() if now is None else now
        stale = [e for e in self.entries.values() if e.kind in kinds and now - e.created > max_age]
        for entry in stale: del self.entries[entry.msg_id]
        return stale

    def unsettled(self, max_age:float, now:float|None=None)->list[Pending]:
        "Execute entries answered more than `max_age` seconds ago that still wait for their idle status."
        now = time.monotonic() if now is None else now
        return [e for e in self.entries.values() if e.replied and not e.idle and now - e.replied_at > max_age]
