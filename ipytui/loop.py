import asyncio, logging
from .config import ClientConfig
from .debug import setup as setup_debug
from .events import Quit, TerminalInput, Tick
from .transport import maybe_await

log = logging.getLogger("ipytui.loop")


class EventLoop:
    "Merge terminal keys, kernel traffic, a redraw tick and quit requests into one stream, one event at a time."

    def __init__(self, session=None, keys=None, config: ClientConfig|None=None):
        self.session, self.keys = session, keys
        self.config = config or (session.config if session is not None else ClientConfig.from_env())
        self.quit_requested = asyncio.Event()
        self.carry = {}
        self.running = False

    def quit(self):
        "Ask `run` to dispatch `Quit` and return."
        self.quit_requested.set()

    def _waiter(self, name:str):
        if name in self.carry:
            fut = asyncio.get_running_loop().create_future()
            fut.set_result(self.carry.pop(name))
            return fut
        if name == "keys": return asyncio.ensure_future(self.keys.read())
        if name == "quit": return asyncio.ensure_future(self.quit_requested.wait())
        return asyncio.ensure_future(self.session.queue.get())

    def _active(self)->list:
        res = ["quit"]
        if self.keys is not None: res.insert(0, "keys")
        if self.session is not None: res.append("kernel")
        return res

    async def run(self, update):
        "Dispatch events to `update` (sync or async) until quit or the terminal input closes."
        # ready sources are taken in order keys, quit, tick, kernel so output bursts cannot starve typing
        setup_debug()
        loop = asyncio.get_running_loop()
        waiters = {}
        next_tick = loop.time() + self.config.tick_interval
        self.running = True
        try:
            while True:
                for name in self._active():
                    if name not in waiters: waiters[name] = self._waiter(name)
                done = {name for name, fut in waiters.items() if fut.done()}
                if not done and (timeout := next_tick - loop.time()) > 0:
                    await asyncio.wait(list(waiters.values()), timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
                    done = {name for name, fut in waiters.items() if fut.done()}
                if "keys" in done:
                    key = waiters.pop("keys").result()
                    if key is None:
                        log.info("Terminal input closed")
                        return
                    event = TerminalInput(key)
                elif "quit" in done:
                    waiters.pop("quit")
                    self.quit_requested.clear()
                    event = Quit()
                elif loop.time() >= next_tick:
                    next_tick = loop.time() + self.config.tick_interval
                    event = Tick(self.session.expire() if self.session is not None else [])
                elif "kernel" in done:
                    event = waiters.pop("kernel").result()
                    # one bad item must not stop the UI; its notices stay empty
                    try: await self.session.process(event)
                    except Exception: log.exception("Processing %s failed", type(event).__name__)
                else: continue
                await maybe_await(update(event))
                if isinstance(event, Quit): return
        finally:
            self.running = False
            for name, fut in waiters.items():
                # a value already taken from its source is replayed by the next `run`
                if fut.done() and not fut.cancelled() and fut.exception() is None and name != "quit": self.carry[name] = fut.result()
                else: fut.cancel()
