import asyncio, logging
from contextlib import ExitStack
from prompt_toolkit.input import create_input

log = logging.getLogger("ipytui.keys")


class KeyboardInput:
    "Raw-mode terminal key source for `EventLoop`, on top of a prompt_toolkit `Input`."

    def __init__(self, input=None, flush_timeout:float=0.05):
        self.input = input if input is not None else create_input()
        self.flush_timeout = flush_timeout
        self.keys = asyncio.Queue()
        self.stack = None

    async def __aenter__(self):
        self.stack = ExitStack()
        self.stack.enter_context(self.input.raw_mode())
        self.stack.enter_context(self.input.attach(self._on_ready))
        return self

    async def __aexit__(self, *exc):
        if self.stack is not None: self.stack.close()
        self.stack = None

    def _on_ready(self):
        for key in self.input.read_keys(): self.keys.put_nowait(key)
        if self.input.closed:
            log.debug("Terminal input reached EOF")
            self.keys.put_nowait(None)

    async def read(self):
        "Return the next `KeyPress`, or None once the input is closed."
        while True:
            try: return await asyncio.wait_for(self.keys.get(), self.flush_timeout)
            # a lone escape stays in the parser until flushed
            except asyncio.TimeoutError:
                for key in self.input.flush_keys(): self.keys.put_nowait(key)
