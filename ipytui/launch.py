import logging
from jupyter_client.manager import AsyncKernelManager
from .connection import ConnectionInfo

log = logging.getLogger("ipytui.launch")


class ManagedKernel:
    "A kernel process owned through `AsyncKernelManager`; usable as the `process` handle of a `KernelSession`."

    def __init__(self, manager: AsyncKernelManager): self.manager = manager

    @classmethod
    async def start(cls, kernel_name:str="python3", **kwargs)->"ManagedKernel":
        "Launch `kernel_name`; `kwargs` go to `start_kernel` (e.g. `cwd`, `env`, `extra_arguments`)."
        manager = AsyncKernelManager(kernel_name=kernel_name)
        await manager.start_kernel(**kwargs)
        log.info("Started %s kernel, connection file %s", kernel_name, manager.connection_file)
        return cls(manager)

    @property
    def connection(self)->ConnectionInfo:
        return ConnectionInfo.from_dict(self.manager.get_connection_info(session=False))

    async def is_alive(self)->bool: return await self.manager.is_alive()

    async def restart(self):
        "Restart the process on the same ports."
        log.info("Restarting kernel process")
        await self.manager.restart_kernel(now=True)

    async def interrupt(self): await self.manager.interrupt_kernel()

    async def shutdown(self, now:bool=False):
        if await self.is_alive(): await self.manager.shutdown_kernel(now=now)
        else: await self.manager.cleanup_resources()

    async def __aenter__(self): return self
    async def __aexit__(self, *exc): await self.shutdown(now=True)
