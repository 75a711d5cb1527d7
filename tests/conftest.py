import pytest
from .kernel_utils import fake_kernel


@pytest.fixture
def kernel():
    with fake_kernel() as k: yield k


@pytest.fixture(autouse=True)
def _no_ipytui_env(monkeypatch):
    for name in ("IPYTUI_HB_INTERVAL", "IPYTUI_HB_MISSES", "IPYTUI_QUEUE_MAX", "IPYTUI_TICK", "IPYTUI_READY_TIMEOUT",
        "IPYTUI_COMPLETE_TIMEOUT", "IPYTUI_ALLOW_STDIN"):
        monkeypatch.delenv(name, raising=False)
