"""
HMR Harness Process Orchestration

Dev-server lifecycle management:
- Spawning integration commands inside a workspace
- Line-oriented stdout/stderr streams with subscribe/unsubscribe
- Ready detection from the first stdout line matching a pattern
- Bounded shutdown (SIGTERM, then SIGKILL)
"""

from hmr_harness.process.handle import AsyncioProcessHandle, ProcessHandle
from hmr_harness.process.logstream import LogStream
from hmr_harness.process.orchestrator import ProcessOrchestrator, is_port_in_use
from hmr_harness.process.server import ServerProcess, ServerState

__all__ = [
    "AsyncioProcessHandle",
    "LogStream",
    "ProcessHandle",
    "ProcessOrchestrator",
    "ServerProcess",
    "ServerState",
    "is_port_in_use",
]
