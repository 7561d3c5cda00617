"""Live process resource usage via psutil."""

import os
import time

import psutil

from perfwatch.models.dashboard import SystemResources

_process = psutil.Process(os.getpid())


def get_system_resource_usage() -> SystemResources:
  """Read memory, CPU time and uptime of the current process."""
  with _process.oneshot():
    memory = _process.memory_info()
    cpu = _process.cpu_times()
    created = _process.create_time()

  return SystemResources(
    memory_rss_bytes=memory.rss,
    memory_vms_bytes=memory.vms,
    cpu_user_seconds=cpu.user,
    cpu_system_seconds=cpu.system,
    uptime_seconds=max(0.0, time.time() - created),
  )


def current_process_sample() -> tuple[int, float]:
  """(resident memory bytes, total CPU seconds) for stamping a sample."""
  memory = _process.memory_info()
  cpu = _process.cpu_times()
  return memory.rss, cpu.user + cpu.system
