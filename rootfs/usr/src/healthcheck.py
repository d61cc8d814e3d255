"""
Apex MQTT Bridge Healthcheck

Lightweight healthcheck script for Docker HEALTHCHECK.
Scans /proc to verify the main apex_mqtt.py process is running.
Exit code 0 = healthy, 1 = unhealthy.
"""

import os
from pathlib import Path
import sys

PROCESS_NAME = "apex_mqtt.py"


def is_process_running(process_name: str = PROCESS_NAME) -> bool:
    """Check if a process with the given name is running by scanning /proc."""
    my_pid = str(os.getpid())

    try:
        for entry in Path("/proc").iterdir():
            pid = entry.name
            if not pid.isdigit() or pid == my_pid:
                continue
            try:
                cmdline = (entry / "cmdline").read_bytes().decode("utf-8", errors="replace")
            except OSError:
                continue
            # cmdline arguments are NUL separated
            if any(Path(arg).name == process_name for arg in cmdline.split("\x00")):
                return True
    except OSError:
        return False

    return False


if __name__ == "__main__":
    sys.exit(0 if is_process_running() else 1)
