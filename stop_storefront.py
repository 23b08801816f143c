#!/usr/bin/env python3
import os
import json

from start_storefront import PID_FILE, SERVICES, Colors, log, get_process_on_port, kill_process

def main():
    log("\nStopping Beauty Storefront...", Colors.HEADER)
    stopped = 0

    if os.path.exists(PID_FILE):
        with open(PID_FILE) as f:
            pids = json.load(f)
        for service, pid in pids.items():
            if kill_process(pid):
                log(f"✓ {service} stopped (PID: {pid})", Colors.GREEN)
                stopped += 1
        os.remove(PID_FILE)

    # Anything still bound to a service port, e.g. started by hand
    for service, (_, port) in SERVICES.items():
        pid = get_process_on_port(port)
        if pid and kill_process(pid):
            log(f"✓ {service} stopped on port {port} (PID: {pid})", Colors.GREEN)
            stopped += 1

    if stopped:
        log("✓ Services stopped successfully", Colors.GREEN)
    else:
        log("No running services found", Colors.BLUE)

if __name__ == "__main__":
    main()
