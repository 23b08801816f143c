#!/usr/bin/env python3
import os
import sys
import json
import subprocess
import time
import platform
import argparse

import httpx

# --- Configuration ---
SERVICES = {
    "auth-service": ("services.auth_service.main:app", 8001),
    "catalog-service": ("services.catalog_service.main:app", 8002),
    "orders-service": ("services.orders_service.main:app", 8003),
}
PID_FILE = ".storefront.pids"
LOG_DIR = "logs"

# --- Colors ---
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

if platform.system() == "Windows":
    os.system('color')  # Enable ANSI colors in Windows terminal

def log(msg, color=Colors.ENDC, bold=False, end="\n"):
    prefix = Colors.BOLD if bold else ""
    print(f"{prefix}{color}{msg}{Colors.ENDC}", end=end, flush=True)

def print_header():
    log("\n" + "═" * 40, Colors.HEADER)
    log("BEAUTY STOREFRONT - PORT CLEANUP & START", Colors.HEADER, bold=True)
    log("═" * 40 + "\n", Colors.HEADER)

# --- Port Management ---

def get_process_on_port(port):
    """Finds the PID of the process listening on the given port."""
    system = platform.system()
    try:
        if system == "Windows":
            cmd = f'netstat -ano | findstr :{port}'
            result = subprocess.run(cmd, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
            for line in result.stdout.strip().split('\n'):
                if f":{port}" in line and "LISTENING" in line:
                    return line.strip().split()[-1]  # PID is the last element
        else:  # Linux/MacOS
            result = subprocess.run(['lsof', '-t', f'-i:{port}'], stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
            if result.returncode == 0 and result.stdout:
                return result.stdout.strip().split('\n')[0]
    except OSError as e:
        log(f"Error checking port {port}: {e}", Colors.WARNING)
    return None

def kill_process(pid):
    """Kills the process with the given PID."""
    try:
        if platform.system() == "Windows":
            subprocess.run(f"taskkill /F /PID {pid}", shell=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            subprocess.run(['kill', '-9', str(pid)], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        return True
    except OSError as e:
        log(f"  └─ Failed to kill PID {pid}: {e}", Colors.FAIL)
        return False

def clean_ports():
    log("[1/3] Checking ports...", Colors.BLUE, bold=True)
    killed_count = 0

    for service, (_, port) in SERVICES.items():
        pid = get_process_on_port(port)
        if pid:
            log(f"✓ Port {port} ({service}): IN USE (PID: {pid})", Colors.WARNING)
            log("  └─ Killing process...", Colors.WARNING, end=" ")
            if kill_process(pid):
                log("DONE", Colors.GREEN)
                killed_count += 1
            else:
                log("FAILED", Colors.FAIL)
        else:
            log(f"✓ Port {port} ({service}): AVAILABLE", Colors.GREEN)

    log(f"\nSummary: Killed {killed_count} processes, all ports available.", Colors.CYAN)

# --- Services ---

def start_services(reload=False):
    log("\n[2/3] Starting services...", Colors.BLUE, bold=True)
    os.makedirs(LOG_DIR, exist_ok=True)
    pids = {}
    for service, (target, port) in SERVICES.items():
        cmd = [sys.executable, "-m", "uvicorn", target, "--port", str(port)]
        if reload:
            cmd.append("--reload")
        log_file = open(os.path.join(LOG_DIR, f"{service}.log"), "a")
        proc = subprocess.Popen(cmd, stdout=log_file, stderr=subprocess.STDOUT)
        pids[service] = proc.pid
        log(f"✓ {service} started on port {port} (PID: {proc.pid})", Colors.GREEN)

    with open(PID_FILE, "w") as f:
        json.dump(pids, f)

def wait_for_health():
    log("\n[3/3] Verifying services...", Colors.BLUE, bold=True)
    max_retries = 30
    all_healthy = True
    for service, (_, port) in SERVICES.items():
        log(f"Checking {service} on port {port}...", end=" ")
        healthy = False
        for _ in range(max_retries):
            try:
                resp = httpx.get(f"http://localhost:{port}/health", timeout=1.0)
                if resp.status_code == 200:
                    healthy = True
                    break
            except httpx.RequestError:
                pass
            time.sleep(1)

        if healthy:
            log("HEALTHY", Colors.GREEN)
        else:
            all_healthy = False
            log(f"TIMEOUT/FAILED (see {LOG_DIR}/{service}.log)", Colors.FAIL)
    return all_healthy

# --- Main ---

def main():
    parser = argparse.ArgumentParser(description="Cleanup ports and start the Beauty Storefront services")
    parser.add_argument("--reload", action="store_true", help="Restart services on code changes")
    args = parser.parse_args()

    print_header()
    clean_ports()
    start_services(reload=args.reload)

    if not wait_for_health():
        log("\nSome services did not come up. Is MongoDB running?", Colors.FAIL, bold=True)
        sys.exit(1)

    log("\n" + "═" * 40, Colors.HEADER)
    log("✓ ALL SERVICES RUNNING SUCCESSFULLY!", Colors.GREEN, bold=True)
    log("═" * 40, Colors.HEADER)

    log("\nAccess your API:")
    for service, (_, port) in SERVICES.items():
        log(f"- {service:<16} {Colors.BLUE}http://localhost:{port}/docs{Colors.ENDC}")
    log(f"\nLogs:     {Colors.BOLD}{LOG_DIR}/{Colors.ENDC}")
    log(f"Stop all: {Colors.BOLD}python stop_storefront.py{Colors.ENDC}")

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        log("\nAborted by user.", Colors.WARNING)
        sys.exit(0)
