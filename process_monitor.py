import logging

import psutil

from hash_scanner import digest_kinds, scan_file

logger = logging.getLogger("AV_ProcessMonitor")


def check_process(proc, database, kinds=None):
    """
    hashes the executable a process was started from and checks it against the database.
    returns an alert string, or None
    """
    try:
        name = proc.name()
        pid = proc.pid
        exe = proc.exe()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        # process died or no permission
        return None

    if not exe:
        return None  # kernel threads have no executable

    result = scan_file(exe, database, kinds=kinds)
    if not result.infected:
        return None

    return (
        f"[Signature Match] Process '{name}' (PID {pid}) is running a known malicious executable\n"
        f"  Exe  : {exe}\n"
        f"  Hash : {result.hash}\n"
        f"  Name : {result.label}"
    )


def scan_processes(database):
    """
    loops through every running process in the system
    """
    logger.info("Scanning running processes...")

    kinds = digest_kinds(database)
    all_alerts = []
    seen_exes = set()

    for proc in psutil.process_iter():
        try:
            exe = proc.exe()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        # many processes share one binary, hash it once
        if not exe or exe in seen_exes:
            continue
        seen_exes.add(exe)

        alert = check_process(proc, database, kinds)
        if alert:
            logger.warning(alert)
            all_alerts.append(alert)

    if not all_alerts:
        logger.info("No malicious processes found.")

    return all_alerts
