import logging
import os
import time

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from hash_scanner import digest_kinds, report, scan_file

logger = logging.getLogger("AV_Watcher")

# ── CONFIG ──────────────────
# give writers a moment to finish before the file is read
SETTLE_DELAY = 0.5


# ── EVENT HANDLER ──────────────────

class MalwareEventHandler(FileSystemEventHandler):

    def __init__(self, database, skip_size=False, full_path=False, settle_delay=SETTLE_DELAY):
        super().__init__()

        self.database = database
        self.skip_size = skip_size
        self.full_path = full_path
        self.settle_delay = settle_delay
        self.kinds = digest_kinds(database)
        self.results = []
        logger.info(f"Watcher initialized. Loaded {database.stats().count} signatures.")

    def _scan_file(self, file_path):
        """
        scans a new or changed file and logs the result
        """
        if self.settle_delay:
            time.sleep(self.settle_delay)

        if not os.path.isfile(file_path):
            return None  # deleted while we waited

        logger.debug(f"Scanning new/modified file: {file_path}")
        result = scan_file(file_path, self.database, self.skip_size, self.full_path, self.kinds)
        report(result)
        if result.infected:
            self.results.append(result)
        return result

    def on_created(self, event):
        if event.is_directory:
            return
        self._scan_file(event.src_path)

    def on_modified(self, event):
        if event.is_directory:
            return
        self._scan_file(event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        self._scan_file(event.dest_path)


# ── WATCHER CONTROL ──────────────────

def start_watcher(watch_path, database, skip_size=False, full_path=False, stop_event=None):
    """
    Watches a directory until Ctrl+C (or until stop_event is set).
    returns the infected ScanResults seen while watching
    """
    if not os.path.isdir(watch_path):
        logger.error(f"Watch path does not exist: {watch_path}")
        return []

    event_handler = MalwareEventHandler(database, skip_size, full_path)
    observer = Observer()
    observer.schedule(event_handler, path=watch_path, recursive=True)

    observer.start()
    logger.info(f"Watching directory: {watch_path}")
    logger.info("Press Ctrl+C to stop.")

    try:
        while stop_event is None or not stop_event.is_set():
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Watcher stopped by user.")
    finally:
        observer.stop()
        observer.join()

    return event_handler.results
