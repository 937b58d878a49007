import argparse
import logging
import os
import sys

from directory_watcher import start_watcher
from hash_scanner import (
    DEFAULT_WORKERS,
    ScanStats,
    report,
    scan_directory,
    scan_file,
    summary_lines,
)
from process_monitor import scan_processes
from signature_db import (
    DEFAULT_BLOOM_FPR,
    SIGNATURES_DIR,
    DatabaseConfig,
    SignatureDatabase,
)
from signature_errors import SignatureDatabaseError
from signature_index import UnknownSizePolicy

# ── LOGGING SETUP ──────────────────

LOG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs", "alerts.log")

logger = logging.getLogger("AV_Main")

EXIT_CLEAN = 0
EXIT_INFECTED = 1
EXIT_DATABASE_ERROR = 2
EXIT_TARGET_ERROR = 3


def setup_logging(verbose=False, log_path=LOG_PATH):
    os.makedirs(os.path.dirname(log_path), exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_path),
            logging.StreamHandler()
        ]
    )


# ── DATABASE ──────────────────

def config_from_args(args):
    return DatabaseConfig(
        path=args.database,
        use_bloom=not args.no_bloom,
        bloom_fpr=args.bloom_fpr,
        unknown_size_policy=UnknownSizePolicy(args.unknown_size),
        confirm_bloom_positives=not args.trust_bloom,
    )


def open_database(args):
    """
    loads the signature database, or returns None if it can't be loaded
    """
    try:
        database = SignatureDatabase(config_from_args(args))
        database.load()
    except SignatureDatabaseError as err:
        logger.error(f"Cannot load signature database: {err}")
        return None
    return database


# ── COMMANDS ──────────────────

def cmd_scan_file(database, args, stats):
    if not os.path.isfile(args.scan_file):
        logger.error(f"File not found: {args.scan_file}")
        return False

    logger.info(f"Scanning file: {args.scan_file}")
    result = scan_file(args.scan_file, database, args.skip_size, args.full_path)
    stats.add(result)
    report(result)
    return True


def cmd_scan_dir(database, args, stats):
    if not os.path.isdir(args.scan_dir):
        logger.error(f"Directory not found: {args.scan_dir}")
        return False

    scan_directory(
        args.scan_dir, database,
        recursive=not args.no_recursive,
        skip_size=args.skip_size,
        full_path=args.full_path,
        workers=args.workers,
        stats=stats,
    )
    return True


def cmd_scan_processes(database, args, stats):
    alerts = scan_processes(database)
    stats.infected_files += len(alerts)


def cmd_watch(database, args, stats, directory):
    results = start_watcher(directory, database, args.skip_size, args.full_path)
    stats.infected_files += len(results)


def cmd_full(database, args, stats):
    """
    process scan, then directory scan, then real-time monitor on the same directory
    """
    logger.info("Step 1/3 - Scanning running processes...")
    cmd_scan_processes(database, args, stats)

    logger.info("Step 2/3 - Scanning directory...")
    args.scan_dir = args.full
    if not cmd_scan_dir(database, args, stats):
        return False

    logger.info("Step 3/3 - Starting real-time monitor...")
    cmd_watch(database, args, stats, args.full)
    return True


def cmd_stats(database):
    db_stats = database.stats()
    logger.info(f"Known viruses: {db_stats.count}")
    logger.info(f"Distinct sizes: {db_stats.sizes}")
    logger.info(f"Files loaded: {db_stats.files_loaded}")
    for kind, count in sorted(db_stats.hash_kinds.items(), key=lambda item: item[0].value):
        logger.info(f"  {kind.value}: {count}")
    logger.info(f"Size checks disabled: {db_stats.size_checks_disabled}")
    if db_stats.bloom_enabled:
        logger.info(f"Bloom filter: {db_stats.bloom_bits} bits, {db_stats.bloom_hashes} hash functions")


# ── CLI SETUP ──────────────────

def build_parser():
    parser = argparse.ArgumentParser(
        prog="sigscan",
        description="Hash signature scanner: file and directory scan, process scan, real-time watcher.",
        formatter_class=argparse.RawTextHelpFormatter
    )

    # only one mode can run at a time
    group = parser.add_mutually_exclusive_group(required=True)

    group.add_argument(
        "--scan-file",
        metavar="FILE",
        help="Scan a single file.\nExample: sigscan --scan-file suspicious.exe"
    )
    group.add_argument(
        "--scan-dir",
        metavar="DIRECTORY",
        help="Scan all files in a directory (parallel).\nExample: sigscan --scan-dir ./Downloads"
    )
    group.add_argument(
        "--processes",
        action="store_true",
        help="Check the executables of all running processes."
    )
    group.add_argument(
        "--monitor",
        metavar="DIRECTORY",
        nargs="?",
        const=".",
        help="Watch a directory in real-time. Defaults to current directory."
    )
    group.add_argument(
        "--full",
        metavar="DIRECTORY",
        nargs="?",
        const=".",
        help="Process scan + directory scan + real-time monitor."
    )
    group.add_argument(
        "--stats",
        action="store_true",
        help="Load the signature database and print what it contains."
    )

    parser.add_argument("-d", "--database", metavar="DIRECTORY", default=SIGNATURES_DIR,
                        help=f"Directory of signature files (.hdb .hsb .hdu .hsu .csv).\nDefault: {SIGNATURES_DIR}")
    parser.add_argument("--no-bloom", action="store_true",
                        help="Don't build a bloom filter for hash lookups.")
    parser.add_argument("--bloom-fpr", type=float, default=DEFAULT_BLOOM_FPR,
                        help="False positive rate for the bloom filter. Lower uses more memory.")
    parser.add_argument("--trust-bloom", action="store_true",
                        help="Report bloom filter positives without checking the exact index.")
    parser.add_argument("--unknown-size", choices=[p.value for p in UnknownSizePolicy],
                        default=UnknownSizePolicy.SKIP.value,
                        help="What to do with signatures of unknown size ('*'):\n"
                             "  skip    - ignore the signature\n"
                             "  disable - keep it and turn off size checks")
    parser.add_argument("--skip-size", action="store_true",
                        help="Hash every file instead of checking its size first.")
    parser.add_argument("--no-recursive", action="store_true",
                        help="Only scan the top level of --scan-dir.")
    parser.add_argument("--no-summary", action="store_true", help="Don't print the scan summary.")
    parser.add_argument("--full-path", action="store_true", help="Report absolute paths.")
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS,
                        help=f"Files scanned in parallel. Default: {DEFAULT_WORKERS}")
    parser.add_argument("--log-file", default=LOG_PATH, help=f"Where alerts are logged. Default: {LOG_PATH}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")

    return parser


# ── ENTRY POINT ──────────────────

def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    logger.info("Scanner started.")

    database = open_database(args)
    if database is None:
        return EXIT_DATABASE_ERROR

    stats = ScanStats()

    if args.stats:
        cmd_stats(database)
        return EXIT_CLEAN

    target_found = True
    if args.scan_file:
        target_found = cmd_scan_file(database, args, stats)
    elif args.scan_dir:
        target_found = cmd_scan_dir(database, args, stats)
    elif args.processes:
        cmd_scan_processes(database, args, stats)
    elif args.monitor is not None:
        cmd_watch(database, args, stats, args.monitor)
    elif args.full is not None:
        target_found = cmd_full(database, args, stats)

    if not args.no_summary:
        for line in summary_lines(stats, database.stats()):
            logger.info(line)

    logger.info("Scanner finished.")
    if stats.infected_files:
        return EXIT_INFECTED
    return EXIT_CLEAN if target_found else EXIT_TARGET_ERROR


if __name__ == "__main__":
    sys.exit(main())
