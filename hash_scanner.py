import concurrent.futures
import hashlib
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from signature_record import HashKind, SignatureRecord

logger = logging.getLogger("AV_HashScanner")

# ── CONFIG ──────────────────
CHUNK_SIZE = 65536      # 64KB per read
DEFAULT_WORKERS = 8

DIGESTS = {
    HashKind.MD5: hashlib.md5,
    HashKind.SHA1: hashlib.sha1,
    HashKind.SHA256: hashlib.sha256,
}

# legacy hash-database files are md5
DEFAULT_KINDS = frozenset({HashKind.MD5})


@dataclass
class ScanResult:
    path: str
    size: int = 0
    infected: bool = False
    hash: Optional[str] = None
    record: Optional[SignatureRecord] = None
    bytes_read: int = 0
    size_match: bool = True
    error: Optional[str] = None

    @property
    def label(self):
        if self.record is not None and self.record.label:
            return self.record.label
        return "unknown"

    def alert(self):
        return (
            f"[HASH MATCH] Malicious file detected!\n"
            f"  File : {self.path}\n"
            f"  Hash : {self.hash}\n"
            f"  Name : {self.label}"
        )


@dataclass
class ScanStats:
    scanned_files: int = 0
    scanned_folders: int = 0
    infected_files: int = 0
    errors: int = 0
    data_scanned: int = 0
    data_read: int = 0
    infected: list = field(default_factory=list)

    def add(self, result):
        if result.error is not None:
            self.errors += 1
            return
        self.scanned_files += 1
        self.data_scanned += result.size
        self.data_read += result.bytes_read
        if result.infected:
            self.infected_files += 1
            self.infected.append(result)


def sizeof_fmt(num, suffix="B"):
    for unit in ["", "K", "M", "G", "T", "P", "E", "Z"]:
        if abs(num) < 1024.0:
            return f"{num:3.1f}{unit}{suffix}"
        num /= 1024.0
    return f"{num:.1f}Y{suffix}"


# ── HASHING ──────────────────

def digest_kinds(database):
    """
    the digests worth computing for this database. md5 if it holds nothing we can compute
    """
    kinds = frozenset(kind for kind in database.hash_kinds() if kind in DIGESTS)
    return kinds or DEFAULT_KINDS


def compute_hashes(file_path, kinds=DEFAULT_KINDS):
    """
    reads a file once in chunks and computes every requested digest.
    returns ({kind: hexdigest}, bytes_read). raises OSError if the file can't be read
    """
    hashers = {kind: DIGESTS[kind]() for kind in kinds}
    bytes_read = 0
    with open(file_path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            bytes_read += len(chunk)
            for hasher in hashers.values():
                hasher.update(chunk)

    hashes = {kind: hasher.hexdigest() for kind, hasher in hashers.items()}
    return hashes, bytes_read


# ── SCANNING ──────────────────

def scan_file(file_path, database, skip_size=False, full_path=False, kinds=None):
    """
    Checks one file against a loaded SignatureDatabase.

    The size check runs first so files no signature could match are never read.
    skip_size forces every file to be hashed.
    """
    if full_path:
        file_path = os.path.abspath(file_path)
    result = ScanResult(path=file_path)

    try:
        result.size = os.path.getsize(file_path)

        if not skip_size and not database.has_size(result.size):
            result.size_match = False
            return result

        hashes, result.bytes_read = compute_hashes(file_path, kinds or digest_kinds(database))

    except OSError as err:
        # can't read the file, skip it
        logger.error(f"Error reading {file_path}: {err}")
        result.error = str(err)
        return result

    for kind, hex_hash in hashes.items():
        if database.has_hash(hex_hash):
            result.infected = True
            result.hash = hex_hash
            result.record = database.get_by_hash(hex_hash)
            break
    else:
        result.hash = hashes.get(HashKind.MD5) or next(iter(hashes.values()), None)

    return result


def iter_files(directory, recursive=True):
    if not recursive:
        for entry in sorted(os.scandir(directory), key=lambda e: e.name):
            if entry.is_file():
                yield entry.path
        return

    for root, dirs, files in os.walk(directory):
        dirs.sort()
        for filename in sorted(files):
            path = os.path.join(root, filename)
            if os.path.isfile(path):
                yield path


def scan_directory(directory, database, recursive=True, skip_size=False, full_path=False,
                   workers=DEFAULT_WORKERS, stats=None):
    """
    walks through every file in a directory and runs each one through scan_file(),
    several at a time. returns the ScanStats
    """
    if stats is None:
        stats = ScanStats()
    stats.scanned_folders += 1

    logger.info(f"Scanning directory: {directory}")
    kinds = digest_kinds(database)

    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(scan_file, path, database, skip_size, full_path, kinds): path
            for path in iter_files(directory, recursive)
        }

        for future in concurrent.futures.as_completed(futures):
            result = future.result()
            stats.add(result)
            report(result)

    return stats


def report(result):
    if result.error is not None:
        return
    if result.infected:
        logger.warning(result.alert())
    else:
        logger.info(f"No viruses found in {result.path}")


def summary_lines(stats, db_stats):
    return [
        "----------- SCAN SUMMARY -----------",
        f"Scanned files: {stats.scanned_files}",
        f"Scanned folders: {stats.scanned_folders}",
        f"Infected files: {stats.infected_files}",
        f"Errors: {stats.errors}",
        f"Data scanned: {sizeof_fmt(stats.data_scanned)}",
        f"Data read: {sizeof_fmt(stats.data_read)}",
        f"Known viruses: {db_stats.count}",
    ]
