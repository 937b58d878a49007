"""
Loads signature files from a directory tree.

Supported formats, one signature per line:

    .hdb .hsb .hdu .hsu    hash:size:name[:...]        size may be "*"
    .csv                   hash,kind,size,name,comment

Blank lines are skipped. There is no quoting, so a ':' or ',' inside a
malware name is not supported. Any line that can't be parsed aborts the load.
"""

import logging
import os
import re
import time
from dataclasses import dataclass

from signature_errors import (
    LoadCancelledError,
    MalformedSignatureLineError,
    SignatureIOError,
)
from signature_index import SignatureIndexBuilder, UnknownSizePolicy
from signature_record import UNKNOWN_SIZE, HashKind, SignatureRecord

logger = logging.getLogger("AV_Loader")

# ── CONFIG ──────────────────

WILDCARD_SIZE = "*"

# how many lines are parsed between two cancellation checks
CANCEL_CHECK_INTERVAL = 4096

_SIZE_RE = re.compile(r"-?[0-9]+")
_HEX_RE = re.compile(r"[0-9a-f]+")

UTF8_BOM = b"\xef\xbb\xbf"


# ── LINE PARSERS ──────────────────

def _parse_size(field, path, line_number, allow_wildcard):
    field = field.strip()
    if allow_wildcard and field == WILDCARD_SIZE:
        return UNKNOWN_SIZE
    if not _SIZE_RE.fullmatch(field):
        raise MalformedSignatureLineError(path, line_number, f"invalid size {field!r}")
    return int(field)


def _parse_hash(field, path, line_number):
    hex_hash = field.strip().lower()
    if not hex_hash:
        raise MalformedSignatureLineError(path, line_number, "empty hash")
    if not _HEX_RE.fullmatch(hex_hash):
        raise MalformedSignatureLineError(path, line_number, f"hash is not hex: {hex_hash!r}")
    return hex_hash


def parse_hdb_line(line, path="", line_number=0):
    """
    parses a clamav hash signature: hash:size:name[:flevel...]
    """
    values = line.split(":")
    if len(values) < 3:
        raise MalformedSignatureLineError(
            path, line_number, f"expected hash:size:name, got {len(values)} field(s)"
        )
    hex_hash = _parse_hash(values[0], path, line_number)
    return SignatureRecord(
        hash=hex_hash,
        hash_kind=HashKind.from_hash(hex_hash),
        size=_parse_size(values[1], path, line_number, allow_wildcard=True),
        label=values[2],
        source=path,
        line_number=line_number,
    )


def parse_csv_line(line, path="", line_number=0):
    """
    parses a tabular export line: hash,kind,size,name,comment
    """
    values = line.split(",")
    if len(values) < 5:
        raise MalformedSignatureLineError(
            path, line_number, f"expected hash,kind,size,name,comment, got {len(values)} field(s)"
        )
    hex_hash = _parse_hash(values[0], path, line_number)
    return SignatureRecord(
        hash=hex_hash,
        hash_kind=HashKind.from_name(values[1], hex_hash),
        size=_parse_size(values[2], path, line_number, allow_wildcard=False),
        label=values[3],
        comment=values[4],
        source=path,
        line_number=line_number,
    )


@dataclass(frozen=True)
class SignatureFormat:
    name: str
    extensions: tuple
    parse_line: object


HASH_DATABASE_FORMAT = SignatureFormat("hash-database", (".hdb", ".hsb", ".hdu", ".hsu"), parse_hdb_line)
TABULAR_FORMAT = SignatureFormat("tabular", (".csv",), parse_csv_line)

SIGNATURE_FORMATS = (HASH_DATABASE_FORMAT, TABULAR_FORMAT)


def format_for_path(path, formats=SIGNATURE_FORMATS):
    """
    returns the format handling this file extension, or None
    """
    ext = os.path.splitext(path)[1].lower()
    for fmt in formats:
        if ext in fmt.extensions:
            return fmt
    return None


# ── OBSERVERS ──────────────────

class LoadObserver:
    """
    Hooks called by the loader as a load progresses. Every hook is a no-op
    here; subclass and override the ones you care about.
    """

    def load_started(self, root):
        pass

    def file_opened(self, path, fmt):
        pass

    def unknown_size(self, path, line_number, skipped):
        pass

    def file_parsed(self, path, records):
        pass

    def load_complete(self, stats):
        pass

    def load_failed(self, error):
        pass


class LoggingObserver(LoadObserver):

    def load_started(self, root):
        logger.info(f"Loading signatures from {root}")

    def file_opened(self, path, fmt):
        logger.info(f"Loading {path} ({fmt.name})")

    def unknown_size(self, path, line_number, skipped):
        if skipped:
            logger.debug(f"{path}:{line_number} has a signature with unknown size, skipping it")
        else:
            logger.debug(f"{path}:{line_number} has a signature with unknown size, disabling size checks")

    def file_parsed(self, path, records):
        logger.debug(f"Parsed {records} signature(s) from {path}")

    def load_complete(self, stats):
        logger.info(f"Loaded {stats.count} signature(s) from {stats.files_loaded} file(s)")
        if stats.size_checks_disabled:
            logger.info("Signatures with unknown size were loaded, size checks are disabled")
        elif stats.skipped_unknown_size:
            logger.info(f"Skipped {stats.skipped_unknown_size} signature(s) with unknown size")

    def load_failed(self, error):
        logger.error(f"Failed to load signatures: {error}")


# ── LOADER ──────────────────

class SignatureLoader:
    """
    Walks a directory and feeds every signature it finds into an index builder.

    Directories and file names are visited in sorted order, so when the same
    hash shows up twice, the one from the later path always wins.
    """

    def __init__(self, root, unknown_size_policy=UnknownSizePolicy.SKIP,
                 observer=None, formats=SIGNATURE_FORMATS):
        self.root = root
        self.unknown_size_policy = unknown_size_policy
        self.observer = observer or LoadObserver()
        self.formats = formats
        self.files_loaded = 0
        self.skipped_unknown_size = 0
        self._cancel_event = None
        self._deadline = None

    def load(self, builder=None, cancel_event=None, timeout=None):
        """
        parses every recognized file under root and returns the builder
        """
        if builder is None:
            builder = SignatureIndexBuilder(self.unknown_size_policy)
        self._cancel_event = cancel_event
        self._deadline = time.monotonic() + timeout if timeout is not None else None

        self.observer.load_started(self.root)
        for path in self.iter_signature_files():
            self._check_cancelled()
            self.load_file(path, builder)
        return builder

    def iter_signature_files(self):
        def _raise(err):
            raise SignatureIOError(err.filename or self.root, err)

        for root, dirs, files in os.walk(self.root, onerror=_raise):
            dirs.sort()
            for filename in sorted(files):
                path = os.path.join(root, filename)
                if not os.path.isfile(path):
                    continue
                if format_for_path(path, self.formats) is not None:
                    yield path

    def load_file(self, path, builder):
        fmt = format_for_path(path, self.formats)
        self.observer.file_opened(path, fmt)

        records = 0
        line_number = 0
        try:
            with open(path, "rb") as f:
                for line_number, raw in enumerate(f, start=1):
                    if line_number % CANCEL_CHECK_INTERVAL == 0:
                        self._check_cancelled()
                    if line_number == 1 and raw.startswith(UTF8_BOM):
                        raw = raw[len(UTF8_BOM):]
                    line = self._decode(raw, path, line_number).rstrip("\r\n")
                    if not line.strip():
                        continue
                    record = fmt.parse_line(line, path, line_number)
                    if builder.add(record):
                        records += 1
                        if record.has_unknown_size:
                            self.observer.unknown_size(path, line_number, skipped=False)
                    else:
                        self.skipped_unknown_size += 1
                        self.observer.unknown_size(path, line_number, skipped=True)
        except OSError as err:
            raise SignatureIOError(path, err) from err

        self.files_loaded += 1
        self.observer.file_parsed(path, records)
        return records

    @staticmethod
    def _decode(raw, path, line_number):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as err:
            raise MalformedSignatureLineError(path, line_number, f"not valid UTF-8 ({err.reason})") from err

    def _check_cancelled(self):
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise LoadCancelledError(f"Loading {self.root} was cancelled")
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise LoadCancelledError(f"Loading {self.root} timed out")
