"""
Signature database: loads signature files once, then answers

    has_size(n)      -> is any signature this many bytes?
    has_hash(h)      -> is any signature this hash?
    get_by_hash(h)   -> the matching SignatureRecord, or None
    get_by_size(n)   -> some record of that size, or None (slow)
    stats()          -> DatabaseStats

Typical use:

    db = SignatureDatabase(DatabaseConfig(path="data/signatures"))
    db.load()
    if db.has_size(size) and db.has_hash(md5_hex):
        print(db.get_by_hash(md5_hex).label)

A database loads exactly once. If the load fails it stays FAILED and every
query raises DatabaseStateError; build a new instance to try again.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from bloom_filter import BloomFilter
from signature_errors import DatabaseStateError, InvalidConfigurationError
from signature_index import SignatureIndexBuilder, UnknownSizePolicy
from signature_loader import LoadObserver, LoggingObserver, SignatureLoader
from signature_record import HashKind

logger = logging.getLogger("AV_SignatureDB")

# ── CONFIG ──────────────────

SIGNATURES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "signatures")
DEFAULT_BLOOM_FPR = 0.01


@dataclass
class DatabaseConfig:
    path: str = SIGNATURES_DIR
    use_bloom: bool = True
    bloom_fpr: float = DEFAULT_BLOOM_FPR
    unknown_size_policy: UnknownSizePolicy = UnknownSizePolicy.SKIP
    # check bloom filter positives against the exact index before reporting a match
    confirm_bloom_positives: bool = True
    observer: Optional[LoadObserver] = None

    def validate(self):
        if not isinstance(self.unknown_size_policy, UnknownSizePolicy):
            raise InvalidConfigurationError(
                f"unknown_size_policy must be an UnknownSizePolicy, got {self.unknown_size_policy!r}"
            )
        if not self.use_bloom:
            return
        if isinstance(self.bloom_fpr, bool) or not isinstance(self.bloom_fpr, (int, float)):
            raise InvalidConfigurationError(
                f"Bloom filter false positive rate must be a number, got {self.bloom_fpr!r}"
            )
        if not 0 < self.bloom_fpr < 1:
            raise InvalidConfigurationError(
                f"Bloom filter false positive rate must be between 0 and 1, got {self.bloom_fpr}"
            )


class DatabaseState(Enum):
    UNCONFIGURED = "unconfigured"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class DatabaseStats:
    count: int
    sizes: int = 0
    files_loaded: int = 0
    duplicates: int = 0
    skipped_unknown_size: int = 0
    size_checks_disabled: bool = False
    hash_kinds: Dict[HashKind, int] = field(default_factory=dict)
    bloom_enabled: bool = False
    bloom_bits: int = 0
    bloom_hashes: int = 0


class SignatureDatabase:

    def __init__(self, config=None, **overrides):
        if config is None:
            config = DatabaseConfig(**overrides)
        elif overrides:
            raise TypeError("pass either a DatabaseConfig or keyword overrides, not both")
        config.validate()

        self.config = config
        self.observer = config.observer or LoggingObserver()
        self.state = DatabaseState.UNCONFIGURED
        self.error = None

        self._lock = threading.Lock()
        self._index = None
        self._bloom = None
        self._stats = None

    # ── LIFECYCLE ──────────────────

    def load(self, cancel_event=None, timeout=None):
        """
        Loads every signature file under config.path, builds the index and,
        if enabled, the bloom filter.

        cancel_event (a threading.Event) and timeout (seconds) can abort a
        long load; either one raises LoadCancelledError.
        Any error leaves the database FAILED and is re-raised.
        """
        with self._lock:
            if self.state is not DatabaseState.UNCONFIGURED:
                raise DatabaseStateError(self.state, f"Signature database is already {self.state.value}")
            self.state = DatabaseState.LOADING

        try:
            if not os.path.isdir(self.config.path):
                raise InvalidConfigurationError(f"Signature path is not a directory: {self.config.path}")

            loader = SignatureLoader(
                self.config.path,
                unknown_size_policy=self.config.unknown_size_policy,
                observer=self.observer,
            )
            builder = loader.load(
                SignatureIndexBuilder(self.config.unknown_size_policy),
                cancel_event=cancel_event,
                timeout=timeout,
            )

            logger.debug("Sorting hashes and sizes...")
            index = builder.build()

            bloom = None
            if self.config.use_bloom:
                logger.debug("Creating bloom filter...")
                bloom = BloomFilter.from_items(index.sorted_hashes, self.config.bloom_fpr)

        except Exception as err:
            self._fail(err)
            raise

        self._index = index
        self._bloom = bloom
        self._stats = DatabaseStats(
            count=len(index),
            sizes=len(index.sorted_sizes),
            files_loaded=loader.files_loaded,
            duplicates=builder.duplicates,
            skipped_unknown_size=loader.skipped_unknown_size,
            size_checks_disabled=index.size_checks_disabled,
            hash_kinds=dict(index.hash_kind_counts()),
            bloom_enabled=bloom is not None,
            bloom_bits=bloom.m_bits if bloom else 0,
            bloom_hashes=bloom.k if bloom else 0,
        )
        self.state = DatabaseState.READY
        self.observer.load_complete(self._stats)
        return self._stats

    def _fail(self, err):
        self.state = DatabaseState.FAILED
        self.error = err
        self.observer.load_failed(err)

    @property
    def ready(self):
        return self.state is DatabaseState.READY

    def _require_ready(self):
        if self.state is not DatabaseState.READY:
            raise DatabaseStateError(self.state)
        return self._index

    # ── QUERIES ──────────────────

    def has_hash(self, hex_hash):
        """
        true if a signature with this hash was loaded.
        a bloom filter negative is final. a positive is confirmed against the
        index unless confirm_bloom_positives is off
        """
        index = self._require_ready()
        hex_hash = hex_hash.lower()
        if self._bloom is not None:
            if not self._bloom.test(hex_hash):
                return False
            if not self.config.confirm_bloom_positives:
                return True
        return index.has_hash(hex_hash)

    def has_size(self, size):
        """
        true if a signature declares this size, or if size checks were
        disabled by a signature of unknown size
        """
        return self._require_ready().has_size(size)

    def get_by_hash(self, hex_hash):
        return self._require_ready().get_by_hash(hex_hash.lower())

    def get_by_size(self, size):
        # linear scan, never use this while scanning
        return self._require_ready().get_by_size(size)

    def stats(self):
        self._require_ready()
        return self._stats

    def hash_kinds(self):
        """
        the set of hash kinds present, so a scanner only computes the digests it needs
        """
        return frozenset(self.stats().hash_kinds)

    @property
    def hashes(self):
        return self._require_ready().sorted_hashes

    @property
    def sizes(self):
        return self._require_ready().sorted_sizes

    @property
    def size_checks_disabled(self):
        return self._require_ready().size_checks_disabled

    def __len__(self):
        return len(self._require_ready())

    def __contains__(self, hex_hash):
        return self.has_hash(hex_hash)
