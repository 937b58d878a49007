"""
In-memory signature index.

The index is built once at the end of a load and never changes afterwards,
so lookups need no locking and can be shared by every scanning thread.
"""

from bisect import bisect_left
from collections import Counter
from enum import Enum
from types import MappingProxyType


class UnknownSizePolicy(Enum):
    """
    what to do with signatures whose size is "*"

    SKIP                -> drop the signature completely
    DISABLE_SIZE_CHECKS -> keep the hash, and make every size check pass
    """
    SKIP = "skip"
    DISABLE_SIZE_CHECKS = "disable"


def _contains_sorted(values, item):
    # binary search over a sorted tuple
    i = bisect_left(values, item)
    return i < len(values) and values[i] == item


class SignatureIndex:

    def __init__(self, hash_to_record, unknown_size_policy, size_checks_disabled):
        self._hash_to_record = dict(hash_to_record)
        self.hash_to_record = MappingProxyType(self._hash_to_record)
        self.sorted_hashes = tuple(sorted(self._hash_to_record))
        self.sorted_sizes = tuple(sorted(
            record.size for record in self._hash_to_record.values()
            if not record.has_unknown_size
        ))
        self.unknown_size_policy = unknown_size_policy
        self.size_checks_disabled = size_checks_disabled

    def __len__(self):
        return len(self.sorted_hashes)

    def has_hash(self, hex_hash):
        return _contains_sorted(self.sorted_hashes, hex_hash)

    def has_size(self, size):
        if self.size_checks_disabled:
            return True
        return _contains_sorted(self.sorted_sizes, size)

    def get_by_hash(self, hex_hash):
        return self._hash_to_record.get(hex_hash)

    def get_by_size(self, size):
        """
        linear scan over every record. slow, only meant for diagnostics
        """
        for record in self._hash_to_record.values():
            if record.size == size:
                return record
        return None

    def hash_kind_counts(self):
        return Counter(record.hash_kind for record in self._hash_to_record.values())


class SignatureIndexBuilder:
    """
    Collects records during a load.
    A record with a hash that was already added replaces the earlier one.
    """

    def __init__(self, unknown_size_policy=UnknownSizePolicy.SKIP):
        self.unknown_size_policy = unknown_size_policy
        self._records = {}
        self._saw_unknown_size = False
        self.duplicates = 0

    def add(self, record):
        if record.has_unknown_size:
            if self.unknown_size_policy is UnknownSizePolicy.SKIP:
                return False
            self._saw_unknown_size = True

        if record.hash in self._records:
            self.duplicates += 1
        self._records[record.hash] = record
        return True

    def build(self):
        size_checks_disabled = (
            self._saw_unknown_size
            and self.unknown_size_policy is UnknownSizePolicy.DISABLE_SIZE_CHECKS
        )
        return SignatureIndex(self._records, self.unknown_size_policy, size_checks_disabled)
