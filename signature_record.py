from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Declared size of a wildcard ("*") signature
UNKNOWN_SIZE = None


class HashKind(Enum):
    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    UNKNOWN = "unknown"

    @classmethod
    def from_hash(cls, hex_hash):
        """
        infers the digest algorithm from the length of a hex hash
        """
        return _KIND_BY_LENGTH.get(len(hex_hash), cls.UNKNOWN)

    @classmethod
    def from_name(cls, name, hex_hash=""):
        """
        parses a kind name like "md5" or "SHA-256".
        falls back to the hash length when the name isn't recognized
        """
        cleaned = name.strip().lower().replace("-", "")
        for kind in cls:
            if kind.value == cleaned and kind is not cls.UNKNOWN:
                return kind
        return cls.from_hash(hex_hash)


_KIND_BY_LENGTH = {
    32: HashKind.MD5,
    40: HashKind.SHA1,
    64: HashKind.SHA256,
}


@dataclass(frozen=True)
class SignatureRecord:
    """One known-malicious file: its hash, declared size and malware name."""

    hash: str
    hash_kind: HashKind
    size: Optional[int]
    label: str = ""
    comment: str = ""
    source: str = ""
    line_number: int = 0

    @property
    def has_unknown_size(self):
        return self.size is UNKNOWN_SIZE
