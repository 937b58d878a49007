"""
Tests for signature file parsing and the directory loader.
"""

import os
import sys
import threading

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from signature_errors import (
    LoadCancelledError,
    MalformedSignatureLineError,
    SignatureIOError,
)
from signature_index import UnknownSizePolicy
from signature_loader import (
    HASH_DATABASE_FORMAT,
    TABULAR_FORMAT,
    LoadObserver,
    SignatureLoader,
    format_for_path,
    parse_csv_line,
    parse_hdb_line,
)
from signature_record import UNKNOWN_SIZE, HashKind

MD5_EMPTY = "d41d8cd98f00b204e9800998ecf8427e"
SHA1_EMPTY = "da39a3ee5e6b4b0d3255bfef95601890afd80709"
SHA256_EMPTY = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class RecordingObserver(LoadObserver):
    def __init__(self):
        self.events = []

    def load_started(self, root):
        self.events.append(("started", root))

    def file_opened(self, path, fmt):
        self.events.append(("opened", os.path.basename(path), fmt.name))

    def unknown_size(self, path, line_number, skipped):
        self.events.append(("unknown_size", line_number, skipped))

    def file_parsed(self, path, records):
        self.events.append(("parsed", os.path.basename(path), records))


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


# ===========================================================================
# Line Parser Tests
# ===========================================================================

class TestParseHdbLine:
    def test_basic_line(self):
        record = parse_hdb_line(f"{MD5_EMPTY}:0:Empty.Test")
        assert record.hash == MD5_EMPTY
        assert record.hash_kind == HashKind.MD5
        assert record.size == 0
        assert record.label == "Empty.Test"
        assert record.comment == ""

    def test_wildcard_size(self):
        record = parse_hdb_line(f"{SHA256_EMPTY}:*:Wildcard.Test")
        assert record.size is UNKNOWN_SIZE
        assert record.has_unknown_size
        assert record.hash_kind == HashKind.SHA256

    def test_trailing_fields_ignored(self):
        record = parse_hdb_line(f"{SHA1_EMPTY}:42:Name:73")
        assert record.hash_kind == HashKind.SHA1
        assert record.size == 42
        assert record.label == "Name"

    def test_empty_label_allowed(self):
        record = parse_hdb_line(f"{MD5_EMPTY}:10:")
        assert record.label == ""

    def test_unknown_hash_length_still_parsed(self):
        record = parse_hdb_line("abc123:5:Short")
        assert record.hash_kind == HashKind.UNKNOWN
        assert record.hash == "abc123"

    def test_hash_lowercased(self):
        record = parse_hdb_line(f"{MD5_EMPTY.upper()}:0:Upper")
        assert record.hash == MD5_EMPTY

    def test_too_few_fields(self):
        with pytest.raises(MalformedSignatureLineError) as exc:
            parse_hdb_line("onlyonefield", "sigs.hdb", 3)
        assert exc.value.path == "sigs.hdb"
        assert exc.value.line_number == 3

    def test_non_numeric_size(self):
        with pytest.raises(MalformedSignatureLineError):
            parse_hdb_line(f"{MD5_EMPTY}:big:Name")

    @pytest.mark.parametrize("size", ["1_000", "+5", "1.5", "", "0x10"])
    def test_size_must_be_plain_decimal(self, size):
        with pytest.raises(MalformedSignatureLineError):
            parse_hdb_line(f"{MD5_EMPTY}:{size}:Name")

    def test_empty_hash(self):
        with pytest.raises(MalformedSignatureLineError):
            parse_hdb_line(":10:Name")

    def test_non_hex_hash(self):
        with pytest.raises(MalformedSignatureLineError):
            parse_hdb_line("\ufeff" + MD5_EMPTY + ":0:Name")


class TestParseCsvLine:
    def test_basic_line(self):
        record = parse_csv_line(f"{SHA256_EMPTY},sha256,1024,Trojan.X,seen in the wild")
        assert record.hash == SHA256_EMPTY
        assert record.hash_kind == HashKind.SHA256
        assert record.size == 1024
        assert record.label == "Trojan.X"
        assert record.comment == "seen in the wild"

    def test_kind_name_falls_back_to_length(self):
        record = parse_csv_line(f"{MD5_EMPTY},whatever,1,Name,")
        assert record.hash_kind == HashKind.MD5

    def test_no_wildcard_allowed(self):
        with pytest.raises(MalformedSignatureLineError):
            parse_csv_line(f"{MD5_EMPTY},md5,*,Name,comment")

    def test_too_few_fields(self):
        with pytest.raises(MalformedSignatureLineError):
            parse_csv_line(f"{MD5_EMPTY},md5,10,Name")


class TestFormatForPath:
    @pytest.mark.parametrize("name", ["a.hdb", "a.hsb", "a.hdu", "a.hsu", "A.HDB"])
    def test_hash_database_extensions(self, name):
        assert format_for_path(name) is HASH_DATABASE_FORMAT

    def test_csv(self):
        assert format_for_path("export.csv") is TABULAR_FORMAT

    @pytest.mark.parametrize("name", ["readme.txt", "sigs.ndb", "noext"])
    def test_unrecognized(self, name):
        assert format_for_path(name) is None


# ===========================================================================
# Loader Tests
# ===========================================================================

class TestSignatureLoader:
    def test_loads_both_formats_recursively(self, tmp_path):
        write(tmp_path / "main.hdb", f"{MD5_EMPTY}:0:Empty.Test\n")
        write(tmp_path / "nested" / "deep" / "export.csv", f"{SHA256_EMPTY},sha256,7,Csv.Test,note\n")
        write(tmp_path / "ignored.txt", "not a signature file\n")

        loader = SignatureLoader(str(tmp_path))
        index = loader.load().build()

        assert loader.files_loaded == 2
        assert index.has_hash(MD5_EMPTY)
        assert index.has_hash(SHA256_EMPTY)
        assert index.get_by_hash(SHA256_EMPTY).comment == "note"

    def test_blank_lines_skipped(self, tmp_path):
        write(tmp_path / "sigs.hdb", f"\n{MD5_EMPTY}:0:A\n\n   \n{SHA1_EMPTY}:5:B\n")
        index = SignatureLoader(str(tmp_path)).load().build()
        assert len(index) == 2

    def test_crlf_line_endings(self, tmp_path):
        (tmp_path / "sigs.hdb").write_bytes(f"{MD5_EMPTY}:0:Dos.Name\r\n".encode())
        index = SignatureLoader(str(tmp_path)).load().build()
        assert index.get_by_hash(MD5_EMPTY).label == "Dos.Name"

    def test_malformed_line_reports_file_and_line(self, tmp_path):
        path = write(tmp_path / "bad.hdb", f"{MD5_EMPTY}:0:Good\nonlyonefield\n")
        with pytest.raises(MalformedSignatureLineError) as exc:
            SignatureLoader(str(tmp_path)).load()
        assert exc.value.path == str(path)
        assert exc.value.line_number == 2

    def test_invalid_utf8(self, tmp_path):
        (tmp_path / "bad.hdb").write_bytes(b"\xff\xfe\xfa:0:Broken\n")
        with pytest.raises(MalformedSignatureLineError):
            SignatureLoader(str(tmp_path)).load()

    def test_invalid_utf8_reports_exact_line(self, tmp_path):
        good = "".join(f"{i:032x}:{i}:Good.{i}\n" for i in range(999))
        (tmp_path / "big.hdb").write_bytes(good.encode() + b"\xff\xfe:0:Bad\n")
        with pytest.raises(MalformedSignatureLineError) as exc:
            SignatureLoader(str(tmp_path)).load()
        assert exc.value.line_number == 1000

    def test_byte_order_mark_stripped(self, tmp_path):
        (tmp_path / "bom.hdb").write_bytes(b"\xef\xbb\xbf" + f"{MD5_EMPTY}:0:Bom.Test\n{SHA1_EMPTY}:5:B\n".encode())
        index = SignatureLoader(str(tmp_path)).load().build()
        assert index.get_by_hash(MD5_EMPTY).label == "Bom.Test"
        assert len(index) == 2

    def test_missing_root(self, tmp_path):
        with pytest.raises(SignatureIOError):
            SignatureLoader(str(tmp_path / "missing")).load()

    def test_skip_policy_counts_skipped(self, tmp_path):
        write(tmp_path / "sigs.hdb", f"{MD5_EMPTY}:*:Wild\n{SHA1_EMPTY}:3:Sized\n")
        loader = SignatureLoader(str(tmp_path), UnknownSizePolicy.SKIP)
        index = loader.load().build()
        assert loader.skipped_unknown_size == 1
        assert not index.has_hash(MD5_EMPTY)
        assert index.has_hash(SHA1_EMPTY)

    def test_files_visited_in_sorted_order(self, tmp_path):
        write(tmp_path / "b.hdb", f"{MD5_EMPTY}:1:From.B\n")
        write(tmp_path / "a.hdb", f"{MD5_EMPTY}:1:From.A\n")
        index = SignatureLoader(str(tmp_path)).load().build()
        assert index.get_by_hash(MD5_EMPTY).label == "From.B"

    def test_observer_hooks(self, tmp_path):
        write(tmp_path / "sigs.hdb", f"{MD5_EMPTY}:0:A\n{SHA1_EMPTY}:*:B\n")
        observer = RecordingObserver()
        SignatureLoader(str(tmp_path), UnknownSizePolicy.DISABLE_SIZE_CHECKS, observer).load()
        assert observer.events == [
            ("started", str(tmp_path)),
            ("opened", "sigs.hdb", "hash-database"),
            ("unknown_size", 2, False),
            ("parsed", "sigs.hdb", 2),
        ]


class TestLoaderCancellation:
    def test_cancel_event_set_before_load(self, tmp_path):
        write(tmp_path / "sigs.hdb", f"{MD5_EMPTY}:0:A\n")
        event = threading.Event()
        event.set()
        with pytest.raises(LoadCancelledError):
            SignatureLoader(str(tmp_path)).load(cancel_event=event)

    def test_timeout_expired(self, tmp_path):
        write(tmp_path / "sigs.hdb", f"{MD5_EMPTY}:0:A\n")
        with pytest.raises(LoadCancelledError):
            SignatureLoader(str(tmp_path)).load(timeout=-1)

    def test_unset_event_does_not_cancel(self, tmp_path):
        write(tmp_path / "sigs.hdb", f"{MD5_EMPTY}:0:A\n")
        builder = SignatureLoader(str(tmp_path)).load(cancel_event=threading.Event(), timeout=60)
        assert len(builder.build()) == 1
