"""Tests for financing_engines.tracer."""

from dataclasses import dataclass

import pytest

from financing_engines.tracer import (
    TRACE_TYPE,
    _canonicalize,
    compute_input_fingerprint,
    traced_engine,
)
from financing_kernel.domain.types import InvoiceStatus


@dataclass(frozen=True)
class _Point:
    x: int
    y: int


class TestCanonicalize:

    def test_dict_keys_sorted(self):
        assert _canonicalize({"b": 1, "a": 2}) == _canonicalize({"a": 2, "b": 1})

    def test_large_ints_exact(self):
        assert _canonicalize(2**255) == str(2**255)

    def test_dataclass_by_fields(self):
        assert _canonicalize(_Point(1, 2)) == "{x:1,y:2}"

    def test_none(self):
        assert _canonicalize(None) == "null"


class TestFingerprint:

    def test_deterministic(self):
        args = {"gross_amount": 101, "rule": _Point(1, 2)}
        fp1 = compute_input_fingerprint(("gross_amount", "rule"), args)
        fp2 = compute_input_fingerprint(("gross_amount", "rule"), dict(args))
        assert fp1 == fp2
        assert len(fp1) == 16

    def test_sensitive_to_inputs(self):
        a = compute_input_fingerprint(("gross_amount",), {"gross_amount": 101})
        b = compute_input_fingerprint(("gross_amount",), {"gross_amount": 102})
        assert a != b


class TestTracedEngine:

    def test_positional_args_fingerprinted(self, captured_logs):
        @traced_engine("demo", "2.0", fingerprint_fields=("amount",))
        def demo(amount, label="x"):
            return amount * 2

        assert demo(21) == 42
        assert demo(amount=21) == 42

        traces = [r for r in captured_logs() if r.get("trace_type") == TRACE_TYPE]
        assert len(traces) == 2
        assert traces[0]["engine_name"] == "demo"
        assert traces[0]["engine_version"] == "2.0"
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
        assert traces[0]["duration_ms"] >= 0

    def test_preserves_function_metadata(self):
        @traced_engine("demo", "1.0")
        def documented():
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."

    def test_failure_traced_and_reraised(self, captured_logs):
        @traced_engine("demo", "1.0", fingerprint_fields=("amount",))
        def failing(amount):
            raise ValueError("negative")

        with pytest.raises(ValueError):
            failing(-1)

        traces = [r for r in captured_logs() if r.get("trace_type") == TRACE_TYPE]
        assert traces[-1]["outcome"] == "ValueError"

    def test_successful_call_outcome(self, captured_logs):
        @traced_engine("demo", "1.0")
        def ok():
            return 1

        ok()
        assert captured_logs()[-1]["outcome"] == "ok"


class TestCanonicalizeLedgerValues:

    def test_bytes_as_hex(self):
        assert _canonicalize(b"\x01\x02") == "0x0102"

    def test_enum_by_value(self):
        assert _canonicalize(InvoiceStatus.PAID) == "PAID"
