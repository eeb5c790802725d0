from __future__ import annotations

import logging

import pytest

from dspend.errors import CollaboratorError, ReconciliationError, ValidationError
from dspend.models import InputReference
from dspend.reconciler import ValueReconciler, match_output_value, summarize_transaction

from helpers import SOURCE, StubExplorer, decoded_tx, make_node, record


def test_owner_listed_second_still_matches() -> None:
    explorer = StubExplorer({"A": record((["tb1qcosigner", SOURCE], 2_000_000))})

    result = ValueReconciler(explorer, "test").reconcile([InputReference("A", 0)], SOURCE)

    assert result.total_in_sats == 2_000_000
    assert result.unmatched == []
    assert explorer.requests == [("test", "A")]


def test_output_at_vout_is_preferred_when_owned() -> None:
    rec = record(([SOURCE], 1_000), (["tb1qother"], 5_000), ([SOURCE], 7_000))

    assert match_output_value(rec, InputReference("A", 2), SOURCE) == 7_000
    assert match_output_value(rec, InputReference("A", 1), SOURCE) == 1_000
    assert match_output_value(rec, InputReference("A", 9), "tb1qnobody") is None


def test_unmatched_input_contributes_zero_and_warns(caplog: pytest.LogCaptureFixture) -> None:
    explorer = StubExplorer(
        {
            "A": record(([SOURCE], 2_000_000)),
            "B": record((["tb1qother"], 1_000_000), (["tb1qthird"], 500_000)),
        }
    )
    inputs = [InputReference("A", 0), InputReference("B", 1)]

    with caplog.at_level(logging.WARNING):
        result = ValueReconciler(explorer).reconcile(inputs, SOURCE)

    assert result.partial
    assert result.unmatched == [InputReference("B", 1)]
    assert [item.value_sats for item in result.inputs] == [2_000_000, 0]
    assert result.total_in_sats == 2_000_000
    assert result.total_in_sats <= 2_000_000 + 1_000_000 + 500_000
    assert "B:1" in caplog.text


def test_explorer_domain_error_raises_reconciliation_error() -> None:
    explorer = StubExplorer({"A": record(error="Transaction A not found.")})

    with pytest.raises(ReconciliationError, match="not found"):
        ValueReconciler(explorer).reconcile([InputReference("A", 0)], SOURCE)


def test_transport_failure_aborts_instead_of_counting_as_missing() -> None:
    explorer = StubExplorer({"A": record(([SOURCE], 1))}, fail_on={"B"})

    with pytest.raises(CollaboratorError):
        ValueReconciler(explorer).reconcile([InputReference("A", 0), InputReference("B", 0)], SOURCE)


@pytest.mark.parametrize("workers", [1, 4])
def test_each_txid_is_fetched_once(workers: int) -> None:
    explorer = StubExplorer(
        {
            "A": record(([SOURCE], 1_000), ([SOURCE], 2_000)),
            "B": record(([SOURCE], 4_000)),
        }
    )
    inputs = [InputReference("A", 0), InputReference("A", 1), InputReference("B", 0)]

    result = ValueReconciler(explorer, max_workers=workers).reconcile(inputs, SOURCE)

    assert result.total_in_sats == 7_000
    assert sorted(txid for _, txid in explorer.requests) == ["A", "B"]


def test_reconcile_requires_owner_address() -> None:
    with pytest.raises(ValidationError):
        ValueReconciler(StubExplorer({})).reconcile([InputReference("A", 0)], "")


def test_summary_reports_fee_from_reconciled_inputs() -> None:
    node, _ = make_node(decoded=decoded_tx([("A", 0), ("B", 1)], [("tb1qdest", "0.02999600")]))
    explorer = StubExplorer(
        {"A": record(([SOURCE], 2_000_000)), "B": record((["x"], 1), ([SOURCE], 1_000_000))}
    )

    decoded, summary = summarize_transaction(node, ValueReconciler(explorer), "rawhex", SOURCE)

    assert decoded.txid == "newtx"
    assert summary.total_in_sats == 3_000_000
    assert summary.total_out_sats == 2_999_600
    assert summary.fee_sats == 400
