"""
Workflow engine tests.

Critical invariants tested:
    ONLY THE OWNER ADVANCES A RECORD
    NOTHING LEAVES COMPLETED OR FAILED
"""

import json
import unittest

from xraycryst.compute import ComputeBackend, ComputeResult, SimulatedFheBackend, seal_submission
from xraycryst.errors import (
    AlreadyTerminalError,
    ComputeError,
    IllegalTransitionError,
    RecordNotFoundError,
    UnauthorizedError,
)
from xraycryst.ledger import InMemoryLedger
from xraycryst.records import RecordStatus
from xraycryst.store import RecordStore
from xraycryst.util import b64d
from xraycryst.wallet import LocalWalletSigner
from xraycryst.workflow import WorkflowEngine

OWNER = "0x" + "a" * 40
STRANGER = "0x" + "b" * 40


class FixedBackend(ComputeBackend):
    """Returns fixed artifacts, or raises, and counts calls."""

    def __init__(self, artifacts=(b"d1", b"d2"), error=None):
        self.artifacts = tuple(artifacts)
        self.error = error
        self.calls = []

    def run(self, payload):
        self.calls.append(payload)
        if self.error is not None:
            raise self.error
        return ComputeResult(artifacts=self.artifacts)


class WorkflowTestCase(unittest.TestCase):

    def setUp(self):
        self.ledger = InMemoryLedger(signer=LocalWalletSigner.generate())
        self.store = RecordStore(self.ledger)
        self.backend = FixedBackend()
        self.engine = WorkflowEngine(self.store, self.backend)


class TestAdvance(WorkflowTestCase):
    """WorkflowEngine.advance"""

    def test_end_to_end_completion(self):
        r = self.engine.submit("0xA", b"P")
        self.assertEqual(r.status, RecordStatus.PROCESSING)

        done = self.engine.advance(r.id, "0xA")

        self.assertEqual(done.status, RecordStatus.COMPLETED)
        self.assertEqual(done.artifacts, (b"d1", b"d2"))
        self.assertEqual(self.store.get(r.id), done)
        self.assertEqual(self.backend.calls, [b"P"])

    def test_owner_comparison_ignores_case(self):
        r = self.engine.submit("0xAbCdEf" + "0" * 34, b"P")
        done = self.engine.advance(r.id, "0xabcdef" + "0" * 34)
        self.assertEqual(done.status, RecordStatus.COMPLETED)

    def test_non_owner_rejected(self):
        r = self.engine.submit(OWNER, b"P")
        with self.assertRaises(UnauthorizedError) as ctx:
            self.engine.advance(r.id, STRANGER)
        self.assertEqual(ctx.exception.caller, STRANGER)
        self.assertEqual(self.store.get(r.id), r)
        self.assertEqual(self.backend.calls, [])

    def test_terminal_guard(self):
        r = self.engine.submit(OWNER, b"P")
        self.engine.advance(r.id, OWNER)
        with self.assertRaises(AlreadyTerminalError) as ctx:
            self.engine.advance(r.id, OWNER)
        self.assertEqual(ctx.exception.status, "completed")
        self.assertEqual(len(self.backend.calls), 1)

    def test_compute_failure_moves_to_failed(self):
        self.backend.error = ComputeError("enclave crashed")
        r = self.engine.submit(OWNER, b"P")

        with self.assertLogs("xraycryst.workflow", level="WARNING"):
            failed = self.engine.advance(r.id, OWNER)

        self.assertEqual(failed.status, RecordStatus.FAILED)
        self.assertEqual(failed.artifacts, ())
        self.assertEqual(self.store.get(r.id), failed)

    def test_failed_is_never_retried(self):
        self.backend.error = ComputeError("enclave crashed")
        r = self.engine.submit(OWNER, b"P")
        self.engine.advance(r.id, OWNER)
        self.backend.error = None
        with self.assertRaises(AlreadyTerminalError):
            self.engine.advance(r.id, OWNER)
        self.assertEqual(len(self.backend.calls), 1)

    def test_other_backend_errors_propagate(self):
        self.backend.error = RuntimeError("bug")
        r = self.engine.submit(OWNER, b"P")
        with self.assertRaises(RuntimeError):
            self.engine.advance(r.id, OWNER)
        self.assertEqual(self.store.get(r.id).status, RecordStatus.PROCESSING)

    def test_unknown_record(self):
        with self.assertRaises(RecordNotFoundError):
            self.engine.advance("1-nothing", OWNER)

    def test_completed_elsewhere_while_computing(self):
        r = self.engine.submit(OWNER, b"P")
        store = self.store

        class RacingBackend(ComputeBackend):
            def run(self, payload):
                store.update(r.id, lambda cur: cur.failed())
                return ComputeResult(artifacts=(b"late",))

        engine = WorkflowEngine(self.store, RacingBackend())
        with self.assertRaises(AlreadyTerminalError):
            engine.advance(r.id, OWNER)
        self.assertEqual(self.store.get(r.id).status, RecordStatus.FAILED)

    def test_status_is_monotone(self):
        r = self.engine.submit(OWNER, b"P")
        self.engine.advance(r.id, OWNER)
        with self.assertRaises(IllegalTransitionError):
            self.store.update(r.id, lambda cur: cur.failed())

    def test_observer_sees_each_transition(self):
        seen = []
        engine = WorkflowEngine(self.store, self.backend, observer=lambda before, after: seen.append((before, after)))
        r = engine.submit(OWNER, b"P")
        done = engine.advance(r.id, OWNER)
        self.assertEqual(seen, [(r, done)])

    def test_transition_audited(self):
        r = self.engine.submit(OWNER, b"P")
        with self.assertLogs("xraycryst.audit", level="INFO") as logs:
            self.engine.advance(r.id, OWNER)
        self.assertTrue(any("RECORD_TRANSITION" in line and "processing -> completed" in line for line in logs.output))


class TestSubmit(WorkflowTestCase):
    """WorkflowEngine.submit / submit_image"""

    def test_submit_image_seals_payload(self):
        r = self.engine.submit_image(OWNER, "lysozyme_01.mtz", "hen egg-white")
        self.assertTrue(r.payload.startswith(b"FHE-"))
        body = json.loads(b64d(r.payload[4:].decode("ascii")))
        self.assertEqual(body, {"description": "hen egg-white", "image": "lysozyme_01.mtz"})

    def test_submit_image_requires_name(self):
        for name in ("", "   "):
            with self.subTest(name=name):
                with self.assertRaises(ValueError):
                    self.engine.submit_image(OWNER, name)
        self.assertEqual(self.store.list(), [])


class TestSimulatedBackend(unittest.TestCase):
    """SimulatedFheBackend"""

    def test_deterministic_placeholder_artifacts(self):
        backend = SimulatedFheBackend()
        a = backend.run(b"payload")
        b = backend.run(b"payload")
        self.assertEqual(a, b)
        self.assertEqual(len(a.artifacts), 2)
        self.assertTrue(a.artifacts[0].startswith(b"FHE-ENCRYPTED-DENSITY-MAP:"))
        self.assertTrue(a.artifacts[1].startswith(b"FHE-ENCRYPTED-STRUCTURE:"))
        self.assertNotEqual(a, backend.run(b"other"))

    def test_fail_on(self):
        backend = SimulatedFheBackend(fail_on=lambda p: p.startswith(b"bad"))
        with self.assertRaises(ComputeError):
            backend.run(b"bad payload")
        self.assertEqual(len(backend.run(b"good").artifacts), 2)

    def test_negative_delay_rejected(self):
        with self.assertRaises(ValueError):
            SimulatedFheBackend(delay_seconds=-1)

    def test_seal_requires_image(self):
        with self.assertRaises(ValueError):
            seal_submission("")


if __name__ == "__main__":
    unittest.main()
