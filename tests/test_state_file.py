from __future__ import annotations

import json
import multiprocessing
import os
import tempfile
import unittest

from utils.state_file import (
    FileLockError,
    atomic_write_json,
    file_lock,
    read_json_locked,
    remove_locked,
    write_json_locked,
)


def _hold_lock_worker(path: str, ready: multiprocessing.Event, release: multiprocessing.Event) -> None:
    with file_lock(path, timeout_seconds=2.0, poll_seconds=0.01):
        ready.set()
        release.wait(2.0)


class StateFileTests(unittest.TestCase):
    def test_atomic_write_is_compact_and_overwrites(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "0xabc.json")
            with open(path, "w", encoding="utf-8") as f:
                f.write("stale contents that are longer than the new payload")
            atomic_write_json(path, [{"hash": "0x01", "blockNumber": 1, "input": None}])
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
            self.assertEqual(raw, '[{"hash":"0x01","blockNumber":1,"input":null}]')
            self.assertEqual(os.listdir(tmp_dir), ["0xabc.json"])

    def test_failed_serialization_leaves_no_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "out.json")
            with self.assertRaises(TypeError):
                atomic_write_json(path, {"bad": object()})
            self.assertEqual(os.listdir(tmp_dir), [])

    def test_locked_write_read_remove_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "checkpoint.json")
            self.assertIsNone(read_json_locked(path))
            payload = {"version": 1, "records": [], "skipped": ["0x01"]}
            write_json_locked(path, payload, indent=2)
            self.assertEqual(read_json_locked(path), payload)
            with open(path, "r", encoding="utf-8") as f:
                self.assertEqual(json.load(f), payload)
            self.assertTrue(remove_locked(path))
            self.assertFalse(remove_locked(path))
            self.assertFalse(os.path.exists(path))

    def test_lock_is_exclusive(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "checkpoint.json")
            ctx = multiprocessing.get_context("spawn")
            ready = ctx.Event()
            release = ctx.Event()
            proc = ctx.Process(target=_hold_lock_worker, args=(path, ready, release))
            proc.start()
            try:
                self.assertTrue(ready.wait(5.0), "worker did not acquire lock in time")
                with self.assertRaises(FileLockError):
                    with file_lock(path, timeout_seconds=0.08, poll_seconds=0.01):
                        pass
            finally:
                release.set()
                proc.join(5.0)
                if proc.is_alive():
                    proc.terminate()
                    proc.join(1.0)
            self.assertEqual(proc.exitcode, 0)


if __name__ == "__main__":
    unittest.main()
