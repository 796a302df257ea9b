from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


class ConfigEnvLoadingTests(unittest.TestCase):
    def _run_import(self, env_file: str, expr: str = "'ok'") -> subprocess.CompletedProcess[str]:
        root = Path(__file__).resolve().parents[1]
        env = os.environ.copy()
        env["RONIN_ENV_FILE"] = env_file
        return subprocess.run(
            [sys.executable, "-c", f"import config; print({expr})"],
            cwd=str(root),
            env=env,
            capture_output=True,
            text=True,
        )

    def test_missing_env_file_fails_fast(self) -> None:
        result = self._run_import("__definitely_missing_env_for_test__.env")
        self.assertNotEqual(result.returncode, 0)
        details = (result.stdout + "\n" + result.stderr).lower()
        self.assertIn("ronin_env_file", details)
        self.assertIn("does not exist", details)

    def test_env_file_overrides_endpoint_and_retry_settings(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "ronin.env"
            env_path.write_text(
                "\n".join(
                    [
                        "RONIN_REST_URL=https://mirror.example/",
                        "HTTP_MAX_RETRIES=20",
                        "COLLECTOR_CONCURRENCY=4",
                        "COLLECTOR_CHECKPOINT_ENABLED=yes",
                    ]
                )
                + "\n",
                encoding="utf-8",
            )
            result = self._run_import(
                str(env_path),
                (
                    "f\"{config.RONIN_REST_URL}|{config.HTTP_MAX_RETRIES}|"
                    "{config.COLLECTOR_CONCURRENCY}|{config.COLLECTOR_CHECKPOINT_ENABLED}\""
                ),
            )
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "https://mirror.example|20|4|True")

    def test_retry_count_is_clamped(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "ronin.env"
            env_path.write_text("HTTP_MAX_RETRIES=500\n", encoding="utf-8")
            result = self._run_import(str(env_path), "config.HTTP_MAX_RETRIES")
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "25")

    def test_source_rate_limits_are_parsed(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "ronin.env"
            env_path.write_text("HTTP_SOURCE_RATE_LIMITS=ronin_archive:30/60,broken,ronin_decoder:x/1\n", encoding="utf-8")
            result = self._run_import(str(env_path), "sorted(config.HTTP_SOURCE_RATE_LIMITS.items())")
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "[('ronin_archive', (30, 60.0))]")


if __name__ == "__main__":
    unittest.main()
