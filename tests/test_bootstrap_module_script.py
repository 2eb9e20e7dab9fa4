from __future__ import annotations

import hashlib
import subprocess
import sys
from pathlib import Path


SCRIPT_PATH = Path(__file__).resolve().parents[1] / "scripts" / "bootstrap_module.py"


def _run_script(*args: str) -> str:
    completed = subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def test_bootstrap_script_emits_hashed_key_and_default_scope() -> None:
    output = _run_script("--module-id", "chat-service", "--api-key", "s3cret")

    expected_hash = hashlib.sha256(b"s3cret").hexdigest()
    assert "values ('chat-service', array['chat:notify']::text[], true)" in output
    assert f"'{expected_hash}'" in output
    assert "s3cret'" not in output
    assert "insert into settings" not in output


def test_bootstrap_script_accepts_scopes_and_seeds_policy() -> None:
    output = _run_script(
        "--module-id",
        "ops-console",
        "--api-key",
        "key",
        "--scope",
        "notifications:admin",
        "--scope",
        "chat:notify",
        "--seed-policy",
    )

    assert "array['notifications:admin', 'chat:notify']::text[]" in output
    assert "insert into settings (id, key, value)" in output
    assert '"delayMinutes": 30' in output
    assert "where not exists (select 1 from settings where key = 'chat_notification_settings')" in output
