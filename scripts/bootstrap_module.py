#!/usr/bin/env python3
"""Emit deterministic SQL that registers a machine module for the notifier API."""

from __future__ import annotations

import argparse
import hashlib
import json

DEFAULT_SCOPES = ("chat:notify",)
POLICY_SETTING_KEY = "chat_notification_settings"
DEFAULT_POLICY = {
    "enabled": True,
    "immediate": {"enabled": True, "onlyFirstMessageInThread": False},
    "delayed": {"enabled": True, "delayMinutes": 30},
    "throttle": {"maxPerWindow": 3, "windowMinutes": 60},
}


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, module_id: str, api_key: str, scopes: list[str], seed_policy: bool) -> str:
    key_hash = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    scopes_array = "array[" + ", ".join(_quote_sql(scope) for scope in scopes) + "]::text[]"
    module_value = _quote_sql(module_id)

    sql = f"""-- chat-notifier machine module bootstrap SQL
-- Run in a privileged Postgres session against the application database.

insert into modules (module_id, scopes, enabled)
values ({module_value}, {scopes_array}, true)
on conflict (module_id) do update set scopes = excluded.scopes, enabled = true;

insert into module_credentials (module_id, key_hash, is_active)
select id, {_quote_sql(key_hash)}, true from modules where module_id = {module_value};
"""
    if seed_policy:
        policy_value = _quote_sql(json.dumps(DEFAULT_POLICY, sort_keys=True))
        sql += f"""
insert into settings (id, key, value)
select gen_random_uuid(), {_quote_sql(POLICY_SETTING_KEY)}, {policy_value}
where not exists (select 1 from settings where key = {_quote_sql(POLICY_SETTING_KEY)});
"""
    return sql


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to register a notifier machine module.")
    parser.add_argument("--module-id", required=True, help="Value callers send in X-Module-Id")
    parser.add_argument("--api-key", required=True, help="Plain API key; only its SHA-256 is emitted")
    parser.add_argument(
        "--scope",
        action="append",
        dest="scopes",
        help="Scope to grant (repeatable); defaults to chat:notify",
    )
    parser.add_argument(
        "--seed-policy",
        action="store_true",
        help="Also insert the default notification policy when none is stored",
    )
    args = parser.parse_args()

    print(
        render_sql(
            module_id=args.module_id,
            api_key=args.api_key,
            scopes=args.scopes or list(DEFAULT_SCOPES),
            seed_policy=args.seed_policy,
        )
    )


if __name__ == "__main__":
    main()
