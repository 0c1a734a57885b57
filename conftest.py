"""Root conftest: test environment defaults, then .env.test, before any module imports."""
from __future__ import annotations

import os
from pathlib import Path

_TEST_DEFAULTS = {
    "POSTGRES_USER": "relay",
    "POSTGRES_PASSWORD": "relay",
    "POSTGRES_DB": "relay_test",
    "JWT_SECRET": "test-secret",
    "RELAY_FANOUT": "local",
}

_env_test = Path(__file__).resolve().parent / ".env.test"
if _env_test.exists():
    for line in _env_test.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        os.environ.setdefault(key.strip(), value.strip())

for _key, _value in _TEST_DEFAULTS.items():
    os.environ.setdefault(_key, _value)
