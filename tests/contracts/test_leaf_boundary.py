# tests/contracts/test_leaf_boundary.py
"""Tests that contracts remains a leaf module with no core dependencies.

The contracts package must be importable without loading casebook.core,
which pulls in SQLAlchemy, pyrate-limiter and dynaconf.
"""

import subprocess
import sys

import pytest

_PROBE = """
import sys
before = set(sys.modules.keys())
import {module}
after = set(sys.modules.keys())
loaded = [m for m in after - before if m.startswith(("casebook.core", "casebook.engine", "sqlalchemy"))]
if loaded:
    print(f"FAIL: {{sorted(loaded)}}")
    sys.exit(1)
"""


class TestContractsLeafBoundary:
    @pytest.mark.parametrize(
        "module",
        ["casebook.contracts", "casebook.contracts.enums", "casebook.contracts.records", "casebook.contracts.results"],
    )
    def test_contracts_do_not_import_core(self, module: str) -> None:
        # Subprocess for a clean import state
        result = subprocess.run(
            [sys.executable, "-c", _PROBE.format(module=module)],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0, f"Core modules were loaded:\n{result.stdout}\n{result.stderr}"
