"""Migration integrity checks for CI.

Checks:
- the alembic script graph loads and has exactly one head
- every revision is reachable from that head
- every application table is created by some revision
"""

from __future__ import annotations

import re
import sys
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory

BACKEND_ROOT = Path(__file__).resolve().parents[1]
_CREATE_TABLE = re.compile(r"""op\.create_table\(\s*["']([A-Za-z0-9_]+)["']""")


def _load_script(alembic_ini: Path) -> ScriptDirectory:
    cfg = Config(str(alembic_ini))
    cfg.attributes["configure_logger"] = False
    return ScriptDirectory.from_config(cfg)


def created_tables(script: ScriptDirectory) -> set[str]:
    """Table names passed to `op.create_table` across all revision files."""
    tables: set[str] = set()
    for revision in script.walk_revisions(base="base", head="heads"):
        if revision is None or not revision.path:
            continue
        source = Path(revision.path).read_text(encoding="utf-8")
        tables.update(_CREATE_TABLE.findall(source))
    return tables


def model_tables() -> set[str]:
    """Tables declared by the application models."""
    from webhook_intake import models

    declared = (getattr(models, name) for name in models.__all__)
    return {model.__tablename__ for model in declared if hasattr(model, "__table__")}


def check(alembic_ini: Path) -> list[str]:
    """Return a list of problems; empty means the migrations are consistent."""
    try:
        script = _load_script(alembic_ini)
        heads = list(script.get_heads())
    except Exception as exc:  # pragma: no cover - CI path
        return [f"unable to load Alembic scripts: {exc}"]

    problems: list[str] = []
    if len(heads) != 1:
        problems.append(f"expected one Alembic head, found {len(heads)}: {heads}")

    reachable = {
        rev.revision
        for rev in script.walk_revisions(base="base", head="heads")
        if rev is not None and rev.revision
    }
    # revision_map is dynamically typed; guard None values.
    known = {
        getattr(rev, "revision", None)
        for rev in script.revision_map._revision_map.values()
        if rev is not None
    }
    known.discard(None)
    problems.extend(f"orphan revision {rev}" for rev in sorted(known - reachable))

    missing = sorted(model_tables() - created_tables(script))
    problems.extend(f"table {name} has no migration" for name in missing)
    return problems


def main() -> int:
    problems = check(BACKEND_ROOT / "alembic.ini")
    if problems:
        for problem in problems:
            print(f"ERROR: {problem}")
        return 1
    print("OK: migrations are consistent with the models")
    return 0


if __name__ == "__main__":
    sys.exit(main())
