"""CI guard: the migration history must be one straight line (one base, one head)."""

import sys
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory


def load_script_directory() -> ScriptDirectory:
    backend_dir = Path(__file__).resolve().parents[1]
    cfg = Config(str(backend_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(backend_dir / "alembic"))
    return ScriptDirectory.from_config(cfg)


def main() -> int:
    script = load_script_directory()
    heads = list(script.get_heads())
    bases = list(script.get_bases())

    if len(bases) != 1:
        print(f"[FAIL] Alembic bases={len(bases)} -> {bases}", file=sys.stderr)
        return 1
    if len(heads) != 1:
        print(f"[FAIL] Alembic heads={len(heads)} -> {heads}", file=sys.stderr)
        return 1

    chain = list(script.walk_revisions(base="base", head=heads[0]))
    print(f"[OK] Alembic single head: {heads[0]} ({len(chain)} revision(s))")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
