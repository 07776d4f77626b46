"""Local journal of flows that stopped half-way.

When a register/issue/revoke leaves the chain and the record store out of
step, its FlowResult is saved under DATA_DIR/pending so ``certifychain cert
retry`` can finish it from another process.
"""
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

from certifychain import config
from certifychain.exceptions import NotFoundError, ValidationError
from certifychain.reconcile.outcomes import FlowResult

log = logging.getLogger(__name__)

CORRUPT = "corrupt"


def journal_dir() -> Path:
    return Path(config.DATA_DIR) / "pending"


def entry_id(result: FlowResult) -> str:
    target = result.certificate_id or result.transaction_hash or uuid.uuid4().hex[:12]
    return f"{result.operation}-{target}"


def save(result: FlowResult, entry: Optional[str] = None) -> str:
    entry = entry or entry_id(result)
    directory = journal_dir()
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{entry}.json").write_text(json.dumps(result.to_dict(), indent=2, default=str))
    log.info(f"Saved unfinished {result.operation} as {entry}")
    return entry


def load(entry: str) -> FlowResult:
    path = journal_dir() / f"{entry}.json"
    if not path.is_file():
        raise NotFoundError(f"No pending operation named {entry}")
    try:
        return FlowResult.from_dict(json.loads(path.read_text()))
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Pending operation {entry} is corrupt: {e}") from e


def remove(entry: str) -> None:
    path = journal_dir() / f"{entry}.json"
    if path.exists():
        path.unlink()


def entries() -> list[dict]:
    """One row per saved flow; unreadable files are listed with outcome "corrupt"."""
    directory = journal_dir()
    if not directory.is_dir():
        return []
    rows = []
    for path in sorted(directory.glob("*.json")):
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            log.warning(f"Pending operation {path.stem} is corrupt, listing it without details")
            rows.append({
                "id": path.stem,
                "operation": None,
                "outcome": CORRUPT,
                "transaction_hash": None,
                "error": None,
            })
            continue
        rows.append({
            "id": path.stem,
            "operation": data.get("operation"),
            "outcome": data.get("outcome"),
            "transaction_hash": data.get("transaction_hash"),
            "error": (data.get("error") or {}).get("code"),
        })
    return rows
