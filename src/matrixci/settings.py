from __future__ import annotations
import os


def _int_or_none(value: str | None) -> int | None:
    return int(value) if value else None


def _float_or_none(value: str | None) -> float | None:
    return float(value) if value else None


WORKERS = _int_or_none(os.environ.get("MATRIXCI_WORKERS"))
TIMEOUT_SECONDS = _float_or_none(os.environ.get("MATRIXCI_TIMEOUT"))
WORKFLOW = os.environ.get("MATRIXCI_WORKFLOW")
SHELL = os.environ.get("MATRIXCI_SHELL")
DEFAULT_WORKFLOW_FILE = "matrixci_workflow.py"
