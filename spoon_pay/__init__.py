from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _dist_version
from pathlib import Path


def _read_local_pyproject_version() -> str | None:
    """Read the version from the source checkout's pyproject, if there is one."""
    pyproject_path = Path(__file__).resolve().parents[1] / "pyproject.toml"
    if not pyproject_path.exists():
        return None

    try:
        import tomllib

        with pyproject_path.open("rb") as f:
            data = tomllib.load(f)
    except Exception:
        return None
    version = (data.get("project") or {}).get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    return None


def _resolve_version() -> str:
    try:
        return _dist_version("spoon-pay")
    except PackageNotFoundError:
        pass

    return _read_local_pyproject_version() or "0.0.0"


__version__: str = _resolve_version()

from spoon_pay.approval import ApprovalGate, GateDecision, GateResult  # noqa: E402
from spoon_pay.payments import PaymentOutcome, PaymentService, PaymentSettings  # noqa: E402

__all__ = [
    "__version__",
    "ApprovalGate",
    "GateDecision",
    "GateResult",
    "PaymentOutcome",
    "PaymentService",
    "PaymentSettings",
]
