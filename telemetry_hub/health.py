import time
from datetime import datetime, timezone
from importlib import metadata
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

Check = Callable[[], None]

_STARTED = time.monotonic()


def database_check(engine: Engine) -> Check:
    def check() -> None:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    return check


def _version(package: str) -> str:
    try:
        return metadata.version(package)
    except metadata.PackageNotFoundError:
        return "unknown"


def check_dependency(check: Check) -> dict:
    start = time.monotonic()
    try:
        check()
    except Exception as e:  # a probe failure is reported, not raised
        return {
            "status": "error",
            "latencyMs": round((time.monotonic() - start) * 1000, 1),
            "checkedAt": datetime.now(timezone.utc).isoformat(),
            "error": str(e) or type(e).__name__,
        }
    return {
        "status": "ok",
        "latencyMs": round((time.monotonic() - start) * 1000, 1),
        "checkedAt": datetime.now(timezone.utc).isoformat(),
    }


class HealthService:
    def __init__(self, service_name: str, checks: Optional[dict[str, Check]] = None):
        self.service_name = service_name
        self.checks = checks or {}

    def liveness(self) -> dict:
        return {"status": "ok"}

    def readiness(self) -> tuple[bool, dict]:
        failed = [name for name, check in self.checks.items() if check_dependency(check)["status"] != "ok"]
        if failed:
            return False, {"status": "unavailable", "failed": failed}
        return True, {"status": "ready"}

    def health(self) -> dict:
        dependencies = {name: check_dependency(check) for name, check in self.checks.items()}
        has_errors = any(dep["status"] == "error" for dep in dependencies.values())
        return {
            "service": self.service_name,
            "version": _version("telemetry-hub"),
            "status": "error" if has_errors else "ok",
            "uptimeSec": int(time.monotonic() - _STARTED),
            "dependencies": dependencies,
        }
