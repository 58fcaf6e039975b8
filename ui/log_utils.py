"""Shared logging utilities."""

import json
import shutil
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

LOG_ROOT = Path.cwd() / "logs"
CLI_LOG_FILE = LOG_ROOT / "gateway.log"

# Single writer thread keeps request flows off the disk and lines in order
_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gateway-log")


def write_cli_log(
    level: str,
    message: str,
    *,
    log_file: Path | None = None,
    **extra: Any,
) -> Future:
    """Append a line to the rolling CLI log file."""
    timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
    extra_str = " ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""
    line = f"[{timestamp}] {level}: {message}"
    if extra_str:
        line += f" {extra_str}"
    line += "\n"
    return _executor.submit(_append_line, log_file or CLI_LOG_FILE, line)


def write_proxy_log(
    service: str,
    method: str,
    path: str,
    status: int,
    *,
    target: str,
    headers: dict[str, str] | None = None,
    log_root: Path = LOG_ROOT,
) -> Future:
    """Write a single proxied request log entry."""
    payload = {
        "timestamp": _utc_now(),
        "service": service,
        "method": method,
        "path": path,
        "status": status,
        "target": target,
        "headers": _redact_headers(headers or {}),
    }
    return _executor.submit(_write_json, log_root / "proxy" / _safe_folder(service), payload)


def clear_logs(log_root: Path = LOG_ROOT) -> None:
    """Remove logs from a previous run."""
    shutil.rmtree(log_root, ignore_errors=True)


def shutdown_log_executor() -> None:
    """Flush pending log writes."""
    _executor.shutdown(wait=True)


def _append_line(log_file: Path, line: str) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with log_file.open("a") as f:
        f.write(line)


def _write_json(folder: Path, payload: dict[str, Any]) -> Path:
    """Write payload to a unique JSON file in the given folder."""
    folder.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S.%fZ")
    file_path = folder / f"{timestamp}_{uuid4().hex}.json"
    file_path.write_text(json.dumps(payload, indent=2, default=str))
    return file_path


def _safe_folder(service: str) -> str:
    cleaned = "".join(c if c.isalnum() or c in "-_." else "_" for c in service)
    return cleaned.strip(".") or "_"


def _redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Redact sensitive headers."""
    redacted = {}
    for key, value in headers.items():
        key_lower = key.lower()
        if "key" in key_lower or "authorization" in key_lower or "cookie" in key_lower:
            redacted[key] = _mask(value)
        else:
            redacted[key] = value
    return redacted


def _mask(value: str) -> str:
    if len(value) <= 10:
        return "***"
    return value[:6] + "..." + value[-4:]


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()
