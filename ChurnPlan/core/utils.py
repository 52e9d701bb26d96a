"""
Shared helpers for logging setup and JSON artifacts.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional


def setup_logging(
    log_type: str,
    plan_name: str,
    log_dir: Optional[str] = 'logs',
    *,
    session_id: Optional[int] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """Sets up a logger for a build or inspection command.

    `log_dir=None` logs to the stream only.
    """
    logger = logging.getLogger(f"ChurnPlan.{log_type}.{plan_name}")
    logger.setLevel(level)

    # Prevent adding multiple handlers if the logger already exists
    if not logger.handlers:
        session = int(session_id) if session_id is not None else int(time.time())
        formatter = logging.Formatter(
            f'%(asctime)s - %(levelname)s - [Session: {session}]-[Plan: {plan_name}] - %(message)s'
        )

        handlers = [logging.StreamHandler()]
        if log_dir:
            log_dir_path = Path(log_dir)
            log_dir_path.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_dir_path / f"{log_type}_logs.log", mode='a'))

        for handler in handlers:
            handler.setFormatter(formatter)
            logger.addHandler(handler)

    return logger


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def json_sanitize(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): json_sanitize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_sanitize(v) for v in value]
    return str(value)
