import json
import logging
import os
import sys
import tempfile
from logging.handlers import RotatingFileHandler
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlparse


DEFAULT_KIOSK_ID = "common"


def default_ipc_path() -> str:
    if os.name == "nt":
        return r"\\.\pipe\mpv-signage"
    return os.path.join(tempfile.gettempdir(), "mpv-signage.sock")


DEFAULT_CONFIG = {
    "storage_api_url": "https://firebasestorage.googleapis.com/v0",
    "storage_bucket": "",
    "api_key": "",
    "auth_token": "",
    "kiosk_id": "",
    "sort_listing": False,
    "refresh_interval_sec": 120,
    "version_check_interval_sec": 120,
    "request_timeout_sec": 15,
    "image_dwell_ms": 5000,
    "notification_ttl_sec": 3,
    "mpv_path": "mpv",
    "ipc_path": default_ipc_path(),
    "hwdec": "auto",
    "start_fullscreen": False,
    "admin_ui_enabled": True,
    "admin_ui_bind": "127.0.0.1",
    "admin_ui_port": 8765,
    "log_file": "",
    "log_max_bytes": 5_000_000,
    "log_backup_count": 3,
    "log_level": "INFO",
}


def load_config(path: str) -> Dict:
    abs_path = os.path.abspath(path)
    if not os.path.exists(abs_path):
        raise FileNotFoundError(f"Config not found: {path}")
    with open(abs_path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    cfg = dict(DEFAULT_CONFIG)
    cfg.update(data)
    if not cfg.get("ipc_path"):
        cfg["ipc_path"] = default_ipc_path()
    config_dir = os.path.dirname(abs_path)
    log_file = cfg.get("log_file")
    if isinstance(log_file, str) and log_file:
        cfg["log_file"] = resolve_path_from_base(config_dir, log_file)
    ipc_path = cfg.get("ipc_path")
    if isinstance(ipc_path, str) and ipc_path and not is_windows_named_pipe(ipc_path):
        cfg["ipc_path"] = resolve_path_from_base(config_dir, ipc_path)
    return cfg


def is_windows_named_pipe(path: str) -> bool:
    return path.startswith("\\\\.\\pipe\\")


def resolve_path_from_base(base_dir: str, value: str) -> str:
    if not value:
        return value
    if os.path.isabs(value):
        return os.path.normpath(value)
    return os.path.normpath(os.path.join(base_dir, value))


def resolve_kiosk_id(launch_url: Optional[str] = None, explicit_id: Optional[str] = None, cfg: Optional[Dict] = None) -> str:
    """Pick the kiosk id: the ``id`` query parameter wins, then --id, then config."""
    if launch_url:
        query = urlparse(launch_url).query if "?" in launch_url or "://" in launch_url else launch_url
        values = parse_qs(query.lstrip("?")).get("id") or []
        for value in values:
            if value.strip():
                return value.strip()
    if explicit_id and explicit_id.strip():
        return explicit_id.strip()
    configured = (cfg or {}).get("kiosk_id")
    if isinstance(configured, str) and configured.strip():
        return configured.strip()
    return DEFAULT_KIOSK_ID


def setup_logging(cfg: Dict) -> None:
    level = logging.getLevelName(str(cfg.get("log_level") or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = cfg.get("log_file")
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=int(cfg.get("log_max_bytes") or 0),
                backupCount=int(cfg.get("log_backup_count") or 0),
            )
        )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
    )
