import json
import logging
import os
import signal
import socket
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple


MEDIA_ENDED = "media_ended"
FULLSCREEN_CHANGED = "fullscreen_changed"

FULLSCREEN_OBSERVER_ID = 1
OVERLAY_ID = 1
EMPTY_TEXT_MS = 2_147_483_647

SurfaceEvent = Tuple[str, Any]


@dataclass(frozen=True)
class MediaEnded:
    reason: str
    # Sequence number of the loadfile that ended, counted per mpv process.
    load_id: Optional[int] = None


def build_mpv_args(cfg: Dict) -> List[str]:
    args = [
        cfg["mpv_path"],
        "--force-window=yes",
        "--idle=yes",
        "--keep-open=no",
        "--no-terminal",
        "--image-display-duration=inf",
        "--no-osc",
        "--osd-level=1",
        "--mute=yes",
        "--no-input-default-bindings",
        "--input-vo-keyboard=no",
        f"--input-ipc-server={cfg['ipc_path']}",
    ]
    if cfg.get("start_fullscreen"):
        args.append("--fs")
    if cfg.get("hwdec"):
        args.append(f"--hwdec={cfg['hwdec']}")
    return args


def parse_surface_event(message: Dict, load_id: Optional[int] = None) -> Optional[SurfaceEvent]:
    event = message.get("event")
    if event == "end-file":
        # "stop" and "redirect" come from our own loadfile replacing the file.
        reason = message.get("reason")
        if reason in {"eof", "error"}:
            return MEDIA_ENDED, MediaEnded(reason, load_id)
        return None
    if event == "property-change" and message.get("name") == "fullscreen":
        return FULLSCREEN_CHANGED, bool(message.get("data"))
    return None


def ass_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("{", "\\{").replace("}", "\\}").replace("\n", "\\N")


class MPVSurface:
    def __init__(self, cfg: Dict, on_event: Optional[Callable[[str, Any], None]] = None) -> None:
        self._cfg = cfg
        self._on_event = on_event
        self._proc: Optional[subprocess.Popen] = None
        self._ipc: Optional[socket.socket] = None
        self._lock = threading.RLock()
        self._ipc_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        self._generation = 0
        # mpv emits one start-file per loadfile, in command order.
        self._loads_issued = 0
        self._loads_started = 0
        self._empty_shown = False

    def set_event_handler(self, on_event: Callable[[str, Any], None]) -> None:
        self._on_event = on_event

    def _cleanup_ipc_path(self) -> None:
        ipc_path = self._cfg["ipc_path"]
        if os.name == "nt":
            return
        if os.path.exists(ipc_path):
            try:
                os.remove(ipc_path)
            except OSError:
                pass

    def _open_ipc(self) -> bool:
        ipc_path = self._cfg["ipc_path"]
        start = time.time()
        while time.time() - start < 10:
            try:
                if os.path.exists(ipc_path):
                    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                    sock.connect(ipc_path)
                    self._ipc = sock
                    return True
            except OSError:
                pass
            time.sleep(0.2)
        return False

    def _close_ipc(self) -> None:
        if self._ipc is None:
            return
        try:
            self._ipc.close()
        except OSError:
            pass
        finally:
            self._ipc = None

    def _start_reader(self) -> None:
        generation = self._generation
        sock = self._ipc
        self._reader = threading.Thread(target=self._reader_loop, args=(sock, generation), daemon=True)
        self._reader.start()

    def _reader_loop(self, sock: socket.socket, generation: int) -> None:
        buffer = b""
        while generation == self._generation:
            try:
                chunk = sock.recv(4096)
            except OSError:
                break
            if not chunk:
                break
            buffer += chunk
            while b"\n" in buffer:
                line, buffer = buffer.split(b"\n", 1)
                if not line.strip():
                    continue
                try:
                    message = json.loads(line.decode("utf-8", errors="replace"))
                except ValueError:
                    continue
                if not isinstance(message, dict):
                    continue
                if message.get("event") == "start-file":
                    self._loads_started += 1
                parsed = parse_surface_event(message, self._loads_started)
                if parsed is not None and self._on_event is not None:
                    self._on_event(*parsed)
        logging.debug("MPV event reader stopped (generation %d)", generation)

    def _stop_locked(self) -> None:
        self._generation += 1
        self._close_ipc()
        if self._proc and self._proc.poll() is None:
            try:
                if os.name != "nt" and self._proc.pid:
                    os.killpg(self._proc.pid, signal.SIGTERM)
                else:
                    self._proc.terminate()
                self._proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                if os.name != "nt" and self._proc.pid:
                    os.killpg(self._proc.pid, signal.SIGKILL)
                else:
                    self._proc.kill()
        self._proc = None
        self._cleanup_ipc_path()

    def _start_locked(self) -> bool:
        if self._proc and self._proc.poll() is None and self._ipc is not None:
            return True
        if self._proc and self._proc.poll() is None and self._ipc is None:
            self._stop_locked()

        self._close_ipc()
        self._cleanup_ipc_path()
        popen_kwargs: Dict[str, Any] = {
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
        }
        if os.name == "nt":
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            popen_kwargs["start_new_session"] = True
        try:
            self._proc = subprocess.Popen(build_mpv_args(self._cfg), **popen_kwargs)
        except OSError as exc:
            self._proc = None
            logging.error("Failed to start MPV process: %s", exc)
            return False
        self._generation += 1
        self._loads_issued = 0
        self._loads_started = 0
        self._empty_shown = False
        if not self._open_ipc():
            logging.warning("MPV IPC not available after launch; will retry.")
            self._stop_locked()
            return False
        self._start_reader()
        self._send(["observe_property", FULLSCREEN_OBSERVER_ID, "fullscreen"])
        return True

    def start(self) -> None:
        with self._lock:
            if self._start_locked():
                return
            time.sleep(1)
            self._start_locked()

    def restart(self) -> None:
        with self._lock:
            self._stop_locked()
            time.sleep(1)
            self._start_locked()

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()

    def ensure_running(self) -> None:
        if self._proc is None or self._proc.poll() is not None:
            self.start()

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def _send(self, command: List[Any]) -> bool:
        if self._ipc is None:
            return False
        data = (json.dumps({"command": command}) + "\n").encode("utf-8")
        with self._ipc_lock:
            try:
                self._ipc.sendall(data)
            except OSError as exc:
                logging.warning("MPV IPC send failed: %s", exc)
                return False
        return True

    def _command(self, command: List[Any]) -> bool:
        self.ensure_running()
        if self._send(command):
            return True
        if not self.is_running():
            return False
        logging.warning("MPV is running but IPC is gone; restarting it")
        self.restart()
        return self._send(command)

    def _load(self, url: str) -> Optional[int]:
        if not self._command(["loadfile", url, "replace"]):
            return None
        self._loads_issued += 1
        self._clear_empty()
        return self._loads_issued

    def _clear_empty(self) -> None:
        if self._empty_shown and self._send(["show-text", "", 0]):
            self._empty_shown = False

    def show_image(self, url: str) -> bool:
        return self._load(url) is not None

    def play_video(self, url: str, muted: bool) -> Optional[int]:
        # loadfile always starts from position 0.
        if not self._command(["set_property", "mute", bool(muted)]):
            return None
        load_id = self._load(url)
        if load_id is None:
            return None
        self._send(["set_property", "pause", False])
        return load_id

    def set_muted(self, muted: bool) -> bool:
        return self._command(["set_property", "mute", bool(muted)])

    def set_fullscreen(self, fullscreen: bool) -> bool:
        return self._command(["set_property", "fullscreen", bool(fullscreen)])

    def show_text(self, text: str, duration_ms: int) -> bool:
        return self._command(["show-text", text, int(duration_ms)])

    def show_overlay(self, text: str) -> bool:
        return self._command(["osd-overlay", OVERLAY_ID, "ass-events", ass_escape(text)])

    def hide_overlay(self) -> bool:
        return self._command(["osd-overlay", OVERLAY_ID, "none", ""])

    def show_empty(self, message: str) -> bool:
        if not self._command(["stop"]):
            return False
        if not self._send(["show-text", message, EMPTY_TEXT_MS]):
            return False
        self._empty_shown = True
        return True

    def clear(self) -> bool:
        if not self._command(["stop"]):
            return False
        self._clear_empty()
        return True
