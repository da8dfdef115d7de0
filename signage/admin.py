import html
import json
import logging
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Optional
from urllib.parse import parse_qs, urlparse

from signage import APP_VERSION
from signage.gateway import MutationGateway, UploadRejected, is_allowed_content_type
from signage.loop import Dispatcher
from signage.scheduler import PollScheduler
from signage.session import SessionController
from signage.status import StatusState


MAX_UPLOAD_BYTES = 512 * 1024 * 1024


def render_admin_page(snapshot: Dict) -> str:
    kiosk_id = html.escape(str(snapshot.get("kiosk_id") or ""))
    playlist = snapshot.get("playlist") or []
    muted = bool(snapshot.get("muted"))
    rows = []
    for item in playlist:
        item_id = html.escape(str(item.get("id", "")), quote=True)
        name = html.escape(str(item.get("name", "")))
        kind = html.escape(str(item.get("kind", "")))
        rows.append(
            f'<li><span class="kind">{kind}</span> {name} '
            f'<button class="delete" data-id="{item_id}" title="Delete File">&#x2715;</button></li>'
        )
    notification = snapshot.get("notification")
    toast = f'<div class="toast">{html.escape(str(notification))}</div>' if notification else ""
    if playlist:
        empty = ""
    elif snapshot.get("loading"):
        empty = '<p class="empty">Loading...</p>'
    else:
        empty = f'<p class="empty">No content in "{kiosk_id}". Use the menu to upload.</p>'
    overlay_action = "/ui/hide" if snapshot.get("ui_visible") else "/ui/show"
    overlay_label = "Close overlay" if snapshot.get("ui_visible") else "Show overlay"
    return f"""<!doctype html>
<html lang="en"><head>
<meta charset="utf-8">
<title>Management: {kiosk_id}</title>
<style>
body{{font-family:Arial,Helvetica,sans-serif;margin:24px;background:#111;color:#eee;}}
button,input{{font-size:16px;padding:8px;border-radius:6px;border:1px solid #444;background:#1b1b1b;color:#eee;}}
button{{cursor:pointer;background:#2b7a78;border-color:#2b7a78;}}
button.delete{{background:#7a2b2b;border-color:#7a2b2b;padding:2px 8px;}}
.toast{{position:fixed;top:12px;right:12px;background:#2b7a78;padding:8px 14px;border-radius:6px;}}
.kind{{font-size:12px;color:#aaa;text-transform:uppercase;}}
.small{{font-size:12px;color:#aaa;}}
</style></head><body>
{toast}
<h2>Management: {kiosk_id}</h2>
<p><label>Upload New Media <input id="file" type="file" accept="image/*,video/*"></label></p>
<p>
<button data-action="/mute">{"Unmute" if muted else "Mute"}</button>
<button data-action="/fullscreen">Fullscreen &amp; Hide</button>
<button data-action="{overlay_action}">{overlay_label}</button>
<button data-action="/refresh">Refresh now</button>
</p>
<h4>Current Playlist ({len(playlist)})</h4>
{empty}
<ul>{"".join(rows)}</ul>
<p class="small">Ver: {APP_VERSION}</p>
<script>
function post(url, body, type) {{
  return fetch(url, {{method: "POST", body: body, headers: type ? {{"Content-Type": type}} : {{}}}})
    .then(() => setTimeout(() => location.reload(), 1500));
}}
document.querySelectorAll("button[data-action]").forEach(b =>
  b.addEventListener("click", () => post(b.dataset.action)));
document.querySelectorAll("button.delete").forEach(b =>
  b.addEventListener("click", () => {{
    if (!confirm("Delete this file?")) return;
    post("/delete", "id=" + encodeURIComponent(b.dataset.id) + "&confirm=yes",
         "application/x-www-form-urlencoded");
  }}));
document.getElementById("file").addEventListener("change", e => {{
  const f = e.target.files[0];
  if (!f) return;
  post("/upload?name=" + encodeURIComponent(f.name), f, f.type || "application/octet-stream");
}});
</script>
</body></html>
"""


class AdminServer:
    def __init__(
        self,
        cfg: Dict,
        dispatcher: Dispatcher,
        status: StatusState,
        session: SessionController,
        gateway: MutationGateway,
        scheduler: PollScheduler,
    ) -> None:
        self._cfg = cfg
        self._dispatcher = dispatcher
        self._status = status
        self._session = session
        self._gateway = gateway
        self._scheduler = scheduler
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def url(self) -> Optional[str]:
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}"

    def start(self) -> bool:
        if not self._cfg.get("admin_ui_enabled"):
            return False
        bind = self._cfg.get("admin_ui_bind", "127.0.0.1")
        port = int(self._cfg.get("admin_ui_port", 8765))
        try:
            server = ThreadingHTTPServer((bind, port), self._make_handler())
        except OSError as exc:
            logging.warning("Admin UI unavailable on %s:%s: %s", bind, port, exc)
            return False
        self._server = server
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        logging.info("Admin UI available at %s", self.url)
        return True

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None

    def _make_handler(self):
        dispatcher = self._dispatcher
        status = self._status
        session = self._session
        gateway = self._gateway
        scheduler = self._scheduler

        actions = {
            "/mute": session.toggle_mute,
            "/fullscreen": session.enter_fullscreen_and_hide,
            "/ui/show": session.show_ui,
            "/ui/hide": session.hide_ui,
            "/refresh": scheduler.refresh,
        }

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, fmt, *args) -> None:
                logging.info("AdminUI %s - %s", self.address_string(), fmt % args)

            def _send_payload(self, code: int, payload: bytes, content_type: str) -> None:
                self.send_response(code)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def _send_json(self, code: int, data: Dict) -> None:
                self._send_payload(code, json.dumps(data).encode("utf-8"), "application/json")

            def _read_body(self) -> bytes:
                length = int(self.headers.get("Content-Length", "0") or 0)
                return self.rfile.read(length) if length > 0 else b""

            def do_GET(self) -> None:  # noqa: N802
                path = urlparse(self.path).path
                if path in {"/", ""}:
                    page = render_admin_page(status.snapshot()).encode("utf-8")
                    self._send_payload(HTTPStatus.OK, page, "text/html; charset=utf-8")
                    return
                if path == "/status":
                    self._send_json(HTTPStatus.OK, status.snapshot())
                    return
                self.send_error(HTTPStatus.NOT_FOUND, "Not found")

            def do_POST(self) -> None:  # noqa: N802
                parsed = urlparse(self.path)
                if parsed.path in actions:
                    self._read_body()
                    dispatcher.post(actions[parsed.path])
                    self._send_json(HTTPStatus.ACCEPTED, {"ok": True})
                    return
                if parsed.path == "/upload":
                    self._handle_upload(parse_qs(parsed.query))
                    return
                if parsed.path == "/delete":
                    self._handle_delete()
                    return
                self.send_error(HTTPStatus.NOT_FOUND, "Not found")

            def _handle_upload(self, query: Dict) -> None:
                name = (query.get("name") or [""])[0]
                content_type = self.headers.get("Content-Type", "")
                length = int(self.headers.get("Content-Length", "0") or 0)
                if not is_allowed_content_type(content_type):
                    self._send_json(HTTPStatus.UNSUPPORTED_MEDIA_TYPE, {"ok": False, "error": "image or video required"})
                    return
                if not name or length <= 0:
                    self._send_json(HTTPStatus.BAD_REQUEST, {"ok": False, "error": "name and body required"})
                    return
                if length > MAX_UPLOAD_BYTES:
                    self._send_json(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, {"ok": False, "error": "file too large"})
                    return
                data = self.rfile.read(length)

                def _upload() -> None:
                    try:
                        gateway.upload(name, data, content_type)
                    except UploadRejected as exc:
                        logging.warning("Upload rejected: %s", exc)

                dispatcher.post(_upload)
                self._send_json(HTTPStatus.ACCEPTED, {"ok": True})

            def _handle_delete(self) -> None:
                form = parse_qs(self._read_body().decode("utf-8"))
                item_id = (form.get("id") or [""])[0]
                confirmed = (form.get("confirm") or [""])[0].lower() in {"1", "yes", "true"}
                if not item_id:
                    self._send_json(HTTPStatus.BAD_REQUEST, {"ok": False, "error": "id required"})
                    return
                dispatcher.post(gateway.delete, item_id, confirmed)
                self._send_json(HTTPStatus.ACCEPTED, {"ok": confirmed})

        return Handler
