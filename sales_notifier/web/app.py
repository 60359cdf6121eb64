"""
FastAPI Web Application - Sales Notifier
=========================================

JSON API for the sales form and the admin dashboard, plus the dashboard
page itself. Every failure is answered as ``{"success": false, "error": ...}``
with a non-2xx status.
"""

import asyncio
import html
import io
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

from fastapi import APIRouter, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..application import AdminNumberNotConfiguredError, SubmissionService
from ..domain import DEFAULT_NOTIFICATION_TEMPLATE
from ..infrastructure.config import Settings, get_settings
from ..infrastructure.importer import ExcelParser, NAME_PATTERNS
from ..infrastructure.persistence import ReferenceStore, init_store
from ..infrastructure.whatsapp import (
    ChatClient,
    MessagingSession,
    NotificationDispatcher,
    SeleniumProvider,
    SessionEvent,
    credential_store_for,
    pairing_cache_for,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ClientFactory = Callable[[Path], ChatClient]


# ── Request bodies ─────────────────────────────────────────────────

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class SendTestRequest(_Body):
    to: str = ""
    message: str = ""


class SalesLoginRequest(_Body):
    sales_id: str = Field(alias="salesId")
    password: str = ""


class SalesAccountRequest(_Body):
    id: str
    name: str
    password: str = ""


class NameRequest(_Body):
    name: str


class AdminSettingsRequest(_Body):
    admin_number: Optional[str] = Field(default=None, alias="adminNumber")
    template: Optional[str] = None


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def _format_errors(errors) -> str:
    parts = []
    for item in errors:
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts)


router = APIRouter()


# ══════════════════════════════════════════════════════════════════
#  WHATSAPP CONNECTION
# ══════════════════════════════════════════════════════════════════

@router.get("/api/whatsapp")
async def whatsapp_status(request: Request, force: bool = False):
    session: MessagingSession = request.app.state.session
    settings: Settings = request.app.state.settings

    try:
        if force:
            logger.info("Force flag set, forcing new connection attempt")
            await session.connect(force=True)
            await asyncio.sleep(settings.whatsapp.force_connect_wait_seconds)

        connected = session.is_open()
        qr = session.pairing_code
        if not qr and not connected:
            qr = session.cached_pairing_code()

        if not connected and not qr and not force:
            logger.info("Initiating WhatsApp connection...")
            await session.connect(force=False)
            qr = session.cached_pairing_code()
            return {
                "success": True,
                "connected": session.is_open(),
                "qr": qr,
                "connecting": True,
                "message": "QR code available" if qr else "Connection initiated, QR code not yet available",
            }

        return {
            "success": True,
            "connected": connected,
            "qr": qr,
            "connecting": not connected and (bool(qr) or session.is_connecting()),
            "message": "Connected" if connected else ("QR code available" if qr else "Not connected"),
        }
    except Exception as e:
        logger.exception(f"WhatsApp status error: {e}")
        return _error(500, str(e) or "Failed to connect to WhatsApp",
                      message="Error checking WhatsApp status")


@router.delete("/api/whatsapp")
async def whatsapp_delete_session(request: Request):
    deleted = await request.app.state.session.delete_session()
    return {
        "success": deleted,
        "message": "Session deleted successfully" if deleted else "Failed to delete session",
    }


@router.post("/api/whatsapp")
async def whatsapp_send_test(request: Request, body: SendTestRequest):
    if not body.to or not body.message:
        return _error(400, "Missing required fields")

    logger.info(f"Sending test message to {body.to}")
    try:
        await request.app.state.dispatcher.send(body.to, body.message)
    except ValueError as e:
        return _error(400, str(e))
    except Exception as e:
        logger.exception(f"WhatsApp send message error: {e}")
        return _error(500, str(e) or "Failed to send message")
    return {"success": True}


# ══════════════════════════════════════════════════════════════════
#  SALES FORM
# ══════════════════════════════════════════════════════════════════

@router.post("/api/sales/submit")
async def sales_submit(request: Request):
    try:
        payload = await request.json()
    except ValueError:
        return _error(400, "Request body must be JSON")
    if not isinstance(payload, dict):
        return _error(400, "Request body must be a JSON object")

    service: SubmissionService = request.app.state.submission_service
    try:
        await service.handle(payload)
    except ValidationError as e:
        return _error(400, "Invalid submission: " + _format_errors(e.errors()))
    except AdminNumberNotConfiguredError as e:
        return _error(400, str(e))
    except ValueError as e:
        return _error(400, str(e))
    except Exception as e:
        logger.exception(f"Sales form submission error: {e}")
        return _error(500, f"Failed to process sales form submission: {e}")
    return {"success": True}


@router.get("/api/sales/options")
async def sales_options(request: Request):
    store: ReferenceStore = request.app.state.store
    return {
        "success": True,
        "sales": store.get_sales_names(),
        "outlets": store.get_outlet_names(),
        "products": [p.__dict__ for p in store.get_products().values()],
    }


@router.post("/api/sales/login")
async def sales_login(request: Request, body: SalesLoginRequest):
    store: ReferenceStore = request.app.state.store
    if not store.verify_sales_password(body.sales_id, body.password):
        return _error(401, "Invalid sales id or password")
    return {"success": True, "salesId": body.sales_id, "name": store.get_sales_names()[body.sales_id]}


# ══════════════════════════════════════════════════════════════════
#  ADMIN: REFERENCE DATA
# ══════════════════════════════════════════════════════════════════

@router.get("/api/admin/sales")
async def admin_list_sales(request: Request):
    names = request.app.state.store.get_sales_names()
    return {"success": True, "sales": [{"id": sid, "name": name} for sid, name in names.items()]}


@router.post("/api/admin/sales")
async def admin_save_sales(request: Request, body: SalesAccountRequest):
    try:
        account = request.app.state.store.add_sales_account(body.id, body.name, body.password)
    except ValueError as e:
        return _error(400, str(e))
    return {"success": True, "sales": {"id": account.id, "name": account.name}}


@router.delete("/api/admin/sales/{sales_id}")
async def admin_delete_sales(request: Request, sales_id: str):
    if not request.app.state.store.delete_sales_account(sales_id):
        return _error(404, f"Sales account {sales_id} not found")
    return {"success": True}


@router.get("/api/admin/outlets")
async def admin_list_outlets(request: Request):
    outlets = request.app.state.store.get_outlet_names()
    return {"success": True, "outlets": [{"id": oid, "name": name} for oid, name in outlets.items()]}


@router.post("/api/admin/outlets")
async def admin_add_outlet(request: Request, body: NameRequest):
    try:
        outlet_id = request.app.state.store.add_outlet(body.name)
    except ValueError as e:
        return _error(400, str(e))
    return {"success": True, "outlet": {"id": outlet_id, "name": body.name}}


@router.delete("/api/admin/outlets/{outlet_id}")
async def admin_delete_outlet(request: Request, outlet_id: str):
    if not request.app.state.store.delete_outlet(outlet_id):
        return _error(404, f"Outlet {outlet_id} not found")
    return {"success": True}


@router.get("/api/admin/products")
async def admin_list_products(request: Request):
    products = request.app.state.store.get_products()
    return {"success": True, "products": [p.__dict__ for p in products.values()]}


@router.post("/api/admin/products")
async def admin_add_product(request: Request, body: NameRequest):
    try:
        product = request.app.state.store.add_product(body.name)
    except ValueError as e:
        return _error(400, str(e))
    return {"success": True, "product": product.__dict__}


@router.delete("/api/admin/products/{product_id}")
async def admin_delete_product(request: Request, product_id: str):
    if not request.app.state.store.delete_product(product_id):
        return _error(404, f"Product {product_id} not found")
    return {"success": True}


@router.get("/api/admin/settings")
async def admin_get_settings(request: Request):
    store: ReferenceStore = request.app.state.store
    template = store.get_notification_template()
    return {
        "success": True,
        "adminNumber": store.get_admin_number(),
        "template": template or DEFAULT_NOTIFICATION_TEMPLATE,
        "isDefaultTemplate": not template,
    }


@router.put("/api/admin/settings")
async def admin_save_settings(request: Request, body: AdminSettingsRequest):
    store: ReferenceStore = request.app.state.store
    if body.admin_number is not None:
        store.set_admin_number(body.admin_number)
        logger.info("Admin WhatsApp number updated")
    if body.template is not None:
        store.set_notification_template(body.template)
        logger.info("Notification template updated")
    return await admin_get_settings(request)


@router.post("/api/admin/import/{kind}")
async def admin_import(request: Request, kind: str, file: UploadFile = File(...)):
    """Import outlet or product names from Excel/CSV, skipping ones already stored."""
    if kind not in NAME_PATTERNS:
        return _error(400, f"Unknown import kind: {kind}. Use 'outlets' or 'products'")
    if not file.filename:
        return _error(400, "No file selected")

    store: ReferenceStore = request.app.state.store
    try:
        content = await file.read()
        names = ExcelParser().parse_names(io.BytesIO(content), kind, filename=file.filename)
    except ValueError as e:
        return _error(400, str(e))
    except Exception as e:
        logger.exception(f"Excel import error: {e}")
        return _error(500, f"Import failed: {str(e)[:80]}")

    # Outlets match by name, products by the id their name maps to
    if kind == "outlets":
        key_of, add = str.lower, store.add_outlet
        existing = {key_of(name) for name in store.get_outlet_names().values()}
    else:
        key_of, add = store.product_id_for, store.add_product
        existing = set(store.get_products())

    added = skipped = 0
    for name in names:
        key = key_of(name)
        if key in existing:
            skipped += 1
            continue
        try:
            add(name)
        except ValueError as e:
            logger.warning(f"Skipping {name!r}: {e}")
            skipped += 1
            continue
        existing.add(key)
        added += 1

    logger.info(f"Imported {added} {kind} ({skipped} skipped)")
    return {"success": True, "added": added, "skipped": skipped}


# ══════════════════════════════════════════════════════════════════
#  DASHBOARD PAGE
# ══════════════════════════════════════════════════════════════════

SHARED_CSS = """
    :root {
        --bg-dark: #0b1210;
        --bg-card: rgba(255,255,255,0.04);
        --border: rgba(255,255,255,0.08);
        --text: #e5f2ec;
        --text-muted: #6b8a7d;
        --accent: #25d366;
        --danger: #f87171;
        --gradient: linear-gradient(135deg, #25d366 0%, #128c7e 100%);
    }

    * { margin: 0; padding: 0; box-sizing: border-box; }

    body {
        font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
        background: var(--bg-dark);
        color: var(--text);
        min-height: 100vh;
        padding: 32px 20px;
    }

    .wrap { max-width: 980px; margin: 0 auto; display: grid; gap: 20px; }
    h1 { font-size: 26px; font-weight: 800; background: var(--gradient);
         -webkit-background-clip: text; -webkit-text-fill-color: transparent; }
    h2 { font-size: 15px; margin-bottom: 14px; text-transform: uppercase; letter-spacing: 0.5px;
         color: var(--text-muted); }

    .card { background: var(--bg-card); border: 1px solid var(--border); border-radius: 14px; padding: 24px; }
    .row { display: flex; gap: 10px; align-items: center; flex-wrap: wrap; }

    .btn { background: var(--gradient); color: #fff; border: none; padding: 10px 20px;
           border-radius: 9px; font-weight: 600; font-size: 13px; cursor: pointer; font-family: inherit; }
    .btn:hover { opacity: 0.9; }
    .btn-ghost { background: transparent; border: 1px solid var(--border); color: var(--text); }
    .btn-danger { background: transparent; border: 1px solid var(--danger); color: var(--danger); }

    .badge { padding: 4px 10px; border-radius: 6px; font-size: 11px; font-weight: 600; text-transform: uppercase; }
    .badge.open { background: rgba(37,211,102,0.15); color: #4ade80; }
    .badge.waiting { background: rgba(251,191,36,0.15); color: #fbbf24; }
    .badge.closed { background: rgba(248,113,113,0.15); color: var(--danger); }

    input[type="text"], textarea {
        background: rgba(255,255,255,0.05); border: 1px solid var(--border); padding: 10px 14px;
        border-radius: 9px; color: var(--text); font-size: 14px; font-family: inherit; width: 100%;
    }
    textarea { min-height: 260px; font-family: 'JetBrains Mono', monospace; font-size: 12px; }

    ul.items { list-style: none; max-height: 240px; overflow-y: auto; margin-top: 12px; }
    ul.items li { display: flex; justify-content: space-between; padding: 6px 0;
                  border-bottom: 1px solid var(--border); font-size: 13px; }
    .qr { background: #fff; border-radius: 10px; padding: 10px; width: 280px; }
    .muted { color: var(--text-muted); font-size: 13px; }
    code { background: rgba(255,255,255,0.06); padding: 2px 6px; border-radius: 5px; font-size: 12px; }
"""

DASHBOARD_SCRIPT = """
async function api(method, url, body) {
    const opts = { method, headers: {} };
    if (body instanceof FormData) { opts.body = body; }
    else if (body !== undefined) { opts.headers['Content-Type'] = 'application/json'; opts.body = JSON.stringify(body); }
    const res = await fetch(url, opts);
    const data = await res.json();
    if (!data.success) { throw new Error(data.error || 'Request failed'); }
    return data;
}

function say(text) { document.getElementById('notice').textContent = text; }

async function refreshStatus(force) {
    try {
        const data = await api('GET', '/api/whatsapp' + (force ? '?force=true' : ''));
        const badge = document.getElementById('status');
        badge.className = 'badge ' + (data.connected ? 'open' : (data.qr ? 'waiting' : 'closed'));
        badge.textContent = data.connected ? 'Connected' : (data.qr ? 'Scan QR code' : 'Not connected');
        document.getElementById('status-message').textContent = data.message;
        const qr = document.getElementById('qr');
        qr.style.display = (!data.connected && data.qr) ? 'block' : 'none';
        if (data.qr) { qr.src = data.qr; }
    } catch (e) { say(e.message); }
}

async function deleteSession() {
    if (!confirm('Unlink WhatsApp and delete the stored session?')) return;
    try { const data = await api('DELETE', '/api/whatsapp'); say(data.message); } catch (e) { say(e.message); }
    refreshStatus(false);
}

async function saveSettings(event) {
    event.preventDefault();
    try {
        await api('PUT', '/api/admin/settings', {
            adminNumber: document.getElementById('admin-number').value,
            template: document.getElementById('template').value,
        });
        say('Settings saved');
    } catch (e) { say(e.message); }
}

async function sendTest() {
    try {
        await api('POST', '/api/whatsapp', {
            to: document.getElementById('admin-number').value,
            message: 'Test message from Sales Notifier',
        });
        say('Test message sent');
    } catch (e) { say(e.message); }
}

async function loadList(kind) {
    const data = await api('GET', '/api/admin/' + kind);
    const list = document.getElementById(kind + '-list');
    list.replaceChildren();
    for (const item of data[kind]) {
        const li = document.createElement('li');
        const label = document.createElement('span');
        label.textContent = item.name + ' (' + item.id + ')';
        const remove = document.createElement('button');
        remove.className = 'btn btn-danger';
        remove.textContent = 'Delete';
        remove.onclick = async () => { try { await api('DELETE', '/api/admin/' + kind + '/' + encodeURIComponent(item.id)); } catch (e) { say(e.message); } loadList(kind); };
        li.append(label, remove);
        list.append(li);
    }
}

async function addItem(kind) {
    const input = document.getElementById(kind + '-name');
    try { await api('POST', '/api/admin/' + kind, { name: input.value }); input.value = ''; } catch (e) { say(e.message); }
    loadList(kind);
}

async function addSales() {
    const fields = ['id', 'name', 'password'].map(key => document.getElementById('sales-' + key));
    const [id, name, password] = fields.map(input => input.value);
    try {
        await api('POST', '/api/admin/sales', { id, name, password });
        fields.forEach(input => { input.value = ''; });
    } catch (e) { say(e.message); }
    loadList('sales');
}

async function importFile(kind) {
    const file = document.getElementById(kind + '-file').files[0];
    if (!file) { say('No file selected'); return; }
    const form = new FormData();
    form.append('file', file);
    try {
        const data = await api('POST', '/api/admin/import/' + kind, form);
        say('Imported ' + data.added + ' ' + kind + (data.skipped ? ' (' + data.skipped + ' skipped)' : ''));
    } catch (e) { say(e.message); }
    loadList(kind);
}

refreshStatus(false);
setInterval(() => refreshStatus(false), 5000);
loadList('sales');
loadList('outlets');
loadList('products');
"""


def render_admin_page(admin_number: Optional[str], template: str) -> str:
    def list_card(kind: str, title: str) -> str:
        return f"""
        <div class="card">
            <h2>{title}</h2>
            <div class="row">
                <input type="text" id="{kind}-name" placeholder="New {title.lower()[:-1]} name" style="flex:1">
                <button class="btn" onclick="addItem('{kind}')">Add</button>
            </div>
            <div class="row" style="margin-top:10px">
                <input type="file" id="{kind}-file" accept=".xlsx,.xls,.csv">
                <button class="btn btn-ghost" onclick="importFile('{kind}')">Import</button>
            </div>
            <ul class="items" id="{kind}-list"></ul>
        </div>"""

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Admin - Sales Notifier</title>
    <style>
        {SHARED_CSS}
    </style>
</head>
<body>
    <div class="wrap">
        <div class="row" style="justify-content: space-between">
            <h1>Sales Notifier</h1>
            <span class="muted" id="notice"></span>
        </div>

        <div class="card">
            <h2>WhatsApp Connection</h2>
            <div class="row">
                <span class="badge closed" id="status">Checking...</span>
                <span class="muted" id="status-message"></span>
            </div>
            <img id="qr" class="qr" alt="WhatsApp QR code" style="display:none; margin-top:16px">
            <div class="row" style="margin-top:16px">
                <button class="btn" onclick="refreshStatus(true)">Reconnect</button>
                <button class="btn btn-danger" onclick="deleteSession()">Delete Session</button>
            </div>
        </div>

        <form class="card" onsubmit="saveSettings(event)">
            <h2>Notification</h2>
            <label class="muted">Admin WhatsApp number</label>
            <div class="row" style="margin: 6px 0 16px">
                <input type="text" id="admin-number" value="{html.escape(admin_number or '')}" placeholder="08123456789" style="flex:1">
                <button type="button" class="btn btn-ghost" onclick="sendTest()">Send Test</button>
            </div>
            <label class="muted">Template. Tokens: <code>{{date}}</code> <code>{{sales_name}}</code> <code>{{outlet_name}}</code> <code>{{products_list}}</code> <code>{{total_amount}}</code> ...</label>
            <textarea id="template" style="margin-top:6px">{html.escape(template)}</textarea>
            <div class="row" style="margin-top:12px"><button type="submit" class="btn">Save</button></div>
        </form>

        <div class="card">
            <h2>Sales Accounts</h2>
            <div class="row">
                <input type="text" id="sales-id" placeholder="Sales ID" style="flex:1">
                <input type="text" id="sales-name" placeholder="Name" style="flex:1">
                <input type="password" id="sales-password" placeholder="Password" style="flex:1">
                <button class="btn" onclick="addSales()">Add</button>
            </div>
            <ul class="items" id="sales-list"></ul>
        </div>

        {list_card("outlets", "Outlets")}
        {list_card("products", "Products")}
    </div>
    <script>{DASHBOARD_SCRIPT}</script>
</body>
</html>"""


@router.get("/", include_in_schema=False)
async def index():
    return RedirectResponse(url="/admin")


@router.get("/admin", response_class=HTMLResponse)
async def admin_page(request: Request):
    store: ReferenceStore = request.app.state.store
    template = store.get_notification_template() or DEFAULT_NOTIFICATION_TEMPLATE
    return render_admin_page(store.get_admin_number(), template)


# ══════════════════════════════════════════════════════════════════
#  APPLICATION
# ══════════════════════════════════════════════════════════════════

async def _log_session_event(event: SessionEvent) -> None:
    if event.pairing_code:
        logger.info("WhatsApp pairing code ready; scan it from the /admin page")


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ReferenceStore] = None,
    client_factory: Optional[ClientFactory] = None,
) -> FastAPI:
    """
    Build the application. The session, dispatcher and store are created
    in the lifespan and kept on ``app.state``.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for issue in settings.validate():
            logger.warning(issue)

        app.state.settings = settings
        app.state.store = store or init_store(settings.store.database_file)
        logger.info("Reference store ready")

        factory = client_factory or (lambda profile_dir: SeleniumProvider(profile_dir, settings.whatsapp))
        session = MessagingSession(
            factory,
            credential_store_for(settings.whatsapp),
            settings.whatsapp,
            pairing_cache=pairing_cache_for(settings.whatsapp),
        )
        session.add_listener(_log_session_event)
        app.state.session = session
        app.state.dispatcher = NotificationDispatcher(session, settings.whatsapp)
        app.state.submission_service = SubmissionService(app.state.store, app.state.dispatcher)
        try:
            yield
        finally:
            await session.close()
            logger.info("WhatsApp session closed")

    app = FastAPI(title="Sales Notifier", description="Sales visit notifications over WhatsApp", lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request: " + _format_errors(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
