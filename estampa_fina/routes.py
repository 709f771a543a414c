from __future__ import annotations

import logging
import os
from datetime import date, datetime, timezone
from typing import Optional, List
from urllib.parse import quote

from fastapi import APIRouter, Request, Depends, Form, HTTPException, UploadFile, File
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import ValidationError as FormError
from starlette.templating import Jinja2Templates

from .activity import log_activity, recent_activity
from .alerts import AlertScanError, run_alert_scan
from .app_settings import load_settings, update_settings
from .auth import AuthError, AuthProvider, SessionUser, resolve_session_user
from .cep import PostalCodeError, lookup_postal_code
from .deps import (
    SESSION_COOKIE, get_auth, get_settings, get_store, require_auth, require_capability, require_staff,
    session_uid,
)
from .derived import (
    TIER_LABELS, ValidationError, build_items, client_status, count_completed_orders, match_clients,
    normalize_payment, recompute_total, validate_sale,
)
from .notifications import mark_all_read, mark_read, recent_notifications, unread_count
from .permissions import (
    CAPABILITIES, ROLE_LABELS, PermissionDenied, Role, can, can_edit_password,
    capabilities_by_category, check_user_update, permissions_for_role, require,
)
from .reports import (
    brl, dashboard_metrics, period_report, products_csv, quote_pdf, sales_csv, top_clients_csv,
    top_products_csv,
)
from .schemas import (
    PAYMENT_METHODS, STATUS_LABELS, AppSettings, Category, Client, ClientForm, Order, OrderStatus,
    Product, ProductForm, Quote, QuoteStatus, UserRecord,
)
from .security import SESSION_MAX_AGE, build_session_token
from .store import DocumentStore, NotFound, StoreError, parse_timestamp, utcnow_iso
from .uploads import LocalBlobStorage, UploadError, upload_path

logger = logging.getLogger(__name__)

PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
TEMPLATES_DIR = os.path.join(PROJECT_DIR, "templates")
STATIC_DIR = os.path.join(PROJECT_DIR, "static")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(STATIC_DIR, "uploads"))
UPLOAD_BASE_URL = os.getenv("UPLOAD_BASE_URL", "/static/uploads")

templates = Jinja2Templates(directory=TEMPLATES_DIR)
storage = LocalBlobStorage(UPLOAD_DIR, UPLOAD_BASE_URL)

router = APIRouter()

# =========================
# Helpers
# =========================
def _fmt_dt(value, with_time: bool = False) -> str:
    dt = parse_timestamp(value)
    if dt is None:
        return "N/A"
    return dt.strftime("%d/%m/%Y %H:%M" if with_time else "%d/%m/%Y")

templates.env.filters["brl"] = brl
templates.env.filters["dt"] = _fmt_dt
templates.env.filters["status_label"] = lambda s: STATUS_LABELS.get(s or "", s or "N/A")
templates.env.filters["role_label"] = lambda r: ROLE_LABELS.get(r or "", r or "N/A")
templates.env.filters["tier_label"] = lambda t: TIER_LABELS.get(getattr(t, "value", t), t)

def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=302)

def with_msg(url: str, key: str, msg: str) -> RedirectResponse:
    sep = "&" if "?" in url else "?"
    return redirect(f"{url}{sep}{key}={quote(msg)}")

def ctx(request: Request, store: DocumentStore, user: Optional[SessionUser], settings: AppSettings, **extra):
    data = {
        "user": user,
        "settings": settings,
        "can": (lambda cap, target=None: can(user, cap, target)),
        "err": request.query_params.get("err"),
        "ok": request.query_params.get("ok"),
        "unread": 0,
    }
    if user and not user.is_customer:
        data["unread"] = unread_count(store)
    data.update(extra)
    return data

def render(request: Request, name: str, data: dict, status_code: int = 200):
    return templates.TemplateResponse(request, name, data, status_code=status_code)

def _store_upload(file: Optional[UploadFile], prefix: str) -> Optional[str]:
    if file is None or not file.filename:
        return None
    content = file.file.read()
    if not content:
        return None
    ctype = (file.content_type or "").split(";")[0].strip()
    if not ctype.startswith("image/"):
        raise UploadError("Envie um arquivo de imagem.")
    return storage.upload(content, upload_path(prefix, file.filename))

def _products_by_id(store: DocumentStore) -> dict[str, dict]:
    return {p["id"]: p for p in store.list("products")}

def _client_name(store: DocumentStore, client_id: str) -> str:
    doc = store.get("clients", client_id) if client_id else None
    return (doc or {}).get("name") or ""

def _parse_day(value: Optional[str], fallback: date) -> date:
    if not value:
        return fallback
    try:
        return date.fromisoformat(value)
    except ValueError:
        return fallback

def _first_error(exc: FormError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    return f"Campo inválido: {field}" if field else "Dados inválidos."


# =========================
# PUBLIC
# =========================
@router.get("/", include_in_schema=False)
def root(request: Request):
    if session_uid(request):
        return redirect("/dashboard")
    return redirect("/login")

@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request, settings: AppSettings = Depends(get_settings)):
    return render(request, "login.html", {"user": None, "settings": settings, "title": "Login"})

@router.post("/login")
def login_action(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    store: DocumentStore = Depends(get_store),
    auth: AuthProvider = Depends(get_auth),
    settings: AppSettings = Depends(get_settings),
):
    def fail(msg: str):
        return render(request, "login.html", {"user": None, "settings": settings, "error": msg, "title": "Login"}, status_code=400)

    try:
        principal = auth.sign_in_with_password(email, password)
    except AuthError as e:
        return fail(e.message)

    user = resolve_session_user(store, principal)
    if not user.active:
        auth.sign_out(principal.uid)
        return fail("Usuário inativo. Fale com o administrador.")

    resp = redirect("/my-orders" if user.is_customer else "/dashboard")
    resp.set_cookie(
        SESSION_COOKIE, build_session_token(principal.uid),
        max_age=SESSION_MAX_AGE, httponly=True, samesite="lax",
    )
    return resp

@router.get("/logout")
def logout(request: Request, auth: AuthProvider = Depends(get_auth)):
    uid = session_uid(request)
    if uid:
        auth.sign_out(uid)
    resp = redirect("/login")
    resp.delete_cookie(SESSION_COOKIE)
    return resp


# =========================
# DASHBOARD
# =========================
@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(
    request: Request,
    user: SessionUser = Depends(require_auth),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    if user.is_customer:
        query = request.url.query
        return redirect(f"/my-orders?{query}" if query else "/my-orders")
    data = store.fetch_many("users", "products", "orders")
    metrics = dashboard_metrics(data["users"], data["products"], data["orders"])
    users = [UserRecord.model_validate(u) for u in data["users"]]
    activity = recent_activity(store, limit=10) if can(user, "viewUsers") else []
    return render(request, "dashboard.html", ctx(
        request, store, user, settings, title="Dashboard", metrics=metrics, users=users, activity=activity,
    ))


# =========================
# PRODUCTS
# =========================
def _product_form(
    name: str, description: str, sku: str, current_stock: float, min_stock: float, max_stock: float,
    cost_price: float, sale_price: float, expiry_date: str, category: str, supplier: str, location: str,
) -> dict:
    form = ProductForm(
        name=name.strip(), description=description.strip(), sku=sku.strip(),
        current_stock=current_stock, min_stock=min_stock, max_stock=max_stock,
        cost_price=cost_price, sale_price=sale_price, expiry_date=expiry_date.strip() or None,
        category=category.strip(), supplier=supplier.strip(), location=location.strip(),
    )
    return form.to_doc()

@router.get("/products", response_class=HTMLResponse)
def products_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewProducts")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    q = (request.query_params.get("q") or "").strip().lower()
    category = (request.query_params.get("category") or "").strip()
    products = [Product.model_validate(d) for d in store.list("products", order_by="name")]
    if q:
        products = [p for p in products if q in p.name.lower() or q in p.sku.lower()]
    if category:
        products = [p for p in products if p.category == category]
    categories = [Category.model_validate(c) for c in store.list("categories", order_by="name")]
    return render(request, "products.html", ctx(
        request, store, user, settings, title="Produtos",
        products=products, categories=categories, q=q, category=category,
    ))

@router.get("/products/new", response_class=HTMLResponse)
def product_new_page(
    request: Request,
    user: SessionUser = Depends(require_capability("createProduct")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    categories = [Category.model_validate(c) for c in store.list("categories", where={"isActive": True})]
    return render(request, "product_form.html", ctx(request, store, user, settings, title="Novo produto", product=Product(), categories=categories))

@router.post("/products/new")
def product_new_action(
    name: str = Form(...),
    description: str = Form(""),
    sku: str = Form(""),
    current_stock: float = Form(0),
    min_stock: float = Form(0),
    max_stock: float = Form(0),
    cost_price: float = Form(0),
    sale_price: float = Form(0),
    expiry_date: str = Form(""),
    category: str = Form(""),
    supplier: str = Form(""),
    location: str = Form(""),
    image: UploadFile | None = File(None),
    user: SessionUser = Depends(require_capability("createProduct")),
    store: DocumentStore = Depends(get_store),
):
    try:
        doc = _product_form(name, description, sku, current_stock, min_stock, max_stock,
                            cost_price, sale_price, expiry_date, category, supplier, location)
        doc["imageUrl"] = _store_upload(image, "products") or ""
        doc["createdAt"] = utcnow_iso()
        store.add("products", doc)
    except FormError as e:
        return with_msg("/products/new", "err", _first_error(e))
    except (UploadError, StoreError) as e:
        return with_msg("/products/new", "err", str(e))
    return with_msg("/products", "ok", "Produto salvo.")

@router.get("/products/{pid}/edit", response_class=HTMLResponse)
def product_edit_page(
    request: Request,
    pid: str,
    user: SessionUser = Depends(require_capability("editProduct")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    doc = store.get("products", pid)
    if not doc:
        return redirect("/products")
    categories = [Category.model_validate(c) for c in store.list("categories")]
    return render(request, "product_form.html", ctx(
        request, store, user, settings, title="Editar produto",
        product=Product.model_validate(doc), categories=categories,
    ))

@router.post("/products/{pid}/edit")
def product_edit_action(
    pid: str,
    name: str = Form(...),
    description: str = Form(""),
    sku: str = Form(""),
    current_stock: float = Form(0),
    min_stock: float = Form(0),
    max_stock: float = Form(0),
    cost_price: float = Form(0),
    sale_price: float = Form(0),
    expiry_date: str = Form(""),
    category: str = Form(""),
    supplier: str = Form(""),
    location: str = Form(""),
    image: UploadFile | None = File(None),
    user: SessionUser = Depends(require_capability("editProduct")),
    store: DocumentStore = Depends(get_store),
):
    back = f"/products/{pid}/edit"
    try:
        doc = _product_form(name, description, sku, current_stock, min_stock, max_stock,
                            cost_price, sale_price, expiry_date, category, supplier, location)
        image_url = _store_upload(image, "products")
        if image_url:
            doc["imageUrl"] = image_url
        store.update("products", pid, doc)
    except FormError as e:
        return with_msg(back, "err", _first_error(e))
    except NotFound:
        return redirect("/products")
    except (UploadError, StoreError) as e:
        return with_msg(back, "err", str(e))
    return with_msg("/products", "ok", "Produto atualizado.")

@router.post("/products/{pid}/delete")
def product_delete(
    pid: str,
    user: SessionUser = Depends(require_capability("deleteProduct")),
    store: DocumentStore = Depends(get_store),
):
    try:
        if store.delete("products", pid):
            log_activity(store, user, "deleteProduct", f"products/{pid}")
    except StoreError as e:
        return with_msg("/products", "err", str(e))
    return with_msg("/products", "ok", "Produto excluído.")


# =========================
# CATEGORIES
# =========================
@router.get("/categories", response_class=HTMLResponse)
def categories_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewCategories")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    categories = [Category.model_validate(c) for c in store.list("categories", order_by="name")]
    return render(request, "categories.html", ctx(request, store, user, settings, title="Categorias", categories=categories))

@router.post("/categories/new")
def category_create(
    name: str = Form(...),
    description: str = Form(""),
    user: SessionUser = Depends(require_capability("createCategory")),
    store: DocumentStore = Depends(get_store),
):
    if not name.strip():
        return with_msg("/categories", "err", "Informe o nome da categoria.")
    try:
        store.add("categories", {
            "name": name.strip(), "description": description.strip(), "isActive": True, "createdAt": utcnow_iso(),
        })
    except StoreError as e:
        return with_msg("/categories", "err", str(e))
    return with_msg("/categories", "ok", "Categoria salva.")

@router.post("/categories/{cid}/edit")
def category_edit(
    cid: str,
    name: str = Form(...),
    description: str = Form(""),
    user: SessionUser = Depends(require_capability("editCategory")),
    store: DocumentStore = Depends(get_store),
):
    if not name.strip():
        return with_msg("/categories", "err", "Informe o nome da categoria.")
    try:
        store.update("categories", cid, {"name": name.strip(), "description": description.strip()})
    except StoreError as e:
        return with_msg("/categories", "err", str(e))
    return with_msg("/categories", "ok", "Categoria atualizada.")

@router.post("/categories/{cid}/toggle")
def category_toggle(
    cid: str,
    user: SessionUser = Depends(require_capability("editCategory")),
    store: DocumentStore = Depends(get_store),
):
    try:
        doc = store.get("categories", cid)
        if doc:
            store.update("categories", cid, {"isActive": not Category.model_validate(doc).is_active})
    except StoreError as e:
        return with_msg("/categories", "err", str(e))
    return redirect("/categories")

@router.post("/categories/{cid}/delete")
def category_delete(
    cid: str,
    user: SessionUser = Depends(require_capability("deleteCategory")),
    store: DocumentStore = Depends(get_store),
):
    try:
        if store.delete("categories", cid):
            log_activity(store, user, "deleteCategory", f"categories/{cid}")
    except StoreError as e:
        return with_msg("/categories", "err", str(e))
    return with_msg("/categories", "ok", "Categoria excluída.")


# =========================
# CLIENTS
# =========================
def _client_form(name, email, phone, cpf, street, number, neighborhood, city, state, postal_code, notes) -> dict:
    form = ClientForm(
        name=name.strip(), email=email.strip(), phone=phone.strip(), cpf=cpf.strip(), notes=notes.strip(),
        address={
            "street": street.strip(), "number": number.strip(), "neighborhood": neighborhood.strip(),
            "city": city.strip(), "state": state.strip(), "postal_code": postal_code.strip(),
        },
    )
    return form.to_doc()

@router.get("/clients", response_class=HTMLResponse)
def clients_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewClients")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    q = (request.query_params.get("q") or "").strip().lower()
    tier = (request.query_params.get("tier") or "").strip()
    data = store.fetch_many("clients", "orders")
    now = datetime.now(timezone.utc)

    rows = []
    for doc in data["clients"]:
        c = Client.model_validate(doc)
        status = client_status(c.created_at, count_completed_orders(data["orders"], c.id), now=now)
        if q and not (q in c.name.lower() or q in c.email.lower() or q in c.phone):
            continue
        if tier and status.value != tier:
            continue
        rows.append({"client": c, "status": status})
    rows.sort(key=lambda r: r["client"].name.lower())
    return render(request, "clients.html", ctx(request, store, user, settings, title="Clientes", rows=rows, q=q, tier=tier, tiers=TIER_LABELS))

@router.get("/clients/new", response_class=HTMLResponse)
def client_new_page(
    request: Request,
    user: SessionUser = Depends(require_capability("createClient")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    return render(request, "client_form.html", ctx(request, store, user, settings, title="Novo cliente", client=Client()))

@router.post("/clients/new")
def client_new_action(
    name: str = Form(...),
    email: str = Form(""),
    phone: str = Form(""),
    cpf: str = Form(""),
    street: str = Form(""),
    number: str = Form(""),
    neighborhood: str = Form(""),
    city: str = Form(""),
    state: str = Form(""),
    postal_code: str = Form(""),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("createClient")),
    store: DocumentStore = Depends(get_store),
):
    try:
        doc = _client_form(name, email, phone, cpf, street, number, neighborhood, city, state, postal_code, notes)
        doc["createdAt"] = utcnow_iso()
        store.add("clients", doc)
    except FormError as e:
        return with_msg("/clients/new", "err", _first_error(e))
    except StoreError as e:
        return with_msg("/clients/new", "err", str(e))
    return with_msg("/clients", "ok", "Cliente salvo.")

@router.get("/clients/{cid}/edit", response_class=HTMLResponse)
def client_edit_page(
    request: Request,
    cid: str,
    user: SessionUser = Depends(require_capability("editClient")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    doc = store.get("clients", cid)
    if not doc:
        return redirect("/clients")
    return render(request, "client_form.html", ctx(request, store, user, settings, title="Editar cliente", client=Client.model_validate(doc)))

@router.post("/clients/{cid}/edit")
def client_edit_action(
    cid: str,
    name: str = Form(...),
    email: str = Form(""),
    phone: str = Form(""),
    cpf: str = Form(""),
    street: str = Form(""),
    number: str = Form(""),
    neighborhood: str = Form(""),
    city: str = Form(""),
    state: str = Form(""),
    postal_code: str = Form(""),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("editClient")),
    store: DocumentStore = Depends(get_store),
):
    back = f"/clients/{cid}/edit"
    try:
        doc = _client_form(name, email, phone, cpf, street, number, neighborhood, city, state, postal_code, notes)
        store.update("clients", cid, doc)
    except FormError as e:
        return with_msg(back, "err", _first_error(e))
    except NotFound:
        return redirect("/clients")
    except StoreError as e:
        return with_msg(back, "err", str(e))
    return with_msg("/clients", "ok", "Cliente atualizado.")

@router.post("/clients/{cid}/delete")
def client_delete(
    cid: str,
    user: SessionUser = Depends(require_capability("deleteClient")),
    store: DocumentStore = Depends(get_store),
):
    try:
        if store.delete("clients", cid):
            log_activity(store, user, "deleteClient", f"clients/{cid}")
    except StoreError as e:
        return with_msg("/clients", "err", str(e))
    return with_msg("/clients", "ok", "Cliente excluído.")

@router.get("/api/cep/{code}")
def cep_lookup(code: str, user: SessionUser = Depends(require_staff)):
    try:
        return lookup_postal_code(code)
    except PostalCodeError as e:
        return JSONResponse({"error": e.message}, status_code=400)


# =========================
# SALES
# =========================
def _sale_page_data(store: DocumentStore) -> dict:
    data = store.fetch_many("clients", "products")
    return {
        "clients": sorted((Client.model_validate(c) for c in data["clients"]), key=lambda c: c.name.lower()),
        "products": sorted((Product.model_validate(p) for p in data["products"]), key=lambda p: p.name.lower()),
        "payment_methods": PAYMENT_METHODS,
        "statuses": [s.value for s in OrderStatus],
    }

def _sale_doc(store: DocumentStore, client_id: str, product_ids: List[str], qtys: List[str],
              payment_method: str, installments: int, status: str, notes: str) -> dict:
    items = build_items(_products_by_id(store), product_ids, qtys)
    validate_sale(client_id, items, payment_method)
    if status not in [s.value for s in OrderStatus]:
        raise ValidationError("Status inválido.")
    return recompute_total({
        "clientId": client_id,
        "customerName": _client_name(store, client_id),
        "items": items,
        "status": status,
        "paymentMethod": payment_method,
        "paymentDetails": normalize_payment(payment_method, installments),
        "notes": notes.strip(),
    })

@router.get("/sales", response_class=HTMLResponse)
def sales_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewSales")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    status = (request.query_params.get("status") or "").strip()
    q = (request.query_params.get("q") or "").strip().lower()
    orders = [Order.model_validate(o) for o in store.list("orders", order_by="date", descending=True)]
    if status:
        orders = [o for o in orders if o.status == status]
    if q:
        orders = [o for o in orders if q in o.customer_name.lower() or q in o.id]
    return render(request, "sales.html", ctx(
        request, store, user, settings, title="Vendas",
        orders=orders, status=status, q=q, statuses=[s.value for s in OrderStatus],
    ))

@router.get("/sales/new", response_class=HTMLResponse)
def sale_new_page(
    request: Request,
    user: SessionUser = Depends(require_capability("createSale")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    return render(request, "sale_form.html", ctx(request, store, user, settings, title="Nova venda", order=Order(), **_sale_page_data(store)))

@router.post("/sales/new")
def sale_new_action(
    client_id: str = Form(""),
    product_ids: List[str] = Form([]),
    qtys: List[str] = Form([]),
    payment_method: str = Form(""),
    installments: int = Form(1),
    status: str = Form(OrderStatus.AWAITING_PAYMENT.value),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("createSale")),
    store: DocumentStore = Depends(get_store),
):
    try:
        doc = _sale_doc(store, client_id, product_ids, qtys, payment_method, installments, status, notes)
        doc["date"] = utcnow_iso()
        oid = store.add("orders", doc)
    except ValidationError as e:
        return with_msg("/sales/new", "err", str(e))
    except StoreError as e:
        return with_msg("/sales/new", "err", str(e))
    return with_msg(f"/sales/{oid}", "ok", "Venda salva.")

@router.get("/sales/{oid}", response_class=HTMLResponse)
def sale_detail(
    request: Request,
    oid: str,
    user: SessionUser = Depends(require_auth),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    doc = store.get("orders", oid)
    if not doc:
        return redirect("/my-orders" if user.is_customer else "/sales")
    order = Order.model_validate(doc)
    # customers only reach their own orders
    if user.is_customer and order.client_id != user.id:
        raise HTTPException(status_code=403, detail="Sem permissão para ver este pedido.")
    if not user.is_customer and not can(user, "viewSales"):
        raise HTTPException(status_code=403, detail="Sem permissão para ver vendas.")
    return render(request, "sale_detail.html", ctx(request, store, user, settings, title="Venda", order=order))

@router.get("/sales/{oid}/edit", response_class=HTMLResponse)
def sale_edit_page(
    request: Request,
    oid: str,
    user: SessionUser = Depends(require_capability("editSaleStatus")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    doc = store.get("orders", oid)
    if not doc:
        return redirect("/sales")
    return render(request, "sale_form.html", ctx(
        request, store, user, settings, title="Editar venda", order=Order.model_validate(doc), **_sale_page_data(store),
    ))

@router.post("/sales/{oid}/edit")
def sale_edit_action(
    oid: str,
    client_id: str = Form(""),
    product_ids: List[str] = Form([]),
    qtys: List[str] = Form([]),
    payment_method: str = Form(""),
    installments: int = Form(1),
    status: str = Form(OrderStatus.AWAITING_PAYMENT.value),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("editSaleStatus")),
    store: DocumentStore = Depends(get_store),
):
    back = f"/sales/{oid}/edit"
    try:
        doc = _sale_doc(store, client_id, product_ids, qtys, payment_method, installments, status, notes)
        store.update("orders", oid, doc)
    except ValidationError as e:
        return with_msg(back, "err", str(e))
    except NotFound:
        return redirect("/sales")
    except StoreError as e:
        return with_msg(back, "err", str(e))
    return with_msg(f"/sales/{oid}", "ok", "Venda atualizada.")

@router.post("/sales/{oid}/status")
def sale_status(
    oid: str,
    status: str = Form(...),
    user: SessionUser = Depends(require_capability("editSaleStatus")),
    store: DocumentStore = Depends(get_store),
):
    if status not in [s.value for s in OrderStatus]:
        return with_msg("/sales", "err", "Status inválido.")
    try:
        store.update("orders", oid, {"status": status})
    except NotFound:
        return redirect("/sales")
    except StoreError:
        return with_msg("/sales", "err", "Não foi possível alterar o status do pedido.")
    return with_msg("/sales", "ok", "Status atualizado.")


# =========================
# QUOTES
# =========================
def _quote_doc(store: DocumentStore, client_id: str, product_ids: List[str], qtys: List[str], status: str, notes: str) -> dict:
    items = build_items(_products_by_id(store), product_ids, qtys)
    validate_sale(client_id, items)
    if status not in [s.value for s in QuoteStatus]:
        raise ValidationError("Status inválido.")
    return recompute_total({
        "clientId": client_id,
        "customerName": _client_name(store, client_id),
        "items": items,
        "status": status,
        "notes": notes.strip(),
    })

@router.get("/quotes", response_class=HTMLResponse)
def quotes_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewQuotes")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    quotes = [Quote.model_validate(d) for d in store.list("quotes", order_by="date", descending=True)]
    return render(request, "quotes.html", ctx(request, store, user, settings, title="Orçamentos", quotes=quotes))

@router.get("/quotes/new", response_class=HTMLResponse)
def quote_new_page(
    request: Request,
    user: SessionUser = Depends(require_capability("createQuote")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    data = _sale_page_data(store)
    data["statuses"] = [s.value for s in QuoteStatus]
    return render(request, "quote_form.html", ctx(request, store, user, settings, title="Novo orçamento", quote=Quote(), **data))

@router.post("/quotes/new")
def quote_new_action(
    client_id: str = Form(""),
    product_ids: List[str] = Form([]),
    qtys: List[str] = Form([]),
    status: str = Form(QuoteStatus.PENDING.value),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("createQuote")),
    store: DocumentStore = Depends(get_store),
):
    try:
        doc = _quote_doc(store, client_id, product_ids, qtys, status, notes)
        doc["date"] = utcnow_iso()
        store.add("quotes", doc)
    except (ValidationError, StoreError) as e:
        return with_msg("/quotes/new", "err", str(e))
    return with_msg("/quotes", "ok", "Orçamento salvo.")

@router.get("/quotes/{qid}/edit", response_class=HTMLResponse)
def quote_edit_page(
    request: Request,
    qid: str,
    user: SessionUser = Depends(require_capability("editQuote")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    doc = store.get("quotes", qid)
    if not doc:
        return redirect("/quotes")
    data = _sale_page_data(store)
    data["statuses"] = [s.value for s in QuoteStatus]
    return render(request, "quote_form.html", ctx(request, store, user, settings, title="Editar orçamento", quote=Quote.model_validate(doc), **data))

@router.post("/quotes/{qid}/edit")
def quote_edit_action(
    qid: str,
    client_id: str = Form(""),
    product_ids: List[str] = Form([]),
    qtys: List[str] = Form([]),
    status: str = Form(QuoteStatus.PENDING.value),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("editQuote")),
    store: DocumentStore = Depends(get_store),
):
    back = f"/quotes/{qid}/edit"
    try:
        doc = _quote_doc(store, client_id, product_ids, qtys, status, notes)
        store.update("quotes", qid, doc)
    except NotFound:
        return redirect("/quotes")
    except (ValidationError, StoreError) as e:
        return with_msg(back, "err", str(e))
    return with_msg("/quotes", "ok", "Orçamento atualizado.")

@router.post("/quotes/{qid}/delete")
def quote_delete(
    qid: str,
    user: SessionUser = Depends(require_capability("deleteQuote")),
    store: DocumentStore = Depends(get_store),
):
    try:
        if store.delete("quotes", qid):
            log_activity(store, user, "deleteQuote", f"quotes/{qid}")
    except StoreError as e:
        return with_msg("/quotes", "err", str(e))
    return with_msg("/quotes", "ok", "Orçamento excluído.")

@router.get("/quotes/{qid}/pdf")
def quote_pdf_export(
    qid: str,
    user: SessionUser = Depends(require_capability("viewQuotes")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    doc = store.get("quotes", qid)
    if not doc:
        return redirect("/quotes")
    q = Quote.model_validate(doc)
    client_doc = store.get("clients", q.client_id) if q.client_id else None
    client = Client.model_validate(client_doc) if client_doc else None
    slug = "_".join((q.customer_name or "cliente").split()) or "cliente"
    return Response(
        content=quote_pdf(q, client, settings),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=orcamento-{quote(slug)}.pdf"},
    )

def convert_quote_to_sale(store: DocumentStore, quote_id: str) -> str:
    """Create the sale for an approved quote (idempotent). Returns the order id."""
    doc = store.get("quotes", quote_id)
    if doc is None:
        raise NotFound("quotes", quote_id)
    q = Quote.model_validate(doc)
    if q.converted_order_id and store.exists("orders", q.converted_order_id):
        return q.converted_order_id
    if q.status != QuoteStatus.APPROVED.value:
        raise ValidationError("Apenas orçamentos aprovados podem virar venda.")

    order = recompute_total({
        "clientId": q.client_id,
        "customerName": q.customer_name,
        "items": [it.model_dump(by_alias=True) for it in q.items],
        "status": OrderStatus.AWAITING_PAYMENT.value,
        "paymentMethod": "",
        "paymentDetails": {"installments": 1},
        "notes": q.notes,
        "quoteId": q.id,
        "date": utcnow_iso(),
    })
    oid = store.add("orders", order)
    store.update("quotes", q.id, {"convertedOrderId": oid})
    return oid

@router.post("/quotes/{qid}/convert")
def quote_convert(
    qid: str,
    user: SessionUser = Depends(require_capability("createSale")),
    store: DocumentStore = Depends(get_store),
):
    try:
        oid = convert_quote_to_sale(store, qid)
    except NotFound:
        return redirect("/quotes")
    except (ValidationError, StoreError) as e:
        return with_msg("/quotes", "err", str(e))
    return with_msg(f"/sales/{oid}/edit", "ok", "Venda criada a partir do orçamento.")


# =========================
# SERVICE MODE
# =========================
def _service_url(cid: str = "") -> str:
    return f"/service?cid={quote(cid)}" if cid else "/service"

@router.get("/service", response_class=HTMLResponse)
def service_page(
    request: Request,
    user: SessionUser = Depends(require_capability("createSale")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    q = (request.query_params.get("q") or "").strip()
    cid = (request.query_params.get("cid") or "").strip()
    data = store.fetch_many("clients", "products")

    suggestions = sorted(
        (Client.model_validate(c) for c in match_clients(data["clients"], q)),
        key=lambda c: c.name.lower(),
    )
    selected, orders = None, []
    doc = store.get("clients", cid) if cid else None
    if doc:
        selected = Client.model_validate(doc)
        orders = [
            Order.model_validate(o)
            for o in store.list("orders", where={"clientId": cid}, order_by="date", descending=True)
        ]
    return render(request, "service.html", ctx(
        request, store, user, settings, title="Modo de atendimento",
        q=q, suggestions=suggestions, selected=selected, orders=orders,
        blank=Order(),
        products=sorted((Product.model_validate(p) for p in data["products"]), key=lambda p: p.name.lower()),
        payment_methods=PAYMENT_METHODS,
    ))

@router.get("/service/clients/new", response_class=HTMLResponse)
def service_client_new_page(
    request: Request,
    user: SessionUser = Depends(require_capability("createClient")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    return render(request, "client_form.html", ctx(
        request, store, user, settings, title="Novo cliente", client=Client(),
        form_action="/service/clients/new", cancel_url="/service",
    ))

@router.post("/service/clients/new")
def service_client_new_action(
    name: str = Form(...),
    email: str = Form(""),
    phone: str = Form(""),
    cpf: str = Form(""),
    street: str = Form(""),
    number: str = Form(""),
    neighborhood: str = Form(""),
    city: str = Form(""),
    state: str = Form(""),
    postal_code: str = Form(""),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("createClient")),
    store: DocumentStore = Depends(get_store),
):
    try:
        doc = _client_form(name, email, phone, cpf, street, number, neighborhood, city, state, postal_code, notes)
        doc["createdAt"] = utcnow_iso()
        cid = store.add("clients", doc)
    except FormError as e:
        return with_msg("/service/clients/new", "err", _first_error(e))
    except StoreError as e:
        return with_msg("/service/clients/new", "err", str(e))
    return with_msg(_service_url(cid), "ok", "Cliente salvo.")

@router.post("/service/{cid}/client")
def service_client_update(
    cid: str,
    name: str = Form(...),
    email: str = Form(""),
    phone: str = Form(""),
    cpf: str = Form(""),
    street: str = Form(""),
    number: str = Form(""),
    neighborhood: str = Form(""),
    city: str = Form(""),
    state: str = Form(""),
    postal_code: str = Form(""),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("editClient")),
    store: DocumentStore = Depends(get_store),
):
    back = _service_url(cid)
    try:
        doc = _client_form(name, email, phone, cpf, street, number, neighborhood, city, state, postal_code, notes)
        store.update("clients", cid, doc)
    except FormError as e:
        return with_msg(back, "err", _first_error(e))
    except NotFound:
        return redirect("/service")
    except StoreError:
        return with_msg(back, "err", "Falha ao atualizar dados do cliente.")
    return with_msg(back, "ok", "Dados do cliente atualizados!")

@router.post("/service/{cid}/sale")
def service_sale(
    cid: str,
    product_ids: List[str] = Form([]),
    qtys: List[str] = Form([]),
    payment_method: str = Form("Dinheiro"),
    installments: int = Form(1),
    notes: str = Form(""),
    user: SessionUser = Depends(require_capability("createSale")),
    store: DocumentStore = Depends(get_store),
):
    back = _service_url(cid)
    if not store.exists("clients", cid):
        return with_msg("/service", "err", "Selecione um cliente.")
    try:
        # counter sales are paid on the spot
        doc = _sale_doc(store, cid, product_ids, qtys, payment_method, installments, OrderStatus.COMPLETED.value, notes)
        doc["date"] = utcnow_iso()
        store.add("orders", doc)
    except ValidationError as e:
        return with_msg(back, "err", str(e))
    except StoreError:
        return with_msg(back, "err", "Falha ao registrar a venda.")
    return with_msg(back, "ok", "Venda registrada com sucesso!")


# =========================
# CUSTOMER AREA
# =========================
@router.get("/my-orders", response_class=HTMLResponse)
def my_orders(
    request: Request,
    user: SessionUser = Depends(require_auth),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    orders = [
        Order.model_validate(o)
        for o in store.list("orders", where={"clientId": user.id}, order_by="date", descending=True)
    ]
    return render(request, "my_orders.html", ctx(request, store, user, settings, title="Meus pedidos", orders=orders))


# =========================
# ALERTS / NOTIFICATIONS
# =========================
@router.get("/alerts", response_class=HTMLResponse)
def alerts_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewProducts")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    try:
        result = run_alert_scan(store, settings)
    except AlertScanError as e:
        return render(request, "alerts.html", ctx(request, store, user, settings, title="Alertas", alerts=[], error=str(e)), status_code=503)
    return render(request, "alerts.html", ctx(request, store, user, settings, title="Alertas", alerts=result.alerts))

@router.get("/notifications", response_class=HTMLResponse)
def notifications_page(
    request: Request,
    user: SessionUser = Depends(require_staff),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    items = recent_notifications(store, limit=50)
    return render(request, "notifications.html", ctx(request, store, user, settings, title="Notificações", notifications=items))

@router.get("/notifications/{nid}/open")
def notification_open(
    nid: str,
    user: SessionUser = Depends(require_staff),
    store: DocumentStore = Depends(get_store),
):
    doc = store.get("notifications", nid)
    if not doc:
        return redirect("/notifications")
    try:
        mark_read(store, nid)
    except StoreError as e:
        return with_msg("/notifications", "err", str(e))
    target = doc.get("ctaLink") or "/notifications"
    return redirect(target if target.startswith("/") else "/notifications")

@router.post("/notifications/read-all")
def notifications_read_all(
    user: SessionUser = Depends(require_staff),
    store: DocumentStore = Depends(get_store),
):
    try:
        mark_all_read(store)
    except StoreError as e:
        return with_msg("/notifications", "err", str(e))
    return redirect("/notifications")


# =========================
# USERS
# =========================
@router.get("/users", response_class=HTMLResponse)
def users_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewUsers")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    users = [UserRecord.model_validate(u) for u in store.list("users", order_by="name")]
    return render(request, "users.html", ctx(request, store, user, settings, title="Usuários", users=users, roles=ROLE_LABELS))

@router.get("/users/new", response_class=HTMLResponse)
def user_new_page(
    request: Request,
    user: SessionUser = Depends(require_capability("createUser")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    return render(request, "user_form.html", ctx(
        request, store, user, settings, title="Novo usuário",
        target=UserRecord(role=Role.OPERATOR.value, permissions=permissions_for_role(Role.OPERATOR)),
        roles=ROLE_LABELS, groups=capabilities_by_category(), editing=False,
    ))

@router.post("/users/new")
def user_new_action(
    name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    role: str = Form(Role.OPERATOR.value),
    user: SessionUser = Depends(require_capability("createUser")),
    store: DocumentStore = Depends(get_store),
    auth: AuthProvider = Depends(get_auth),
):
    if role not in ROLE_LABELS:
        return with_msg("/users/new", "err", "Permissão principal inválida.")
    if not name.strip():
        return with_msg("/users/new", "err", "Informe o nome.")
    try:
        principal = auth.create_account(email, password, display_name=name)
        store.set("users", principal.uid, {
            "name": name.strip(),
            "email": principal.email,
            "role": role,
            "permissions": permissions_for_role(role),
            "active": True,
            "createdAt": utcnow_iso(),
        })
        log_activity(store, user, "createUser", f"users/{principal.uid}", role)
    except AuthError as e:
        return with_msg("/users/new", "err", e.message)
    except StoreError as e:
        return with_msg("/users/new", "err", str(e))
    return with_msg("/users", "ok", "Usuário criado com sucesso!")

@router.get("/users/{uid}/edit", response_class=HTMLResponse)
def user_edit_page(
    request: Request,
    uid: str,
    user: SessionUser = Depends(require_capability("editUser")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    doc = store.get("users", uid)
    if not doc:
        return redirect("/users")
    target = UserRecord.model_validate(doc)
    if target.permissions is None:
        target.permissions = permissions_for_role(target.role)
    return render(request, "user_form.html", ctx(
        request, store, user, settings, title="Editar usuário",
        target=target, roles=ROLE_LABELS, groups=capabilities_by_category(), editing=True,
        can_set_password=can_edit_password(user.role, target.role),
    ))

@router.post("/users/{uid}/edit")
def user_edit_action(
    uid: str,
    name: str = Form(...),
    role: str = Form(""),
    perms: List[str] = Form([]),
    change_permissions: str = Form(""),
    password: str = Form(""),
    user: SessionUser = Depends(require_capability("editUser")),
    store: DocumentStore = Depends(get_store),
    auth: AuthProvider = Depends(get_auth),
):
    back = f"/users/{uid}/edit"
    doc = store.get("users", uid)
    if not doc:
        return redirect("/users")
    current = UserRecord.model_validate(doc)

    changes: dict = {}
    if name.strip() and name.strip() != current.name:
        changes["name"] = name.strip()
    if change_permissions:
        if role and role != current.role:
            if role not in ROLE_LABELS:
                return with_msg(back, "err", "Permissão principal inválida.")
            changes["role"] = role
        wanted = {cap: cap in perms for cap in CAPABILITIES}
        if wanted != (current.permissions or {}):
            changes["permissions"] = wanted

    if changes:
        check_user_update(user, uid, changes.keys())

    if password:
        if not can_edit_password(user.role, current.role):
            return with_msg(back, "err", "Sem permissão para alterar a senha.")
        try:
            auth.set_password(uid, password)
        except AuthError as e:
            return with_msg(back, "err", e.message)

    try:
        if changes:
            store.update("users", uid, changes)
            if "name" in changes:
                auth.update_profile(uid, display_name=changes["name"])
            log_activity(store, user, "editUser", f"users/{uid}", ",".join(sorted(changes)))
    except AuthError:
        # application record without a login account
        pass
    except StoreError as e:
        return with_msg(back, "err", str(e))
    return with_msg("/users", "ok", "Usuário atualizado com sucesso!")

@router.post("/users/{uid}/role")
def user_role_change(
    uid: str,
    role: str = Form(...),
    user: SessionUser = Depends(require_auth),
    store: DocumentStore = Depends(get_store),
):
    if role not in ROLE_LABELS:
        return with_msg("/users", "err", "Permissão principal inválida.")
    check_user_update(user, uid, {"role", "permissions"})
    try:
        store.update("users", uid, {"role": role, "permissions": permissions_for_role(role)})
        log_activity(store, user, "changeRole", f"users/{uid}", role)
    except NotFound:
        return redirect("/users")
    except StoreError as e:
        return with_msg("/users", "err", str(e))
    return with_msg("/users", "ok", "Permissão alterada.")

@router.post("/users/{uid}/toggle")
def user_toggle_active(
    uid: str,
    user: SessionUser = Depends(require_auth),
    store: DocumentStore = Depends(get_store),
):
    check_user_update(user, uid, {"active"})
    try:
        doc = store.get("users", uid)
        if not doc:
            return redirect("/users")
        active = not UserRecord.model_validate(doc).active
        store.update("users", uid, {"active": active})
        log_activity(store, user, "toggleUserActive", f"users/{uid}", "ativo" if active else "inativo")
    except StoreError:
        return with_msg("/users", "err", "Falha ao alterar o status.")
    return redirect("/users")

@router.post("/users/{uid}/delete")
def user_delete(
    uid: str,
    user: SessionUser = Depends(require_auth),
    store: DocumentStore = Depends(get_store),
    auth: AuthProvider = Depends(get_auth),
):
    if uid == user.id:
        raise PermissionDenied("Não é possível excluir a sua própria conta.")
    require(user, "deleteUser", uid)
    try:
        store.delete("users", uid)
        auth.delete_account(uid)
        log_activity(store, user, "deleteUser", f"users/{uid}")
    except StoreError as e:
        return with_msg("/users", "err", str(e))
    return with_msg("/users", "ok", "Usuário excluído.")


# =========================
# PROFILE
# =========================
@router.get("/profile", response_class=HTMLResponse)
def profile_page(
    request: Request,
    user: SessionUser = Depends(require_auth),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    return render(request, "profile.html", ctx(request, store, user, settings, title="Perfil"))

@router.post("/profile")
def profile_update(
    display_name: str = Form(""),
    photo: UploadFile | None = File(None),
    user: SessionUser = Depends(require_auth),
    store: DocumentStore = Depends(get_store),
    auth: AuthProvider = Depends(get_auth),
):
    name = display_name.strip()
    if not name:
        return with_msg("/profile", "err", "Informe um nome.")
    try:
        photo_url = _store_upload(photo, "avatars")
        if name == user.name and not photo_url:
            return with_msg("/profile", "err", "Nenhuma alteração para salvar.")
        auth.update_profile(user.id, display_name=name, photo_url=photo_url)
        if store.exists("users", user.id):
            changes = {"name": name}
            if photo_url:
                changes["photoUrl"] = photo_url
            store.update("users", user.id, changes)
    except (UploadError, StoreError) as e:
        return with_msg("/profile", "err", str(e))
    except AuthError as e:
        return with_msg("/profile", "err", e.message)
    return with_msg("/profile", "ok", "Perfil atualizado com sucesso!")

@router.post("/profile/password")
def profile_password(
    current_password: str = Form(...),
    new_password: str = Form(...),
    confirm_password: str = Form(...),
    user: SessionUser = Depends(require_auth),
    auth: AuthProvider = Depends(get_auth),
):
    if new_password != confirm_password:
        return with_msg("/profile", "err", "As senhas não coincidem.")
    try:
        auth.change_password(user.id, current_password, new_password)
    except AuthError as e:
        return with_msg("/profile", "err", e.message)
    except StoreError as e:
        return with_msg("/profile", "err", str(e))
    return with_msg("/profile", "ok", "Senha alterada com sucesso!")


# =========================
# SETTINGS
# =========================
@router.get("/settings", response_class=HTMLResponse)
def settings_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewSettings")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    return render(request, "settings.html", ctx(request, store, user, settings, title="Configurações", current=load_settings(store)))

@router.post("/settings")
def settings_update(
    company_name: str = Form(...),
    primary_color: str = Form("#1a1a1a"),
    secondary_color: str = Form("#800000"),
    tertiary_color: str = Form("#a0a0a0"),
    notify_low_stock: str = Form(""),
    notify_expiry: str = Form(""),
    notify_overdue: str = Form(""),
    logo_file: UploadFile | None = File(None),
    favicon_file: UploadFile | None = File(None),
    user: SessionUser = Depends(require_capability("editSettings")),
    store: DocumentStore = Depends(get_store),
):
    if not company_name.strip():
        return with_msg("/settings", "err", "Informe o nome da empresa.")
    changes = {
        "companyName": company_name.strip()[:80],
        "primaryColor": primary_color.strip()[:30],
        "secondaryColor": secondary_color.strip()[:30],
        "tertiaryColor": tertiary_color.strip()[:30],
        "notify_low_stock": bool(notify_low_stock),
        "notify_expiry": bool(notify_expiry),
        "notify_overdue": bool(notify_overdue),
    }
    try:
        logo_url = _store_upload(logo_file, "branding")
        if logo_url:
            changes["logoUrl"] = logo_url
        favicon_url = _store_upload(favicon_file, "branding")
        if favicon_url:
            changes["faviconUrl"] = favicon_url
        update_settings(store, changes)
        log_activity(store, user, "editSettings", "settings/main")
    except (UploadError, StoreError) as e:
        return with_msg("/settings", "err", str(e))
    return with_msg("/settings", "ok", "Configurações salvas.")


# =========================
# REPORTS / EXPORTS
# =========================
def _report_for(request: Request, store: DocumentStore):
    today = datetime.now(timezone.utc).date()
    start = _parse_day(request.query_params.get("from"), today.replace(day=1))
    end = _parse_day(request.query_params.get("to"), today)
    if end < start:
        start, end = end, start
    data = store.fetch_many("orders", "products", "clients")
    return period_report(data["orders"], data["products"], data["clients"], start, end)

def _csv(content: bytes, filename: str) -> Response:
    return Response(content=content, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})

@router.get("/reports", response_class=HTMLResponse)
def reports_page(
    request: Request,
    user: SessionUser = Depends(require_capability("viewReports")),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    report = _report_for(request, store)
    return render(request, "reports.html", ctx(request, store, user, settings, title="Relatórios", report=report))

@router.get("/export/sales.csv")
def export_sales_csv(
    request: Request,
    user: SessionUser = Depends(require_capability("viewReports")),
    store: DocumentStore = Depends(get_store),
):
    status = (request.query_params.get("status") or "").strip()
    orders = store.list("orders", where={"status": status} if status else None, order_by="date", descending=True)
    return _csv(sales_csv(orders), "vendas.csv")

@router.get("/export/products.csv")
def export_products_csv(
    user: SessionUser = Depends(require_capability("viewReports")),
    store: DocumentStore = Depends(get_store),
):
    return _csv(products_csv(store.list("products")), "produtos.csv")

@router.get("/export/top-products.csv")
def export_top_products_csv(
    request: Request,
    user: SessionUser = Depends(require_capability("viewReports")),
    store: DocumentStore = Depends(get_store),
):
    return _csv(top_products_csv(_report_for(request, store)), "top_produtos.csv")

@router.get("/export/top-clients.csv")
def export_top_clients_csv(
    request: Request,
    user: SessionUser = Depends(require_capability("viewReports")),
    store: DocumentStore = Depends(get_store),
):
    return _csv(top_clients_csv(_report_for(request, store)), "top_clientes.csv")


# =========================
# SEARCH
# =========================
@router.get("/search", response_class=HTMLResponse)
def search_page(
    request: Request,
    user: SessionUser = Depends(require_staff),
    store: DocumentStore = Depends(get_store),
    settings: AppSettings = Depends(get_settings),
):
    term = (request.query_params.get("q") or "").strip()
    products, users = [], []
    if term:
        needle = term.lower()
        if can(user, "viewProducts"):
            products = [Product.model_validate(p) for p in store.list("products", order_by="name")
                        if (p.get("name") or "").lower().startswith(needle)]
        if can(user, "viewUsers"):
            users = [UserRecord.model_validate(u) for u in store.list("users", order_by="name")
                     if (u.get("name") or "").lower().startswith(needle)]
    return render(request, "search.html", ctx(request, store, user, settings, title="Pesquisa", term=term, products=products, users=users))
