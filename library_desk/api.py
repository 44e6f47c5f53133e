import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from .config import Settings, configure_logging, settings as default_settings
from .database import Database, initialize_database
from .errors import InternalError, LibraryError, NotFound
from .identity import IdentityStore
from .inventory import InventoryStore
from .ledger import BorrowLedger
from .messages import MessageInbox
from .models import Identity
from .policy import Operation, require
from .sessions import SessionContext, SessionStore

logger = logging.getLogger(__name__)


# --- Models ---
class BookPayload(BaseModel):
    title: str
    author: str
    category: Optional[str] = None


class BorrowPayload(BaseModel):
    book_id: int
    return_date: Optional[str] = None


class BorrowStatusPayload(BaseModel):
    status: str


class CredentialsPayload(BaseModel):
    username: str
    password: str


class ContactPayload(BaseModel):
    name: str
    email: str
    subject: str
    message: str


def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


# --- Dependencies ---
def get_inventory(request: Request) -> InventoryStore:
    return request.app.state.inventory


def get_ledger(request: Request) -> BorrowLedger:
    return request.app.state.ledger


def get_identities(request: Request) -> IdentityStore:
    return request.app.state.identities


def get_inbox(request: Request) -> MessageInbox:
    return request.app.state.inbox


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session(request: Request) -> SessionContext:
    """Session bound to this request, looked up from the session cookie."""
    state = request.app.state
    session_id = request.cookies.get(state.settings.session_cookie_name)
    return SessionContext(state.sessions, state.identities, session_id)


def get_identity(session: SessionContext = Depends(get_session)) -> Identity:
    return session.current_identity()


def require_operation(operation: Operation):
    """Dependency that lets the request through only if the policy allows it."""
    def checker(identity: Identity = Depends(get_identity)) -> Identity:
        return require(operation, identity)
    return checker


# --- Routes ---
router = APIRouter(prefix="/api")


@router.get("/books")
def list_books(
    q: Optional[str] = Query(None, description="Substring matched against title, author and category"),
    inventory: InventoryStore = Depends(get_inventory),
):
    """Catalog, newest first, optionally filtered."""
    return ok([b.to_dict() for b in inventory.search(q)])


@router.post("/books")
def create_book(
    payload: BookPayload,
    admin: Identity = Depends(require_operation(Operation.CATALOG_CREATE)),
    inventory: InventoryStore = Depends(get_inventory),
):
    book = inventory.create(payload.title, payload.author, payload.category)
    return ok(book.to_dict())


@router.put("/books/{book_id}")
def update_book(
    book_id: int,
    payload: BookPayload,
    admin: Identity = Depends(require_operation(Operation.CATALOG_UPDATE)),
    inventory: InventoryStore = Depends(get_inventory),
):
    book = inventory.update(book_id, payload.title, payload.author, payload.category)
    return ok(book.to_dict())


@router.delete("/books/{book_id}")
def delete_book(
    book_id: int,
    admin: Identity = Depends(require_operation(Operation.CATALOG_DELETE)),
    inventory: InventoryStore = Depends(get_inventory),
):
    inventory.delete(book_id)
    return ok(message="Book deleted")


@router.post("/borrow")
def borrow_book(
    payload: BorrowPayload,
    identity: Identity = Depends(get_identity),
    ledger: BorrowLedger = Depends(get_ledger),
):
    # The ledger checks authentication itself; anonymous callers get 401 from it.
    record = ledger.borrow(payload.book_id, identity, payload.return_date)
    return ok(record.to_dict(), message="Book borrowed successfully.")


@router.put("/borrows/{record_id}")
def update_borrow(
    record_id: int,
    payload: BorrowStatusPayload,
    identity: Identity = Depends(get_identity),
    ledger: BorrowLedger = Depends(get_ledger),
):
    changed = ledger.set_status(record_id, payload.status, identity)
    return ok(message="Book marked as returned." if changed else "Record already returned.")


@router.get("/borrowed")
def my_borrows(
    identity: Identity = Depends(require_operation(Operation.LIST_OWN_BORROWS)),
    ledger: BorrowLedger = Depends(get_ledger),
):
    """The caller's own lending history."""
    return ok([entry.to_dict() for entry in ledger.list_for_user(identity.id)])


@router.get("/summary")
def summary(
    admin: Identity = Depends(require_operation(Operation.SUMMARY)),
    inventory: InventoryStore = Depends(get_inventory),
    ledger: BorrowLedger = Depends(get_ledger),
    identities: IdentityStore = Depends(get_identities),
):
    return ok({
        "total_books": inventory.count(),
        "borrowed_books": ledger.count_active(),
        "total_users": identities.count(),
    })


@router.get("/users")
def list_users(
    admin: Identity = Depends(require_operation(Operation.LIST_USERS)),
    identities: IdentityStore = Depends(get_identities),
):
    return ok([u.to_dict() for u in identities.list_users()])


@router.post("/register")
def register(payload: CredentialsPayload, identities: IdentityStore = Depends(get_identities)):
    identities.register(payload.username, payload.password)
    return ok(message="Registration successful. Please login.")


@router.post("/login")
def login(
    payload: CredentialsPayload,
    response: Response,
    session: SessionContext = Depends(get_session),
    config: Settings = Depends(get_settings),
):
    identity = session.login(payload.username, payload.password)
    response.set_cookie(
        config.session_cookie_name,
        session.session_id,
        httponly=True,
        samesite="lax",
        secure=config.session_cookie_secure,
    )
    return ok(identity.to_dict())


@router.post("/logout")
def logout(
    response: Response,
    identity: Identity = Depends(require_operation(Operation.LOGOUT)),
    session: SessionContext = Depends(get_session),
    config: Settings = Depends(get_settings),
):
    session.logout()
    response.delete_cookie(config.session_cookie_name)
    return ok(message="Logged out")


@router.get("/me")
def me(identity: Identity = Depends(require_operation(Operation.ME))):
    return ok(identity.to_dict())


@router.post("/contact")
def contact(payload: ContactPayload, inbox: MessageInbox = Depends(get_inbox)):
    saved = inbox.submit(payload.name, payload.email, payload.subject, payload.message)
    return ok(saved.to_dict())


@router.get("/messages")
def list_messages(
    admin: Identity = Depends(require_operation(Operation.LIST_MESSAGES)),
    inbox: MessageInbox = Depends(get_inbox),
):
    return ok([m.to_dict() for m in inbox.list_all()])


# --- Error handling ---
def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError):
        return fail(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            detail = f"{field}: {first.get('msg')}" if field else first.get("msg")
        else:
            detail = "Invalid request."
        return fail(400, detail)

    @app.exception_handler(sqlite3.Error)
    async def storage_error_handler(request: Request, exc: sqlite3.Error):
        logger.exception("Storage failure on %s %s", request.method, request.url.path)
        return fail(InternalError.status_code, "Internal server error")

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return fail(InternalError.status_code, "Internal server error")


# --- Static front-end ---
def mount_frontend(app: FastAPI, static_dir: str) -> None:
    """Serve the front-end files, falling back to index.html for client-side routes."""
    root = os.path.realpath(static_dir)
    index = os.path.join(root, "index.html")

    @app.get("/{full_path:path}", include_in_schema=False)
    def frontend(full_path: str):
        if full_path.startswith("api/"):
            raise NotFound("Not found")
        candidate = os.path.realpath(os.path.join(root, full_path))
        if full_path and candidate.startswith(root + os.sep) and os.path.isfile(candidate):
            return FileResponse(candidate)
        if os.path.isfile(index):
            return FileResponse(index)
        raise NotFound("Not found")


# --- Application factory ---
def create_app(config: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    """Build the API with its own store and session table.

    Tests pass an explicit ``Settings``/``Database`` pair; the module-level
    ``app`` uses the environment.
    """
    config = config or default_settings
    db = db or Database.from_settings(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        initialize_database(db, config)
        logger.info("Database ready at %s", db.db_file)
        yield

    app = FastAPI(title=config.app_name, version=config.app_version, debug=config.debug, lifespan=lifespan)
    app.state.settings = config
    app.state.db = db
    app.state.identities = IdentityStore(db)
    app.state.inventory = InventoryStore(db)
    app.state.ledger = BorrowLedger(db)
    app.state.inbox = MessageInbox(db)
    app.state.sessions = SessionStore()

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/health")
    def health():
        """Lightweight health check with a quick database round trip."""
        return {
            "status": "healthy",
            "db": db.ping(),
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

    app.include_router(router)
    if os.path.isdir(config.static_dir):
        mount_frontend(app, config.static_dir)
    return app


configure_logging()
app = create_app()
