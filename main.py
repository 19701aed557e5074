"""
FastAPI Basic Chat Server
Login page, chat page and a WebSocket endpoint with persistent chat history
"""

from fastapi import FastAPI, Form, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from pathlib import Path
import asyncio
import time
import uvicorn

from basic_chat import (
    RowStore,
    Database,
    PresenceCoordinator,
    ChatError,
    StorageError,
    UsernameStatus,
    USERNAME_STATUS_MESSAGES,
    check_username,
    parse_client_frame,
    error_event,
    username_accepted_event,
    get_logger,
    log_security_event,
    log_websocket_event,
    log_system_event,
    CORS_ALLOW_CREDENTIALS,
    CORS_ORIGINS,
    DATABASE_PATH,
    ERROR_MESSAGES,
    ERROR_PAGE_MESSAGES,
    HOST,
    PORT,
    RECONCILE_INTERVAL_SECONDS,
    WS_PING_INTERVAL,
    WS_PING_TIMEOUT,
)

BASE_DIR = Path(__file__).resolve().parent

logger = get_logger()

# Setup templates
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


async def background_reconcile(coordinator: PresenceCoordinator, interval: float):
    """Periodically compare presence bindings with the users table"""
    while True:
        try:
            await asyncio.sleep(interval)
            stale = await coordinator.check_consistency()
            if stale:
                log_system_event(
                    "presence_check",
                    f"{len(stale)} bindings without a matching user row",
                    level="warning"
                )
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Presence check error: {e}")


def error_page(request: Request, status_code: int, message: str = ""):
    """Render the HTML error page"""
    return templates.TemplateResponse(
        request,
        "error.html",
        {"error_code": status_code, "message": message or ERROR_PAGE_MESSAGES.get(status_code, "")},
        status_code=status_code
    )


def create_app(database_path: str = DATABASE_PATH, reconcile_interval: float = RECONCILE_INTERVAL_SECONDS) -> FastAPI:
    """Build the application around a database file"""
    store = RowStore(database_path)
    database = Database(store)
    coordinator = PresenceCoordinator(database)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management"""
        # Startup
        logger.info("Basic Chat Server starting up...")
        store.open()
        await database.initialize()
        reconcile_task = asyncio.create_task(background_reconcile(coordinator, reconcile_interval))

        yield

        # Shutdown
        reconcile_task.cancel()
        await coordinator.close()
        await store.close()
        logger.info("Basic Chat Server shutting down...")

    app = FastAPI(
        title="Basic Chat Server",
        description="Real-time chat with unique usernames and persistent history",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.database = database
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=CORS_ALLOW_CREDENTIALS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # Mount static files
    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

    @app.get("/login")
    async def login_page(request: Request):
        """Serve the login form"""
        return templates.TemplateResponse(request, "login.html", {"message": ""})

    @app.get("/")
    async def chat_page(request: Request, username: str = ""):
        """Serve the chat page, or send the visitor to the login form"""
        if not username.strip():
            return RedirectResponse(url="/login", status_code=307)
        return templates.TemplateResponse(request, "chat.html", {"username": username.strip()})

    @app.post("/")
    async def login_submit(request: Request, username: str = Form(default="")):
        """Handle the login form"""
        username = username.strip()
        status = await check_username(database, username)
        if status is not UsernameStatus.VALID:
            return templates.TemplateResponse(
                request,
                "login.html",
                {"message": USERNAME_STATUS_MESSAGES[status]},
                status_code=400
            )
        return templates.TemplateResponse(request, "chat.html", {"username": username})

    async def username_report(username: str):
        status = await check_username(database, username.strip())
        if status is UsernameStatus.VALID:
            return {"valid": True}
        return {"valid": False, "message": USERNAME_STATUS_MESSAGES[status]}

    @app.get("/checkUsername")
    async def check_username_query(username: str = ""):
        """Report whether a username can still be claimed"""
        return await username_report(username)

    @app.post("/checkUsername")
    async def check_username_form(username: str = Form(default="")):
        """Same report for a form-encoded or multipart body"""
        return await username_report(username)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "presence": coordinator.stats()
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Real-time endpoint: history on connect, username claims and messages"""
        connection_id = coordinator.new_connection_id()
        client_ip = websocket.client.host if websocket.client else "unknown"

        await websocket.accept()
        log_websocket_event("connection_accepted", connection_id, f"client_ip={client_ip}")

        try:
            await coordinator.on_connect(connection_id, websocket)

            while True:
                raw = await websocket.receive_text()
                log_websocket_event("frame_received", connection_id, f"Data length: {len(raw)}")

                payload = None
                try:
                    payload = parse_client_frame(raw)

                    if payload["type"] == "username":
                        username = await coordinator.on_username_claim(connection_id, payload["username"])
                        coordinator.send_to(connection_id, username_accepted_event(username))
                    else:
                        await coordinator.on_message(connection_id, payload["text"])

                except StorageError as e:
                    logger.error(f"Storage failure for {connection_id}: {e}")
                    failed = "claim_failed" if payload and payload["type"] == "username" else "storage_failed"
                    coordinator.send_to(connection_id, error_event(ERROR_MESSAGES[failed]))
                except ChatError as e:
                    coordinator.send_to(connection_id, error_event(e.message))
                except Exception as e:
                    # Keep serving the connection after an unexpected handler error
                    logger.error(f"Message loop error for {connection_id}: {e}")
                    log_security_event("message_loop_error", {
                        "connection_id": connection_id,
                        "error": str(e)
                    })

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected: {connection_id}")

        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            log_security_event("websocket_error", {
                "connection_id": connection_id,
                "client_ip": client_ip,
                "error": str(e)
            })

        finally:
            await coordinator.on_disconnect(connection_id)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Serve HTTP errors as the error page"""
        logger.info(f"HTTP {exc.status_code} for {request.url.path}")
        return error_page(request, exc.status_code)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log unhandled errors without leaking details"""
        logger.error(f"Unhandled exception: {exc}")
        log_security_event("unhandled_exception", {
            "path": str(request.url),
            "error": str(exc)
        })
        return error_page(request, 500)

    return app


app = create_app()

if __name__ == "__main__":
    logger.info("Starting Basic Chat Server...")

    uvicorn.run(
        "main:app",
        host=HOST,
        port=PORT,
        reload=False,
        log_level="info",
        access_log=True,
        ws_ping_interval=WS_PING_INTERVAL,
        ws_ping_timeout=WS_PING_TIMEOUT,
    )
