import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, EmailStr
from starlette.concurrency import run_in_threadpool

import database
from auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    SESSION_COOKIE,
    AuthContext,
    context_for_token,
    create_access_token,
    get_auth_context,
    get_password_hash,
    get_store,
    session_gate,
    token_from_websocket,
    verify_password,
)
from connections import ConnectionService
from conversations import ConversationAggregator
from database import DocumentStore
from errors import HackMateError, ValidationFailure
from messaging import MessageStream
from profiles import ProfileService, needs_onboarding, to_public
from schemas import (
    ConnectionOut,
    ConnectionRequest,
    ConnectionStatusUpdate,
    ConversationSummary,
    DiscoverFilters,
    MessageOut,
    ProfileUpdate,
    SendMessageRequest,
    UserOut,
)
from storage import BlobStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ENFORCE_UNIQUE_ACTIVE_CONNECTIONS = os.getenv("ENFORCE_UNIQUE_ACTIVE_CONNECTIONS", "0") == "1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.store is not None:
        database.store.ensure_indexes(enforce_unique_active=ENFORCE_UNIQUE_ACTIVE_CONNECTIONS)
        logger.info("HackMate API started on database %s", database.store.name)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, API will answer 500")
    yield


app = FastAPI(title="HackMate API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(session_gate)


@app.exception_handler(HackMateError)
async def hackmate_error_handler(request: Request, exc: HackMateError):
    logger.info("%s on %s: %s", exc.kind, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "kind": exc.kind})


@app.get("/")
def read_root():
    return {"message": "HackMate API running"}


# ---------- Auth Endpoints ----------
class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    needsOnboarding: bool = False


def start_session(response: Response, user: dict) -> Token:
    access_token = create_access_token({"sub": user["id"]})
    response.set_cookie(
        SESSION_COOKIE,
        access_token,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="lax",
    )
    return Token(access_token=access_token, needsOnboarding=needs_onboarding(user))


@app.post("/api/auth/register", response_model=Token)
def register(payload: RegisterRequest, response: Response, store: DocumentStore = Depends(get_store)):
    profiles = ProfileService(store)
    if profiles.get_by_email(payload.email):
        raise HTTPException(status_code=400, detail="User already exists")
    if len(payload.name.strip()) < 2:
        raise ValidationFailure("Name must be at least 2 characters")

    user = profiles.create_stub(payload.name.strip(), payload.email, get_password_hash(payload.password))
    return start_session(response, user)


@app.post("/api/auth/login", response_model=Token)
def login(payload: LoginRequest, response: Response, store: DocumentStore = Depends(get_store)):
    user = ProfileService(store).get_by_email(payload.email)
    if not user or not verify_password(payload.password, user.get("password") or ""):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return start_session(response, user)


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return {"status": "signed_out"}


class MeOut(UserOut):
    needsOnboarding: bool = False


@app.get("/api/auth/me", response_model=MeOut)
def me(ctx: AuthContext = Depends(get_auth_context)):
    return MeOut(**to_public(ctx.profile).model_dump(), needsOnboarding=ctx.needs_onboarding)


# ---------- Users ----------
@app.get("/api/users", response_model=List[UserOut])
def discover_users(
    filters: DiscoverFilters = Depends(),
    ctx: AuthContext = Depends(get_auth_context),
    store: DocumentStore = Depends(get_store),
):
    return [to_public(u) for u in ProfileService(store).discover(ctx.user_id, filters)]


@app.get("/api/users/{user_id}", response_model=UserOut)
def get_user(user_id: str, ctx: AuthContext = Depends(get_auth_context), store: DocumentStore = Depends(get_store)):
    user = ProfileService(store).get_profile(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return to_public(user)


@app.put("/api/profile", response_model=UserOut)
def update_profile(payload: ProfileUpdate, ctx: AuthContext = Depends(get_auth_context), store: DocumentStore = Depends(get_store)):
    return to_public(ProfileService(store).update_profile(ctx.user_id, payload))


@app.post("/api/profile/photo")
async def upload_photo(
    photo: UploadFile = File(...),
    ctx: AuthContext = Depends(get_auth_context),
    store: DocumentStore = Depends(get_store),
):
    data = await photo.read()
    url = await run_in_threadpool(BlobStore(store.database).upload_profile_photo, ctx.user_id, photo.content_type, data)
    await run_in_threadpool(ProfileService(store).set_photo, ctx.user_id, url)
    return {"photoUrl": url}


@app.get("/api/photos/{user_id}")
def get_photo(user_id: str, store: DocumentStore = Depends(get_store)):
    found = BlobStore(store.database).open_profile_photo(user_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Photo not found")
    data, content_type = found
    return StreamingResponse(iter([data]), media_type=content_type)


# ---------- Messages ----------
@app.get("/api/messages/{user_id}", response_model=List[MessageOut])
def get_messages(user_id: str, ctx: AuthContext = Depends(get_auth_context), store: DocumentStore = Depends(get_store)):
    return MessageStream(store).history(ctx.user_id, user_id)


@app.post("/api/messages", response_model=MessageOut)
def send_message(payload: SendMessageRequest, ctx: AuthContext = Depends(get_auth_context), store: DocumentStore = Depends(get_store)):
    return MessageStream(store).send(ctx.user_id, payload.receiverId, payload.content)


@app.get("/api/conversations", response_model=List[ConversationSummary])
def get_conversations(ctx: AuthContext = Depends(get_auth_context), store: DocumentStore = Depends(get_store)):
    return list(ConversationAggregator(store).snapshot(ctx.user_id).values())


# ---------- Team connections ----------
@app.post("/api/connections", response_model=ConnectionOut)
def request_connection(payload: ConnectionRequest, ctx: AuthContext = Depends(get_auth_context), store: DocumentStore = Depends(get_store)):
    return ConnectionService(store).request(ctx.user_id, payload.toUserId, payload.message)


@app.get("/api/connections", response_model=List[ConnectionOut])
def list_connections(
    direction: str = "incoming",
    status: Optional[str] = None,
    ctx: AuthContext = Depends(get_auth_context),
    store: DocumentStore = Depends(get_store),
):
    return ConnectionService(store).list_for(ctx.user_id, direction, status)


@app.get("/api/connections/active/{user_id}")
def check_active_connection(user_id: str, ctx: AuthContext = Depends(get_auth_context), store: DocumentStore = Depends(get_store)):
    return {"active": ConnectionService(store).check_active(ctx.user_id, user_id)}


@app.post("/api/connections/{connection_id}/status", response_model=ConnectionOut)
def update_connection_status(
    connection_id: str,
    payload: ConnectionStatusUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    store: DocumentStore = Depends(get_store),
):
    return ConnectionService(store).respond(ctx.user_id, connection_id, payload.status)


# ---------- Live streams ----------
async def _pump(websocket: WebSocket, queue: asyncio.Queue):
    while True:
        item = await queue.get()
        await websocket.send_json(item)
        if item["type"] == "error":
            await websocket.close(code=1011)
            return


async def _receive(websocket: WebSocket, on_message):
    try:
        while True:
            text = await websocket.receive_text()
            try:
                data = json.loads(text)
            except ValueError:
                await websocket.send_json(
                    {"type": "notice", "kind": ValidationFailure.kind, "detail": "Frames must be JSON"}
                )
                continue
            if on_message is not None:
                await on_message(data)
    except WebSocketDisconnect:
        return


async def run_stream(websocket: WebSocket, subscribe, encode, on_message=None):
    """
    Push every snapshot of a subscription to the socket until either side ends.

    The subscription is always released when the socket goes away.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def push(item):
        loop.call_soon_threadsafe(queue.put_nowait, item)

    def on_snapshot(snapshot):
        push({"type": "snapshot", "data": jsonable_encoder(encode(snapshot))})

    def on_error(err):
        push({"type": "error", "kind": err.kind, "detail": err.detail})

    sub = await run_in_threadpool(subscribe, on_snapshot, on_error)
    receiver = asyncio.create_task(_receive(websocket, on_message))
    pump = asyncio.create_task(_pump(websocket, queue))
    try:
        done, _ = await asyncio.wait({receiver, pump}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("Live stream for %s failed", websocket.url.path, exc_info=task.exception())
    finally:
        sub.unsubscribe()
        receiver.cancel()
        pump.cancel()


async def _accept(websocket: WebSocket, store: DocumentStore) -> Optional[AuthContext]:
    ctx = await run_in_threadpool(context_for_token, store, token_from_websocket(websocket))
    if ctx is None:
        await websocket.close(code=4401)
        return None
    await websocket.accept()
    return ctx


@app.websocket("/ws/chats/{user_id}")
async def chat_stream(websocket: WebSocket, user_id: str, store: DocumentStore = Depends(get_store)):
    ctx = await _accept(websocket, store)
    if ctx is None:
        return
    stream = MessageStream(store)

    async def on_message(data):
        content = data.get("content") if isinstance(data, dict) else None
        try:
            await run_in_threadpool(stream.send, ctx.user_id, user_id, content)
        except HackMateError as e:
            await websocket.send_json({"type": "notice", "kind": e.kind, "detail": e.detail})

    def encode(messages):
        return [MessageOut(**m) for m in messages]

    await run_stream(
        websocket,
        lambda on_snapshot, on_error: stream.subscribe(ctx.user_id, user_id, on_snapshot, on_error),
        encode,
        on_message,
    )


@app.websocket("/ws/conversations")
async def conversations_stream(websocket: WebSocket, store: DocumentStore = Depends(get_store)):
    ctx = await _accept(websocket, store)
    if ctx is None:
        return
    aggregator = ConversationAggregator(store)
    await run_stream(
        websocket,
        lambda on_snapshot, on_error: aggregator.subscribe(ctx.user_id, on_snapshot, on_error),
        lambda conversations: list(conversations.values()),
    )


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "live_subscriptions": 0,
    }
    try:
        if database.store is not None:
            response["database"] = "✅ Available"
            response["database_name"] = database.store.name or "✅ Connected"
            response["connection_status"] = "Connected"
            response["live_subscriptions"] = database.store.hub.count()
            try:
                collections = database.store.database.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
