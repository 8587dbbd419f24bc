# server.py
import os, base64, binascii, logging, time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Header
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import Column, String, Integer, LargeBinary, DateTime, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
import jwt

from dotenv import load_dotenv
load_dotenv()

from apake import (OpaqueApake, HandshakeCoordinator, InvalidSessionStateError, Session,
                   MemorySessionStore, cookie_secure_from_env, get_handshake, get_registration,
                   get_session, use_sessions, state_source_from_env)
from opaque_engine import MessageError, VerificationError

logger = logging.getLogger("cipherdrop.server")

JWT_SECRET = os.getenv("JWT_SECRET","dev-secret-change-me")

if JWT_SECRET == "dev-secret-change-me":
    logger.warning("!!! SERVER IS USING THE DEFAULT DEV SECRET !!!")

JWT_ISS = "cipherdrop"
DB_URL = os.getenv("DB_URL", "sqlite:///./opaque_users.db")
USERNAME_KEY = "cipherdrop::login-username"

engine = create_engine(DB_URL, connect_args={"check_same_thread": False} if DB_URL.startswith("sqlite") else {})
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()

def _now():
    return datetime.now(timezone.utc).replace(tzinfo=None)

class User(Base):
    __tablename__="users"
    id = Column(Integer, primary_key=True)
    username = Column(String(50), unique=True, nullable=False)
    # OPAQUE credentials; the server never sees the password or a hash of it
    credentials = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=_now)

Base.metadata.create_all(engine)

if os.getenv("OPAQUE_STATE_FILE") or os.getenv("OPAQUE_STATE_B64"):
    opaque = OpaqueApake(state_source_from_env())
else:
    opaque = OpaqueApake(state_file="./opaque_state.bin")
app = FastAPI(title="CipherDrop OPAQUE", version="3.0", lifespan=opaque.lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
)
# set SESSION_COOKIE_SECURE=1 when served over https
use_sessions(app, MemorySessionStore(cookie_secure=cookie_secure_from_env()))

# --- Auth helpers ---
def issue_token(user: User) -> str:
    now = int(time.time())
    payload = {
        "sub": user.username, "uid": user.id, "iss": JWT_ISS,
        "iat": now, "exp": now + 8*3600
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def get_user_from_token(token: str) -> User:
    try:
        data = jwt.decode(token, JWT_SECRET, algorithms=["HS256"], issuer=JWT_ISS)
    except jwt.InvalidTokenError:
        raise HTTPException(401, "invalid token")
    with SessionLocal() as db:
        u = db.get(User, data["uid"])
        if not u: raise HTTPException(401, "user not found")
        return u

def bearer(authorization: Optional[str]=Header(None)) -> User:
    # Accept "Authorization: Bearer <token>"
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(401, "missing bearer")
    return get_user_from_token(authorization.split(" ",1)[1])

def _b64(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except binascii.Error:
        raise HTTPException(400, "invalid base64")

def _enc(data: bytes) -> str:
    return base64.b64encode(data).decode()

# --- Schemas ---
class RegisterInitReq(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    request_b64: str

class RegisterFinishReq(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    record_b64: str

class LoginInitReq(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    request_b64: str

class LoginFinishReq(BaseModel):
    finish_b64: str

class ResponseB64(BaseModel):
    response_b64: str

class TokenResp(BaseModel):
    token: str
    username: str

# --- Routes: auth ---
@app.post("/auth/register/init", response_model=ResponseB64)
def register_init(body: RegisterInitReq, opq: HandshakeCoordinator = Depends(get_registration)):
    try:
        response = opq.start_registration(body.username, _b64(body.request_b64))
    except MessageError as e:
        raise HTTPException(400, str(e))
    return ResponseB64(response_b64=_enc(response))

@app.post("/auth/register/finish")
def register_finish(body: RegisterFinishReq, opq: HandshakeCoordinator = Depends(get_registration)):
    try:
        credentials = opq.finish_registration(_b64(body.record_b64))
    except MessageError as e:
        raise HTTPException(400, str(e))
    with SessionLocal() as db:
        db.add(User(username=body.username, credentials=credentials))
        try:
            db.commit()
        except IntegrityError:
            # unique username, also covers two registrations racing for one name
            db.rollback()
            raise HTTPException(409, "username exists")
    logger.info("registered %s", body.username)
    return {"ok": True}

@app.post("/auth/login/init", response_model=ResponseB64)
def login_init(body: LoginInitReq,
               opq: HandshakeCoordinator = Depends(get_handshake),
               session: Session = Depends(get_session)):
    with SessionLocal() as db:
        u = db.query(User).filter_by(username=body.username).first()
        record = bytes(u.credentials) if u else None
    try:
        # unknown users still get a well-formed response
        response = opq.start_login(body.username, _b64(body.request_b64), record)
    except MessageError as e:
        raise HTTPException(400, str(e))
    session.set(USERNAME_KEY, body.username)
    return ResponseB64(response_b64=_enc(response))

@app.post("/auth/login/finish", response_model=TokenResp)
def login_finish(body: LoginFinishReq,
                 opq: HandshakeCoordinator = Depends(get_handshake),
                 session: Session = Depends(get_session)):
    username = session.pop(USERNAME_KEY)
    try:
        opq.finish_login(_b64(body.finish_b64))
    except InvalidSessionStateError:
        raise HTTPException(409, "no login in progress")
    except MessageError as e:
        raise HTTPException(400, str(e))
    except VerificationError:
        raise HTTPException(401, "bad credentials")
    with SessionLocal() as db:
        u = db.query(User).filter_by(username=username).first()
        if not u: raise HTTPException(401, "bad credentials")
        return TokenResp(token=issue_token(u), username=u.username)

@app.get("/auth/me")
def me(user: User = Depends(bearer)):
    return {"username": user.username, "created_at": user.created_at.isoformat()}

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    uvicorn.run(app, host="0.0.0.0", port=8000)
