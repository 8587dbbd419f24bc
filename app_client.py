# app_client.py
import argparse, base64, getpass, os, sys
from dataclasses import dataclass, field
from typing import Optional

import requests

from opaque_engine import start_registration, start_login, VerificationError

DEFAULT_API = os.getenv("CIPHERDROP_API", "http://localhost:8000")


@dataclass
class Session:
    api: str = DEFAULT_API
    token: Optional[str] = None
    username: Optional[str] = None
    export_key: Optional[bytes] = None
    # keeps the sessionId cookie between login init and finish
    http: requests.Session = field(default_factory=requests.Session)

    @property
    def headers(self):
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}


def _enc(data: bytes) -> str:
    return base64.b64encode(data).decode()


def api_register(sess: Session, username: str, password: str):
    reg = start_registration(password)
    r = sess.http.post(f"{sess.api}/auth/register/init",
                       json={"username": username, "request_b64": _enc(reg.request)})
    r.raise_for_status()
    result = reg.finish(base64.b64decode(r.json()["response_b64"]))

    r = sess.http.post(f"{sess.api}/auth/register/finish",
                       json={"username": username, "record_b64": _enc(result.record)})
    if r.status_code == 409:
        return False, "Username already exists"
    r.raise_for_status()
    return True, "Registered"


def api_login(sess: Session, username: str, password: str) -> str:
    login = start_login(password)
    r = sess.http.post(f"{sess.api}/auth/login/init",
                       json={"username": username, "request_b64": _enc(login.request)})
    r.raise_for_status()
    try:
        result = login.finish(base64.b64decode(r.json()["response_b64"]))
    except VerificationError:
        # The server never learns whether the password was wrong or the user unknown.
        raise RuntimeError("Wrong username or password!")

    r = sess.http.post(f"{sess.api}/auth/login/finish", json={"finish_b64": _enc(result.message)})
    if r.status_code == 401:
        raise RuntimeError("Wrong username or password!")
    if r.status_code == 409:
        # the sessionId cookie did not come back, e.g. a Secure cookie over plain http
        raise RuntimeError("Login session was lost between init and finish, check SESSION_COOKIE_SECURE")
    r.raise_for_status()
    sess.token = r.json()["token"]
    sess.username = username
    sess.export_key = result.export_key
    return sess.token


def api_me(sess: Session) -> dict:
    r = sess.http.get(f"{sess.api}/auth/me", headers=sess.headers)
    r.raise_for_status()
    return r.json()


def main(argv=None):
    ap = argparse.ArgumentParser(description="CipherDrop OPAQUE client")
    ap.add_argument("command", choices=["register", "login"])
    ap.add_argument("username")
    ap.add_argument("--api", default=DEFAULT_API)
    args = ap.parse_args(argv)

    sess = Session(api=args.api)
    password = getpass.getpass("Password: ")
    try:
        if args.command == "register":
            ok, msg = api_register(sess, args.username, password)
            print(msg)
            return 0 if ok else 1
        api_login(sess, args.username, password)
    except (RuntimeError, requests.HTTPError) as e:
        print(e, file=sys.stderr)
        return 1
    print(f"Logged in as {sess.username}")
    print(f"token: {sess.token}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
