import logging
import os
import threading
import time
from typing import Callable, List, Optional

import requests
from dotenv import load_dotenv

from core.models import User

load_dotenv()

logger = logging.getLogger(__name__)

FIREBASE_API_KEY = os.getenv("FIREBASE_API_KEY")

IDENTITY_URL = "https://identitytoolkit.googleapis.com/v1"
TIMEOUT = 15

ERROR_MESSAGES = {
    "EMAIL_NOT_FOUND": "No account found with this email",
    "INVALID_PASSWORD": "Incorrect password",
    "EMAIL_EXISTS": "Email is already in use",
    "WEAK_PASSWORD": "Password is too weak",
    "INVALID_EMAIL": "Invalid email address",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many failed attempts. Please try again later",
}
DEFAULT_ERROR = "An error occurred during authentication"

AuthListener = Callable[[Optional[User]], None]


class AuthError(Exception):
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


def _error_from_response(resp: requests.Response) -> AuthError:
    try:
        code = resp.json().get("error", {}).get("message", "")
    except ValueError:
        code = ""
    # e.g. "WEAK_PASSWORD : Password should be at least 6 characters"
    code = code.split(" ")[0]
    return AuthError(ERROR_MESSAGES.get(code, DEFAULT_ERROR), code or None)


def _user_from_payload(data: dict) -> User:
    return User(
        uid=data.get("localId", ""),
        email=data.get("email") or "",
        display_name=data.get("displayName") or None,
        photo_url=data.get("photoUrl") or None,
    )


class IdentityProvider:
    """
    Email/password accounts through the Firebase Auth REST API.
    Holds one signed-in session and notifies listeners on every change.
    """

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or FIREBASE_API_KEY
        self._lock = threading.Lock()
        self._user: Optional[User] = None
        self._id_token: Optional[str] = None
        self._token_expiry = 0.0
        self._listeners: List[AuthListener] = []

    def _post(self, endpoint: str, payload: dict) -> dict:
        if not self.api_key:
            raise AuthError("Identity provider is not configured")
        try:
            resp = requests.post(
                f"{IDENTITY_URL}/accounts:{endpoint}",
                params={"key": self.api_key},
                json=payload,
                timeout=TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error("Identity provider unreachable: %s", e)
            raise AuthError(DEFAULT_ERROR) from e

        if not resp.ok:
            raise _error_from_response(resp)
        return resp.json()

    # --------------------------------------------------
    # SESSION
    # --------------------------------------------------
    @property
    def current_user(self) -> Optional[User]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def id_token(self) -> Optional[str]:
        # Reuse token while still valid
        if self._id_token and time.time() < self._token_expiry:
            return self._id_token
        return None

    def _start_session(self, data: dict) -> User:
        user = _user_from_payload(data)
        with self._lock:
            self._user = user
            self._id_token = data.get("idToken")
            self._token_expiry = time.time() + int(data.get("expiresIn", 3600)) - 300
        self._emit(user)
        return user

    def sign_in(self, email: str, password: str) -> User:
        data = self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._start_session(data)

    def sign_up(self, email: str, password: str) -> User:
        data = self._post(
            "signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._start_session(data)

    def sign_out(self) -> None:
        with self._lock:
            self._user = None
            self._id_token = None
            self._token_expiry = 0.0
        self._emit(None)

    def verify_token(self, id_token: str) -> User:
        data = self._post("lookup", {"idToken": id_token})
        users = data.get("users") or []
        if not users:
            raise AuthError("Invalid or expired session", "INVALID_ID_TOKEN")
        return _user_from_payload(users[0])

    # --------------------------------------------------
    # LISTENERS
    # --------------------------------------------------
    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._user)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, user: Optional[User]) -> None:
        for listener in list(self._listeners):
            listener(user)
