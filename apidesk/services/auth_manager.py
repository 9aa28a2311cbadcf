"""
Auth Manager for apidesk

Holds the local session (token, user, last used email), keeps it in sync
with durable storage and wraps the backend's login, register, logout and
profile calls. Every state transition is delivered to the registered
listeners, the on_auth_state_change hook and the EventBus.
"""

import json
import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from ..core.event_bus import EventBus
from ..core.storage import KeyValueStorage
from .logging_service import LoggingService

# Response keys that may carry the token and the user record
TOKEN_KEYS = ('token', 'access_token', 'authToken')
USER_KEYS = ('user', 'userData', 'data')

AuthListener = Callable[[Dict[str, Any]], Any]

class AuthError(Exception):
    """Raised when an auth call fails"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

class NotAuthenticatedError(AuthError):
    """Raised when an operation needs a session and there is none"""
    pass

class AuthManager:
    """
    Session state holder for the admin runtime.

    The manager is anonymous until init() hydrates it from storage. It is
    authenticated exactly when a token is held; there is no separate flag.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        event_bus: EventBus,
        logger: LoggingService,
        session: Optional[aiohttp.ClientSession] = None,
        session_provider: Optional[Callable[[], aiohttp.ClientSession]] = None,
        *,
        base_url: Optional[str] = None,
        token_key: str = "auth_token",
        user_key: str = "auth_user",
        last_email_key: str = "last_email",
        login_endpoint: str = "/api/auth/login",
        register_endpoint: str = "/api/auth/register",
        logout_endpoint: str = "/api/auth/logout",
        profile_endpoint: str = "/api/users/profile",
        request_timeout: float = 30.0,
        on_auth_state_change: Optional[AuthListener] = None
    ):
        self.storage = storage
        self.event_bus = event_bus
        self.logger = logger.child('AuthManager')

        self.base_url = base_url
        self.token_key = token_key
        self.user_key = user_key
        self.last_email_key = last_email_key
        self.login_endpoint = login_endpoint
        self.register_endpoint = register_endpoint
        self.logout_endpoint = logout_endpoint
        self.profile_endpoint = profile_endpoint
        self.request_timeout = request_timeout
        self.on_auth_state_change = on_auth_state_change

        self._session = session
        self._session_provider = session_provider
        self._owns_session = False

        self._token: Optional[str] = None
        self._user: Any = None
        self._last_email: str = storage.get_item(last_email_key) or ''
        self._listeners: List[AuthListener] = []
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    def init(self) -> None:
        """Hydrate the session from storage and announce the initial state"""
        self.logger.debug("Initializing AuthManager")

        self._token = self.storage.get_item(self.token_key) or None
        self._user = None

        saved_user = self.storage.get_item(self.user_key)
        if saved_user:
            try:
                self._user = json.loads(saved_user)
            except json.JSONDecodeError as e:
                self.logger.error("Error parsing saved user, clearing it", e)
                self.storage.remove_item(self.user_key)

        self._initialized = True

        event: Dict[str, Any] = {'type': 'auth:initialized', 'is_authenticated': self.is_authenticated}
        if self.is_authenticated:
            event['user'] = self._user
        self._notify(event)

        self.logger.info(f"Auth state initialized: {'authenticated' if self.is_authenticated else 'not authenticated'}")

    async def login(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        """
        Log in with the given credentials.

        Args:
            credentials: JSON body for the login endpoint, usually email and password

        Returns:
            Result dict with success, message, user and token

        Raises:
            AuthError: If the backend rejects the credentials or sends no token
        """
        try:
            status, data = await self._request('POST', self.login_endpoint, body=credentials)
            if not 200 <= status < 300:
                raise AuthError(data.get('message') or "Login failed", status)

            self._remember_email(credentials.get('email'))
            return self._handle_auth_response(data)

        except AuthError as e:
            self.logger.error(f"Login error: {e}")
            raise

    async def register(self, user_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register a new account.

        When the backend answers with a token the user is logged in;
        otherwise the raw response is returned under 'data'.

        Raises:
            AuthError: If the backend rejects the registration
        """
        try:
            status, data = await self._request('POST', self.register_endpoint, body=user_data)
            if not 200 <= status < 300:
                raise AuthError(data.get('message') or "Registration failed", status)

            self._remember_email(user_data.get('email'))

            if self._extract_token(data):
                return self._handle_auth_response(data)

            return {'success': True, 'message': "Registration successful", 'data': data}

        except AuthError as e:
            self.logger.error(f"Registration error: {e}")
            raise

    async def logout(self) -> Dict[str, Any]:
        """
        End the session.

        The remote logout call is best effort; the local session is cleared
        whatever it returns.
        """
        if self._token:
            try:
                await self._request('POST', self.logout_endpoint, token=self._token)
            except Exception as e:
                self.logger.warn(f"Error calling logout endpoint: {e}")

        self._clear_auth_data()
        self._notify({'type': 'auth:logout', 'is_authenticated': False})

        return {'success': True, 'message': "Logout successful"}

    async def get_profile(self) -> Dict[str, Any]:
        """
        Fetch the current user's profile and store it.

        A 401 answer, or an error message mentioning "unauthorized", ends
        the session and emits auth:session-expired.

        Raises:
            NotAuthenticatedError: If there is no session
            AuthError: If the profile cannot be fetched
        """
        if not self.is_authenticated:
            raise NotAuthenticatedError("Not authenticated")

        try:
            status, data = await self._request('GET', self.profile_endpoint, token=self._token)
            if not 200 <= status < 300:
                raise AuthError(data.get('message') or "Failed to get profile", status)

        except AuthError as e:
            self.logger.error(f"Get profile error: {e}")
            if e.status == 401 or 'unauthorized' in str(e).lower():
                self._clear_auth_data()
                self._notify({
                    'type': 'auth:session-expired',
                    'is_authenticated': False,
                    'error': "Session expired"
                })
            raise

        self._user = data.get('user') or data
        self.storage.set_item(self.user_key, json.dumps(self._user))

        self._notify({'type': 'auth:profile-updated', 'is_authenticated': True, 'user': self._user})
        return {'success': True, 'user': self._user}

    def check_authenticated(self) -> bool:
        return self.is_authenticated

    def get_token(self) -> Optional[str]:
        return self._token

    def get_user(self) -> Any:
        return self._user

    def get_last_email(self) -> str:
        return self._last_email

    def add_listener(self, listener: AuthListener) -> None:
        if callable(listener) and listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: AuthListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def close(self) -> None:
        """Close the HTTP session if this manager created it"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._owns_session = False

    def _handle_auth_response(self, data: Dict[str, Any]) -> Dict[str, Any]:
        token = self._extract_token(data)
        if not token:
            raise AuthError("No authentication token received")

        user = next((data[key] for key in USER_KEYS if data.get(key)), data)

        self._token = token
        self._user = user
        self.storage.set_item(self.token_key, token)
        self.storage.set_item(self.user_key, json.dumps(user))

        self._notify({'type': 'auth:login', 'is_authenticated': True, 'user': user})

        return {
            'success': True,
            'message': "Authentication successful",
            'user': user,
            'token': token
        }

    def _extract_token(self, data: Dict[str, Any]) -> Optional[str]:
        for key in TOKEN_KEYS:
            if data.get(key):
                return str(data[key])
        return None

    def _remember_email(self, email: Optional[str]) -> None:
        if email:
            self._last_email = email
            self.storage.set_item(self.last_email_key, email)

    def _clear_auth_data(self) -> None:
        # last_email is kept for the next login
        self._token = None
        self._user = None
        self.storage.remove_item(self.token_key)
        self.storage.remove_item(self.user_key)

    def _notify(self, event: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.error(f"Error in auth listener: {e}", e)

        if self.on_auth_state_change is not None:
            try:
                self.on_auth_state_change(event)
            except Exception as e:
                self.logger.error(f"Error in on_auth_state_change callback: {e}", e)

        self.event_bus.emit(event['type'], event)

    def _resolve_url(self, path: str) -> str:
        if path.startswith(('http://', 'https://')):
            return path
        if not self.base_url:
            raise AuthError(f"Cannot call '{path}': base_url is not configured")
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            if self._session_provider is not None:
                self._session = self._session_provider()
                self._owns_session = False
                return self._session

            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None
    ) -> Tuple[int, Dict[str, Any]]:
        url = self._resolve_url(path)
        headers = {'Content-Type': 'application/json'}
        if token:
            headers['Authorization'] = f"Bearer {token}"

        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with session.request(method, url, json=body, headers=headers, timeout=timeout) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = None
                return response.status, data if isinstance(data, dict) else {}

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthError(f"Request to {url} failed: {e}") from e
