"""
Encrypted-computation backends.

The registry never sees plaintext fingerprints or author ids. It holds opaque
handles and relies on a backend for encryption, equality comparison,
access grants and asynchronous decryption of comparison results.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

import requests
import structlog
from pydantic import BaseModel, Field
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from copyright_registry import config
from copyright_registry.core.errors import UnknownDecryptionRequest
from copyright_registry.core.utils import UINT32_MAX

logger = structlog.get_logger()

DecryptionCallback = Callable[[str, bool], None]


class FHEError(Exception):
    """Raised when the encrypted-computation backend fails or rejects a call."""
    pass


class EncryptedType(str, Enum):
    """Encrypted value types used by the registry."""
    EUINT32 = "euint32"
    EBOOL = "ebool"


class EncryptedHandle(BaseModel):
    """Opaque reference to a ciphertext held by the backend."""
    handle_id: str = Field(..., description="Backend identifier of the ciphertext")
    kind: EncryptedType = Field(..., description="Encrypted value type")

    def __str__(self) -> str:
        return self.handle_id


class FHEBackend(ABC):
    """Interface to an encrypted-computation service."""

    name = "abstract"

    def __init__(self):
        self._callbacks: Dict[str, DecryptionCallback] = {}
        self._callback_lock = threading.Lock()

    @abstractmethod
    def encrypt(self, value: int) -> EncryptedHandle:
        """Encrypt an unsigned 32-bit integer."""

    @abstractmethod
    def eq(self, lhs: EncryptedHandle, rhs: EncryptedHandle) -> EncryptedHandle:
        """Return an encrypted boolean handle for ``lhs == rhs``."""

    @abstractmethod
    def allow(self, handle: EncryptedHandle, principal: str) -> None:
        """Grant ``principal`` permission to decrypt ``handle``."""

    @abstractmethod
    def is_allowed(self, handle: EncryptedHandle, principal: str) -> bool:
        """Check whether ``principal`` may decrypt ``handle``."""

    @abstractmethod
    def request_decryption(self, handle: EncryptedHandle, callback: DecryptionCallback) -> str:
        """
        Ask for asynchronous decryption of an encrypted boolean.

        Returns the request id. ``callback(request_id, plaintext)`` is invoked
        when the backend delivers the result; the request is consumed once a
        callback returns without raising.
        """

    @abstractmethod
    def health_check(self) -> Dict[str, Any]:
        """Report backend availability."""

    def _register_callback(self, request_id: str, callback: DecryptionCallback) -> None:
        with self._callback_lock:
            self._callbacks[request_id] = callback

    def deliver(self, request_id: str, plaintext: bool) -> None:
        """Hand a decrypted result to the callback registered for ``request_id``."""
        with self._callback_lock:
            callback = self._callbacks.pop(request_id, None)

        if callback is None:
            logger.warning("Decryption result for unknown request", request_id=request_id)
            raise UnknownDecryptionRequest(f"Unknown decryption request: {request_id}")

        logger.info("Delivering decryption result", backend=self.name, request_id=request_id)
        try:
            callback(request_id, bool(plaintext))
        except Exception as e:
            # Failed deliveries stay redeliverable
            with self._callback_lock:
                self._callbacks.setdefault(request_id, callback)
            logger.warning("Decryption callback failed", backend=self.name, request_id=request_id, error=str(e))
            raise

    def has_pending(self, request_id: str) -> bool:
        with self._callback_lock:
            return request_id in self._callbacks


class MockFHEBackend(FHEBackend):
    """
    In-process backend for tests and local development.

    Plaintexts are kept in a private table keyed by random handle ids.
    Decryption requests queue up until ``deliver_pending()`` is called, or,
    with ``auto_deliver``, are delivered from a background timer after
    ``delivery_delay`` seconds.
    """

    name = "mock"

    def __init__(self, auto_deliver: bool = False, delivery_delay: float = 0.0):
        super().__init__()
        self.auto_deliver = auto_deliver
        self.delivery_delay = delivery_delay
        self._lock = threading.Lock()
        self._plaintexts: Dict[str, Any] = {}
        self._kinds: Dict[str, EncryptedType] = {}
        self._acl: Dict[str, Set[str]] = {}
        self._queue: "OrderedDict[str, str]" = OrderedDict()

    def _new_handle(self, value: Any, kind: EncryptedType) -> EncryptedHandle:
        handle_id = f"0x{uuid.uuid4().hex}"
        with self._lock:
            self._plaintexts[handle_id] = value
            self._kinds[handle_id] = kind
            self._acl[handle_id] = set()
        return EncryptedHandle(handle_id=handle_id, kind=kind)

    def _plaintext(self, handle: EncryptedHandle) -> Any:
        with self._lock:
            if handle.handle_id not in self._plaintexts:
                raise FHEError(f"Unknown handle: {handle.handle_id}")
            return self._plaintexts[handle.handle_id]

    def encrypt(self, value: int) -> EncryptedHandle:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= UINT32_MAX:
            raise FHEError(f"Value out of euint32 range: {value!r}")
        return self._new_handle(value, EncryptedType.EUINT32)

    def eq(self, lhs: EncryptedHandle, rhs: EncryptedHandle) -> EncryptedHandle:
        result = self._plaintext(lhs) == self._plaintext(rhs)
        return self._new_handle(result, EncryptedType.EBOOL)

    def allow(self, handle: EncryptedHandle, principal: str) -> None:
        with self._lock:
            if handle.handle_id not in self._acl:
                raise FHEError(f"Unknown handle: {handle.handle_id}")
            self._acl[handle.handle_id].add(principal.lower())

    def is_allowed(self, handle: EncryptedHandle, principal: str) -> bool:
        with self._lock:
            return principal.lower() in self._acl.get(handle.handle_id, set())

    def user_decrypt(self, handle: EncryptedHandle, principal: str) -> Any:
        """Decrypt for a principal holding an access grant on the handle."""
        if not self.is_allowed(handle, principal):
            raise FHEError(f"{principal} is not allowed to decrypt {handle.handle_id}")
        return self._plaintext(handle)

    def request_decryption(self, handle: EncryptedHandle, callback: DecryptionCallback) -> str:
        if handle.kind != EncryptedType.EBOOL:
            raise FHEError("Only encrypted booleans can be publicly decrypted")
        self._plaintext(handle)

        request_id = uuid.uuid4().hex
        self._register_callback(request_id, callback)
        with self._lock:
            self._queue[request_id] = handle.handle_id

        logger.debug("Queued decryption request", request_id=request_id, auto_deliver=self.auto_deliver)

        if self.auto_deliver:
            timer = threading.Timer(self.delivery_delay, self._deliver_in_background, args=(request_id,))
            timer.daemon = True
            timer.start()

        return request_id

    def deliver(self, request_id: str, plaintext: bool) -> None:
        with self._lock:
            handle_id = self._queue.pop(request_id, None)
        try:
            super().deliver(request_id, plaintext)
        except Exception:
            if handle_id is not None and self.has_pending(request_id):
                with self._lock:
                    self._queue[request_id] = handle_id
                    self._queue.move_to_end(request_id, last=False)
            raise

    def _deliver_queued(self, request_id: str) -> None:
        with self._lock:
            handle_id = self._queue.get(request_id)
            plaintext = self._plaintexts.get(handle_id)
        if handle_id is None:
            raise UnknownDecryptionRequest(f"Unknown decryption request: {request_id}")
        self.deliver(request_id, plaintext)

    def _deliver_in_background(self, request_id: str) -> None:
        try:
            self._deliver_queued(request_id)
        except Exception as e:
            logger.error("Background decryption delivery failed",
                         request_id=request_id, error=str(e), exc_info=True)

    def deliver_pending(self) -> int:
        """Deliver every queued decryption result in request order."""
        with self._lock:
            request_ids = list(self._queue.keys())
        for request_id in request_ids:
            self._deliver_queued(request_id)
        return len(request_ids)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._queue)

    def health_check(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "available": True,
                "backend": self.name,
                "handles": len(self._plaintexts),
                "queued_decryptions": len(self._queue),
            }


class RelayerFHEBackend(FHEBackend):
    """
    Backend talking to an HTTP encrypted-computation gateway.

    Decryption results come back asynchronously: the gateway calls the
    registry's callback endpoint, which hands them to ``deliver()``.
    """

    name = "relayer"

    def __init__(self, base_url: str, callback_url: str, timeout: float = 30,
                 session: Optional[requests.Session] = None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.timeout = timeout
        self.session = session or self._initialize_session()
        logger.info("Relayer FHE backend initialized", endpoint=self.base_url)

    def _initialize_session(self) -> requests.Session:
        """Initialize HTTP session with retry logic."""
        session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=frozenset(["GET", "POST"]),
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _call(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("FHE gateway call failed", method=method, url=url, error=str(e))
            raise FHEError(f"FHE gateway call to {path} failed: {e}") from e

    def encrypt(self, value: int) -> EncryptedHandle:
        data = self._call("POST", "/encrypt", {"value": value, "type": EncryptedType.EUINT32.value})
        return EncryptedHandle(handle_id=data["handle"], kind=EncryptedType.EUINT32)

    def eq(self, lhs: EncryptedHandle, rhs: EncryptedHandle) -> EncryptedHandle:
        data = self._call("POST", "/eq", {"lhs": lhs.handle_id, "rhs": rhs.handle_id})
        return EncryptedHandle(handle_id=data["handle"], kind=EncryptedType.EBOOL)

    def allow(self, handle: EncryptedHandle, principal: str) -> None:
        self._call("POST", "/acl/allow", {"handle": handle.handle_id, "principal": principal})

    def is_allowed(self, handle: EncryptedHandle, principal: str) -> bool:
        data = self._call("GET", f"/acl/{handle.handle_id}/{principal}")
        return bool(data.get("allowed"))

    def request_decryption(self, handle: EncryptedHandle, callback: DecryptionCallback) -> str:
        data = self._call("POST", "/decrypt", {
            "handle": handle.handle_id,
            "callback_url": self.callback_url,
        })
        request_id = str(data["request_id"])
        self._register_callback(request_id, callback)
        logger.info("Decryption requested from gateway", request_id=request_id)
        return request_id

    def health_check(self) -> Dict[str, Any]:
        try:
            data = self._call("GET", "/health")
            return {"available": True, "backend": self.name, "endpoint": self.base_url, "gateway": data}
        except FHEError as e:
            return {"available": False, "backend": self.name, "endpoint": self.base_url, "error": str(e)}


def create_fhe_backend() -> FHEBackend:
    """Build the backend selected by ``FHE_BACKEND``."""
    if config.FHE_BACKEND == "mock":
        return MockFHEBackend(auto_deliver=config.FHE_AUTO_DELIVER)
    if config.FHE_BACKEND == "relayer":
        return RelayerFHEBackend(
            base_url=config.FHE_RELAYER_URL,
            callback_url=config.FHE_CALLBACK_URL,
            timeout=config.FHE_REQUEST_TIMEOUT,
        )
    raise ValueError(f"Unknown FHE backend: {config.FHE_BACKEND}")
