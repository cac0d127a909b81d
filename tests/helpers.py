"""
Test doubles and sample data shared by the test modules.
"""
import threading
import time

from receiptflow.errors import StorageError

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def receipt_payload(**overrides) -> dict:
    """A plausible raw extractor payload."""
    data = {
        "merchant_name": "Corner Cafe",
        "amount": 12.5,
        "currency": "EUR",
        "receipt_date": "2024-03-14",
        "category": "Food & Dining",
        "tax_amount": 1.25,
        "payment_method": "Credit Card",
        "confidence_score": 0.95,
        "raw_text": "CORNER CAFE\nCappuccino 3.50\nBagel 9.00\nTOTAL 12.50",
        "document_type": "receipt",
    }
    data.update(overrides)
    return data


class FakeStorage:
    """Hands out ``memory://`` URLs; paths listed in ``missing`` raise StorageError."""

    def __init__(self):
        self.missing: set[str] = set()
        self.requests: list[tuple[str, int]] = []
        self.files: dict[str, bytes] = {}

    def save(self, user_id: str, file_name: str, content: bytes) -> str:
        storage_path = f"{user_id}/{file_name}"
        self.files[storage_path] = content
        return storage_path

    def get_readable_url(self, storage_path: str, ttl_seconds: int) -> str:
        self.requests.append((storage_path, ttl_seconds))
        if storage_path in self.missing:
            raise StorageError(f"Failed to generate readable URL: {storage_path} not found")
        return f"memory://{storage_path}"


class FakeExtractor:
    """Returns ``results[url]`` (raising it if it is an exception), else the default payload."""

    def __init__(self, delay: float = 0.0):
        self.results: dict = {}
        self.default = receipt_payload()
        self.delay = delay
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def set_result(self, storage_path: str, result) -> None:
        self.results[f"memory://{storage_path}"] = result

    def extract(self, document_url: str):
        with self._lock:
            self.calls.append(document_url)
        if self.delay:
            time.sleep(self.delay)
        result = self.results.get(document_url, self.default)
        if isinstance(result, Exception):
            raise result
        return dict(result)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
