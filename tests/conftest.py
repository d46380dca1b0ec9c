"""Shared fixtures: in-memory Google Cloud doubles and a wired test client."""

import copy
import itertools
import os
import uuid
from typing import Any

import httpx
import pytest
from google.api_core.exceptions import AlreadyExists, FailedPrecondition, NotFound

os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")

from fastapi.testclient import TestClient  # noqa: E402

from sitekb.core.firestore import FirestoreClient  # noqa: E402
from sitekb.features.chat.assembler import ResponseAssembler  # noqa: E402
from sitekb.features.chat.memory import ConversationMemory  # noqa: E402
from sitekb.features.chat.retrieval import RetrievalEngine  # noqa: E402
from sitekb.features.chat.service import ChatService, get_chat_service  # noqa: E402
from sitekb.features.documents.processor import DocumentProcessor  # noqa: E402
from sitekb.features.documents.service import DocumentService, get_document_service  # noqa: E402
from sitekb.features.housekeeping.service import (  # noqa: E402
    HousekeepingService,
    get_housekeeping_service,
)
from sitekb.features.ingestion.gateway import IngestionGateway  # noqa: E402
from sitekb.features.ingestion.worker import IngestionWorker, get_ingestion_worker  # noqa: E402
from sitekb.features.resources.registry import ResourceRegistry, get_resource_registry  # noqa: E402
from sitekb.features.resources.service import ResourceService, get_resource_service  # noqa: E402
from sitekb.features.scraper.cache import PageCache  # noqa: E402
from sitekb.features.scraper.crawler import SiteIndexBuilder  # noqa: E402
from sitekb.features.scraper.fetcher import Fetcher  # noqa: E402


# Firestore double
class FakeWriteOption:
    def __init__(self, last_update_time):
        self.last_update_time = last_update_time


class FakeSnapshot:
    def __init__(self, reference: "FakeDocRef", data: dict | None, update_time):
        self.reference = reference
        self.id = reference.id
        self._data = data
        self.update_time = update_time

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict | None:
        return copy.deepcopy(self._data)


class FakeDocRef:
    def __init__(self, db: "FakeFirestoreDB", collection_path: str, doc_id: str):
        self.db = db
        self.id = doc_id
        self.path = f"{collection_path}/{doc_id}"

    def get(self) -> FakeSnapshot:
        data, update_time = self.db.docs.get(self.path, (None, None))
        return FakeSnapshot(self, data, update_time)

    def set(self, data: dict) -> None:
        self.db.write(self.path, copy.deepcopy(data))

    def create(self, data: dict) -> None:
        if self.path in self.db.docs:
            raise AlreadyExists(f"{self.path} already exists")
        self.set(data)

    def update(self, data: dict, option: FakeWriteOption | None = None) -> None:
        if self.db.before_update is not None:
            hook, self.db.before_update = self.db.before_update, None
            hook(self)
        if self.path not in self.db.docs:
            raise NotFound(f"{self.path} not found")
        current, update_time = self.db.docs[self.path]
        if option is not None and option.last_update_time != update_time:
            raise FailedPrecondition(f"{self.path} was modified")
        self.db.write(self.path, {**current, **copy.deepcopy(data)})

    def delete(self) -> None:
        self.db.docs.pop(self.path, None)

    def collection(self, name: str) -> "FakeQuery":
        return FakeQuery(self.db, f"{self.path}/{name}")


class FakeQuery:
    def __init__(self, db, path, filters=(), order=None, max_results=None):
        self.db = db
        self.path = path
        self.filters = list(filters)
        self.order = order
        self.max_results = max_results

    def document(self, doc_id: str | None = None) -> FakeDocRef:
        return FakeDocRef(self.db, self.path, doc_id or uuid.uuid4().hex[:20])

    def where(self, field: str, op: str, value: Any) -> "FakeQuery":
        return FakeQuery(self.db, self.path, self.filters + [(field, op, value)], self.order, self.max_results)

    def order_by(self, field: str, direction: str = "ASCENDING") -> "FakeQuery":
        return FakeQuery(self.db, self.path, self.filters, (field, direction), self.max_results)

    def limit(self, count: int) -> "FakeQuery":
        return FakeQuery(self.db, self.path, self.filters, self.order, count)

    def _matches(self, data: dict) -> bool:
        for field, op, value in self.filters:
            actual = data.get(field)
            if op == "==" and actual != value:
                return False
            if op == "in" and actual not in value:
                return False
            if op == "<" and (actual is None or not actual < value):
                return False
        return True

    def stream(self):
        prefix = f"{self.path}/"
        snapshots = []
        for path, (data, update_time) in list(self.db.docs.items()):
            if not path.startswith(prefix) or "/" in path[len(prefix):]:
                continue
            if self._matches(data):
                ref = FakeDocRef(self.db, self.path, path[len(prefix):])
                snapshots.append(FakeSnapshot(ref, data, update_time))
        if self.order:
            field, direction = self.order
            snapshots.sort(key=lambda s: s._data[field], reverse=direction == "DESCENDING")
        if self.max_results is not None:
            snapshots = snapshots[:self.max_results]
        return iter(snapshots)


class FakeBatch:
    def __init__(self):
        self.refs = []

    def delete(self, ref: FakeDocRef) -> None:
        self.refs.append(ref)

    def commit(self) -> None:
        for ref in self.refs:
            ref.delete()


class FakeFirestoreDB:
    """Just enough of ``google.cloud.firestore.Client`` for FirestoreClient."""

    def __init__(self):
        self.docs: dict[str, tuple[dict, int]] = {}
        self._clock = itertools.count(1)
        # Called once inside the next update(), to simulate a concurrent writer
        self.before_update = None

    def write(self, path: str, data: dict) -> None:
        self.docs[path] = (data, next(self._clock))

    def collection(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def write_option(self, last_update_time=None) -> FakeWriteOption:
        return FakeWriteOption(last_update_time)

    def batch(self) -> FakeBatch:
        return FakeBatch()


# Other collaborators
class FakeQueue:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail_with: Exception | None = None
        self.reachable = True

    async def send(self, message: dict, ordering_key: str = "") -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"message": message, "ordering_key": ordering_key})
        return f"msg-{len(self.sent)}"

    async def ping(self) -> bool:
        if not self.reachable:
            raise ConnectionError("topic unreachable")
        return True


class FakeStorage:
    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.fail_delete = False

    async def upload_file(self, file_content, filename, content_type, tenant_id, folder="documents"):
        path = f"gs://test-bucket/{folder}/{tenant_id}/{uuid.uuid4().hex}-{filename}"
        self.files[path] = file_content
        return path

    async def download_file(self, storage_path: str) -> bytes:
        return self.files[storage_path]

    async def delete_file(self, storage_path: str) -> None:
        if self.fail_delete:
            raise RuntimeError("storage unavailable")
        self.files.pop(storage_path, None)


class FakeGemini:
    def __init__(self):
        self.calls: list[dict] = []
        self.reply = "Here is what I found."
        self.fail_with: Exception | None = None

    async def chat(self, message, system_prompt=None, context=None, history=None, model_id=None):
        self.calls.append({
            "message": message,
            "system_prompt": system_prompt,
            "context": context,
            "history": history,
            "model_id": model_id,
        })
        if self.fail_with is not None:
            raise self.fail_with
        return self.reply


class FakeSite:
    """Serves pages from a dict of path -> (status, body) through httpx.MockTransport."""

    def __init__(self, pages: dict[str, tuple[int, str]], origin: str = "https://example.com"):
        self.origin = origin
        self.pages = pages
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        status, body = self.pages.get(request.url.path, (404, "not found"))
        content_type = "text/plain" if request.url.path.endswith(".txt") else "text/html"
        return httpx.Response(status, text=body, headers={"content-type": content_type})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path: str) -> int:
        return sum(1 for url in self.requests if httpx.URL(url).path == path)


def render_page(title: str, body: str, links=(), description: str = "") -> str:
    anchors = "".join(f'<a href="{href}">link</a>' for href in links)
    meta = f'<meta name="description" content="{description}">' if description else ""
    return (
        f"<html><head><title>{title}</title>{meta}</head>"
        f"<body><main><p>{body}</p>{anchors}</main></body></html>"
    )


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def fake_db():
    FirestoreClient._instance = None
    client = FirestoreClient()
    client._db = FakeFirestoreDB()
    yield client._db
    FirestoreClient._instance = None


@pytest.fixture
def firestore(fake_db) -> FirestoreClient:
    return FirestoreClient()


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture
def site() -> FakeSite:
    return FakeSite({})


@pytest.fixture
def fetcher(site) -> Fetcher:
    return Fetcher(
        timeout=5.0,
        max_attempts=3,
        retry_delay=1.0,
        forbidden_cooldown=5.0,
        transport=site.transport,
        sleep=no_sleep,
    )


@pytest.fixture
def cache(firestore) -> PageCache:
    return PageCache(firestore)


@pytest.fixture
def registry(firestore, storage) -> ResourceRegistry:
    return ResourceRegistry(firestore, storage)


@pytest.fixture
def gateway(registry, queue) -> IngestionGateway:
    return IngestionGateway(registry, queue)


@pytest.fixture
def builder(fetcher, cache, firestore) -> SiteIndexBuilder:
    from sitekb.features.scraper.sitemap import SiteIndexStore

    return SiteIndexBuilder(
        fetcher=fetcher,
        cache=cache,
        store=SiteIndexStore(firestore),
        politeness_delay=0,
        sleep=no_sleep,
    )


@pytest.fixture
def resource_service(registry, gateway, storage) -> ResourceService:
    return ResourceService(registry, gateway, storage)


@pytest.fixture
def document_service(firestore, storage, gateway) -> DocumentService:
    return DocumentService(firestore, storage, gateway, DocumentProcessor())


@pytest.fixture
def worker(registry, document_service, builder) -> IngestionWorker:
    return IngestionWorker(registry, document_service, builder)


@pytest.fixture
def retrieval(firestore, cache, fetcher) -> RetrievalEngine:
    return RetrievalEngine(firestore, cache, fetcher)


@pytest.fixture
def chat_service(retrieval, gemini, firestore) -> ChatService:
    return ChatService(retrieval, ResponseAssembler(gemini), ConversationMemory(firestore))


@pytest.fixture
def housekeeping(
    firestore, registry, resource_service, document_service, cache
) -> HousekeepingService:
    return HousekeepingService(firestore, registry, resource_service, document_service, cache)


@pytest.fixture
def client(
    registry, resource_service, document_service, chat_service, housekeeping, worker
):
    """Test client with every service wired to the in-memory doubles."""
    from sitekb.main import app
    from sitekb.worker_main import app as worker_app

    overrides = {
        get_resource_registry: lambda: registry,
        get_resource_service: lambda: resource_service,
        get_document_service: lambda: document_service,
        get_chat_service: lambda: chat_service,
        get_housekeeping_service: lambda: housekeeping,
        get_ingestion_worker: lambda: worker,
    }
    app.dependency_overrides.update(overrides)
    worker_app.dependency_overrides.update(overrides)
    yield TestClient(app)
    app.dependency_overrides.clear()
    worker_app.dependency_overrides.clear()


@pytest.fixture
def worker_client(client):
    from sitekb.worker_main import app as worker_app

    return TestClient(worker_app)


@pytest.fixture
def tenant_headers() -> dict[str, str]:
    return {"X-Tenant-Id": "tenant-a", "X-User-Id": "user-1"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": os.environ["ADMIN_API_TOKEN"]}


@pytest.fixture
def sample_site(site) -> FakeSite:
    """A three-page site: home linking to about and pricing."""
    site.pages.update({
        "/": (200, render_page(
            "Acme Widgets",
            "Acme builds industrial widgets for factories.",
            links=["/about", "/pricing"],
            description="Industrial widgets",
        )),
        "/about": (200, render_page(
            "About Acme",
            "Founded in 1999, Acme has a team of forty engineers.",
            links=["/"],
        )),
        "/pricing": (200, render_page(
            "Pricing",
            "Our pricing plans start at 10 dollars per month. Enterprise plans include support.",
            links=["/"],
        )),
    })
    return site


@pytest.fixture
def html_page():
    return render_page
