# tests/conftest.py
"""
Pytest fixtures for the Frontbase backend tests.

Nothing here touches the network: GitHub, the Cloudflare KV API and the
OAuth token endpoint are served by FakeUpstream through httpx's
MockTransport, and object storage is an in-memory dict.
"""

import base64
import hashlib
import json
import re
import zipfile
from pathlib import Path

import httpx
import pytest
from nacl.public import PrivateKey, SealedBox
from sqlalchemy import create_engine as create_sync_engine
from sqlalchemy.pool import NullPool

from frontbase.auth import create_access_token, create_repo_token
from frontbase.database import create_engine, create_session_factory
from frontbase.main import create_app
from frontbase.models import Base, User
from frontbase.services.container import build_services
from frontbase.services.domain_mapper import DomainMapper
from frontbase.services.polling import PollPolicy

OWNER = "acme"
REPO = "site"
REPO_ID = 777001
WORKFLOW_ID = 4242
GITHUB_USER_ID = 9001


def make_run(run_id: int, status: str, conclusion: str | None = None) -> dict:
    return {
        "id": run_id,
        "status": status,
        "conclusion": conclusion,
        "html_url": f"https://github.com/{OWNER}/{REPO}/actions/runs/{run_id}",
        "run_started_at": "2026-10-01T12:00:00Z",
        "updated_at": "2026-10-01T12:02:00Z",
    }


def make_zip(path: Path, files: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return path


class FakeUpstream:
    """
    Just enough of api.github.com, github.com OAuth and the Cloudflare KV
    API for the deployment pipeline.

    Knobs:
      workflow_hidden_for  number of workflow-list calls that omit our workflow
      runs                 successive answers of the latest-run endpoint; the
                           last one keeps being returned
      failures             {(method, path): status} forced error responses
    """

    def __init__(self):
        self.private_key = PrivateKey.generate()
        self.user = {
            "id": GITHUB_USER_ID,
            "login": OWNER,
            "name": "Acme Corp",
            "avatar_url": "https://avatars.example/acme.png",
            "html_url": f"https://github.com/{OWNER}",
            "email": None,
        }
        self.repos: dict[tuple[str, str], dict] = {}
        self.files: dict[str, dict] = {}
        self.secrets: dict[str, dict] = {}
        self.kv: dict[str, str] = {}
        self.workflow_hidden_for = 0
        self.workflow_list_calls = 0
        self.workflow_created = False
        self.runs: list[dict] = []
        self.latest_run_calls = 0
        self.run_by_id: dict[int, dict] = {}
        self.dispatches: list[dict] = []
        self.requests: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], int] = {}

    def add_repo(self, owner=OWNER, name=REPO, repo_id=REPO_ID, push=True, default_branch="main"):
        self.repos[(owner, name)] = {
            "id": repo_id,
            "name": name,
            "full_name": f"{owner}/{name}",
            "owner": {"login": owner},
            "private": False,
            "html_url": f"https://github.com/{owner}/{name}",
            "description": "A static site",
            "default_branch": default_branch,
            "updated_at": "2026-10-01T10:00:00Z",
            "permissions": {"admin": False, "push": push, "pull": True},
        }

    @property
    def mutating_requests(self) -> list[tuple[str, str]]:
        return [
            (method, path)
            for method, path in self.requests
            if method in ("PUT", "POST", "PATCH", "DELETE") and not path.startswith("/client/v4")
        ]

    def secret_plaintext(self, name: str) -> str:
        sealed = base64.b64decode(self.secrets[name]["encrypted_value"])
        return SealedBox(self.private_key).decrypt(sealed).decode("utf-8")

    # --- transport ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))
        if (method, path) in self.failures:
            return httpx.Response(self.failures[(method, path)], json={"message": "Forced failure"})

        host = request.url.host
        if host == "api.cloudflare.com":
            return self._cloudflare(request)
        if host == "github.com" and path == "/login/oauth/access_token":
            return httpx.Response(200, json={"access_token": "gho_fresh", "token_type": "bearer"})
        return self._github(request)

    def _cloudflare(self, request: httpx.Request) -> httpx.Response:
        match = re.fullmatch(r"/client/v4/accounts/[^/]+/storage/kv/namespaces/[^/]+/values/(.+)", request.url.path)
        if request.method == "PUT" and match:
            self.kv[match.group(1)] = request.content.decode("utf-8")
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404, json={"success": False})

    def _github(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path

        if path == "/user":
            return httpx.Response(200, json=self.user)
        if path == "/user/emails":
            return httpx.Response(200, json=[{"email": "ops@acme.test", "primary": True}])
        if path == "/user/repos":
            return httpx.Response(200, json=list(self.repos.values()))

        match = re.fullmatch(r"/repositories/(\d+)", path)
        if match:
            for repo in self.repos.values():
                if repo["id"] == int(match.group(1)):
                    return httpx.Response(200, json=repo)
            return httpx.Response(404, json={"message": "Not Found"})

        match = re.fullmatch(r"/repos/([^/]+)/([^/]+)(/.*)?", path)
        if not match:
            return httpx.Response(404, json={"message": "Not Found"})
        owner, name, rest = match.group(1), match.group(2), match.group(3) or ""
        repo = self.repos.get((owner, name))
        if repo is None:
            return httpx.Response(404, json={"message": "Not Found"})

        if rest == "":
            return httpx.Response(200, json=repo)
        if rest == "/commits":
            return httpx.Response(
                200,
                json=[
                    {
                        "sha": "abc123",
                        "html_url": f"https://github.com/{owner}/{name}/commit/abc123",
                        "commit": {
                            "message": "Initial commit",
                            "author": {"name": "Acme", "date": "2026-10-01T09:00:00Z"},
                        },
                    }
                ],
            )

        if rest.startswith("/contents/"):
            return self._contents(method, rest[len("/contents/"):], request)

        if rest == "/actions/secrets/public-key":
            key = base64.b64encode(bytes(self.private_key.public_key)).decode("ascii")
            return httpx.Response(200, json={"key_id": "key-1", "key": key})
        match = re.fullmatch(r"/actions/secrets/([^/]+)", rest)
        if match and method == "PUT":
            self.secrets[match.group(1)] = json.loads(request.content)
            return httpx.Response(201)

        if rest == "/actions/workflows":
            self.workflow_list_calls += 1
            workflows = [{"id": 1, "path": ".github/workflows/ci.yml", "name": "CI"}]
            if self.workflow_created and self.workflow_list_calls > self.workflow_hidden_for:
                workflows.append(
                    {"id": WORKFLOW_ID, "path": ".github/workflows/deploy.yml", "name": "Frontbase Deploy"}
                )
            return httpx.Response(200, json={"total_count": len(workflows), "workflows": workflows})

        match = re.fullmatch(r"/actions/workflows/(\d+)/dispatches", rest)
        if match and method == "POST":
            body = json.loads(request.content)
            self.dispatches.append({"workflow_id": int(match.group(1)), "ref": body["ref"]})
            return httpx.Response(204)

        match = re.fullmatch(r"/actions/workflows/(\d+)/runs", rest)
        if match:
            self.latest_run_calls += 1
            if not self.runs:
                return httpx.Response(200, json={"total_count": 0, "workflow_runs": []})
            run = self.runs.pop(0) if len(self.runs) > 1 else self.runs[0]
            self.run_by_id[run["id"]] = run
            return httpx.Response(200, json={"total_count": 1, "workflow_runs": [run]})

        match = re.fullmatch(r"/actions/runs/(\d+)", rest)
        if match:
            run = self.run_by_id.get(int(match.group(1)))
            if run is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=run)

        return httpx.Response(404, json={"message": "Not Found"})

    def _contents(self, method: str, file_path: str, request: httpx.Request) -> httpx.Response:
        if method == "GET":
            entry = self.files.get(file_path)
            if entry is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=entry)
        if method == "PUT":
            body = json.loads(request.content)
            existing = self.files.get(file_path)
            if existing is not None and body.get("sha") != existing["sha"]:
                return httpx.Response(409, json={"message": "sha does not match"})
            if existing is None and "sha" in body:
                return httpx.Response(422, json={"message": "sha given for a new file"})
            content = base64.b64decode(body["content"]).decode("utf-8")
            self.files[file_path] = {
                "path": file_path,
                "sha": hashlib.sha1(content.encode("utf-8")).hexdigest(),
                "content": body["content"],
                "decoded": content,
                "message": body["message"],
            }
            if file_path == ".github/workflows/deploy.yml":
                self.workflow_created = True
            return httpx.Response(201 if existing is None else 200, json={"content": self.files[file_path]})
        return httpx.Response(405, json={"message": "Method not allowed"})


class FakeStorage:
    def __init__(self):
        self.objects: dict[str, bytes] = {}

    async def upload_file(self, path: str, key: str) -> None:
        self.objects[key] = Path(path).read_bytes()


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns immediately and remembers each delay."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
async def session_factory(tmp_path):
    """A throw-away SQLite database file per test, schema created from the models."""
    db_path = tmp_path / "frontbase-test.db"
    sync_engine = create_sync_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def upstream() -> FakeUpstream:
    fake = FakeUpstream()
    fake.add_repo()
    return fake


@pytest.fixture
async def http(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as client:
        yield client


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def services(session_factory, http, storage, sleep, tmp_path):
    services = build_services(
        session_factory,
        http=http,
        storage=storage,
        domain_mapper=DomainMapper(http, "account-1", "namespace-1", "ops@acme.test", "cf-key"),
        discovery_policy=PollPolicy(max_attempts=5, delay=3.0),
        monitor_policy=PollPolicy(max_attempts=20, delay=5.0),
        sleep=sleep,
        upload_dir=str(tmp_path / "uploads"),
    )
    yield services
    await services.supervisor.shutdown()


@pytest.fixture
async def user(session) -> User:
    user = User(
        github_id=GITHUB_USER_ID,
        handle=OWNER,
        display_name="Acme Corp",
        email="ops@acme.test",
        access_token="gho_test",
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
def auth_headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def repo_headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_repo_token(user.id, REPO_ID)}"}


@pytest.fixture
def app(session_factory, services):
    """The FastAPI app wired to the test database and fakes (lifespan not run)."""
    app = create_app()
    app.state.session_factory = session_factory
    app.state.services = services
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
