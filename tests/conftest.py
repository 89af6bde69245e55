"""
Shared fixtures for the DockUp Agent test suite.

Provides:
1. RSA (PKCS1 and PKCS8) and EC private keys for GitHub App credentials
2. A fake GitHub REST API and a fake metrics collector served by aiohttp
3. A temporary git checkout with an ``origin`` remote
4. Registry files and a loaded ConfigStore
"""

import asyncio
import json
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from dockup_agent.configuration import AppRegistration, ConfigStore, GitHubAppCredential


def _pem(key, fmt) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=fmt,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_pem_pkcs1(rsa_key) -> str:
    return _pem(rsa_key, serialization.PrivateFormat.TraditionalOpenSSL)


@pytest.fixture(scope="session")
def rsa_pem_pkcs8(rsa_key) -> str:
    return _pem(rsa_key, serialization.PrivateFormat.PKCS8)


@pytest.fixture(scope="session")
def ec_pem() -> str:
    return _pem(ec.generate_private_key(ec.SECP256R1()), serialization.PrivateFormat.PKCS8)


@pytest.fixture
def github_credential(rsa_pem_pkcs1) -> GitHubAppCredential:
    return GitHubAppCredential(app_id="12345", installation_id="67890", private_key=rsa_pem_pkcs1)


@pytest.fixture
def registration(tmp_path) -> AppRegistration:
    return AppRegistration(name="myapp", path=str(tmp_path), branch="main", secret="s3cret")


class FakeGitHub:
    """In-process stand-in for the GitHub endpoints the agent calls."""

    def __init__(self):
        self.base_url = ""
        self.token = "ghs_testtoken"
        self.token_status = 201
        self.token_expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
        self.token_requests: List[Dict[str, Any]] = []
        self.hooks: List[Dict[str, Any]] = []
        self.create_hook_status = 201
        self.hook_requests: List[Dict[str, Any]] = []

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/app/installations/{installation_id}/access_tokens", self.access_tokens)
        app.router.add_post("/repos/{owner}/{repo}/hooks", self.create_hook)
        app.router.add_get("/repos/{owner}/{repo}/hooks", self.list_hooks)
        return app

    async def access_tokens(self, request: web.Request) -> web.Response:
        self.token_requests.append(
            {
                "installation_id": request.match_info["installation_id"],
                "authorization": request.headers.get("Authorization", ""),
                "accept": request.headers.get("Accept", ""),
            }
        )
        if self.token_status != 201:
            return web.json_response({"message": "Bad credentials"}, status=self.token_status)
        return web.json_response(
            {
                "token": self.token,
                "expires_at": self.token_expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            },
            status=201,
        )

    async def create_hook(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.hook_requests.append({"repo": request.match_info["repo"], "body": body})
        if self.create_hook_status == 201:
            hook = {"id": 1000 + len(self.hooks), "config": {"url": body["config"]["url"]}}
            self.hooks.append(hook)
            return web.json_response(hook, status=201)
        return web.json_response({"message": "Hook already exists on this repository"}, status=self.create_hook_status)

    async def list_hooks(self, request: web.Request) -> web.Response:
        return web.json_response(self.hooks)


@pytest.fixture
async def fake_github():
    state = FakeGitHub()
    server = TestServer(state.make_app())
    await server.start_server()
    state.base_url = str(server.make_url("")).rstrip("/")
    yield state
    await server.close()


class FakeCollector:
    """Records metric events POSTed to it."""

    def __init__(self):
        self.url = ""
        self.status = 200
        self.delay = 0.0
        self.events: List[Dict[str, Any]] = []

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/collect", self.collect)
        return app

    async def collect(self, request: web.Request) -> web.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.events.append(await request.json())
        return web.Response(status=self.status, text="collector says no" if self.status >= 300 else "ok")


@pytest.fixture
async def fake_collector():
    state = FakeCollector()
    server = TestServer(state.make_app())
    await server.start_server()
    state.url = str(server.make_url("/collect"))
    yield state
    await server.close()


@pytest.fixture
def mock_git_repo(tmp_path: Path) -> Path:
    """Create a git checkout whose origin points at a GitHub SSH URL."""
    repo_path = tmp_path / "checkout"
    repo_path.mkdir()
    subprocess.run(["git", "init"], cwd=repo_path, check=True, capture_output=True)
    subprocess.run(["git", "config", "user.name", "Test User"], cwd=repo_path, check=True)
    subprocess.run(["git", "config", "user.email", "test@example.com"], cwd=repo_path, check=True)
    subprocess.run(
        ["git", "remote", "add", "origin", "git@github.com:acme/app.git"],
        cwd=repo_path,
        check=True,
    )
    return repo_path


def write_registry(path: Path, apps: Dict[str, Dict[str, Any]]) -> Path:
    path.write_text(json.dumps(apps))
    return path


@pytest.fixture
def registry_file(tmp_path: Path) -> Path:
    return write_registry(
        tmp_path / "registry.json",
        {
            "myapp": {"path": str(tmp_path), "branch": "main", "secret": "s3cret"},
        },
    )


@pytest.fixture
async def config_store(tmp_path: Path, registry_file: Path) -> ConfigStore:
    store = ConfigStore(
        registry_path=registry_file,
        github_app_path=tmp_path / "github-app.json",
        metrics_path=tmp_path / "metrics.json",
        environ={},
    )
    await store.load()
    return store
