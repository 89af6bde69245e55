"""HTTP front end of the DockUp Agent.

Routes:
    POST /webhook/github         GitHub push webhook (HMAC-signed)
    GET|POST /webhook/manual     Manual deploy, ``?app=`` + bearer secret
    POST /reload                 Re-read every configuration file
    GET  /github/token-url       Token-bearing clone URL for ``?repo=``
    POST /github/create-webhook  Provision a push webhook on a repository
    POST /metrics/track          Relay a custom telemetry event

Webhook and manual triggers answer as soon as the deploy is scheduled or
skipped; the deploy itself runs in the background.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp
from aiohttp import web
from pydantic import ValidationError

from .configuration.store import ConfigStore
from .constants import AGENT_VERSION, GitHubAPIDefaults, ServerDefaults, WebhookDefaults
from .deploy import DeployCoordinator
from .error_handling import ConfigurationError, DockupError, UpstreamError, http_status_for
from .github.auth import CredentialBroker
from .github.client import GitHubClient
from .github.models import CreateWebhookRequest, PushEvent
from .github.webhooks import create_push_webhook
from .metrics import MetricsSink, TrackMetricRequest
from .pipeline import CommandPipeline
from .security import verify_bearer, verify_signature

logger = logging.getLogger(__name__)


@dataclass
class DockupAgent:
    """The agent's components, wired to one ``ConfigStore``."""

    store: ConfigStore
    broker: CredentialBroker
    pipeline: CommandPipeline
    metrics: MetricsSink
    coordinator: DeployCoordinator
    session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def build(
        cls,
        store: ConfigStore,
        github_api_url: str = GitHubAPIDefaults.BASE_URL,
        step_timeout: Optional[float] = None,
    ) -> "DockupAgent":
        broker = CredentialBroker(lambda: store.github_app, base_url=github_api_url)
        metrics = MetricsSink(lambda: store.metrics)
        pipeline = CommandPipeline(broker, step_timeout=step_timeout)
        coordinator = DeployCoordinator(pipeline, metrics)
        return cls(store=store, broker=broker, pipeline=pipeline, metrics=metrics, coordinator=coordinator)

    def attach_session(self, session: Optional[aiohttp.ClientSession]) -> None:
        self.session = session
        self.broker.session = session
        self.metrics.session = session


AGENT_KEY = web.AppKey("agent", DockupAgent)


async def handle_github(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    body = await request.read()

    try:
        event = PushEvent.model_validate_json(body)
    except ValidationError:
        raise web.HTTPBadRequest(text="Invalid JSON")

    app_name = event.repository.name
    registration = agent.store.registry.get(app_name)
    if registration is None:
        logger.warning(f"⚠️  Received webhook for unknown repo: {app_name}")
        raise web.HTTPNotFound(text="Repo not registered")

    signature = request.headers.get(WebhookDefaults.SIGNATURE_HEADER)
    if not verify_signature(body, registration.secret, signature):
        logger.warning(f"⛔ Invalid signature for {app_name}")
        raise web.HTTPForbidden(text="Forbidden")

    expected_ref = WebhookDefaults.BRANCH_REF_PREFIX + registration.branch
    if event.ref != expected_ref:
        logger.info(f"ℹ️  Ignored push to {event.ref} (watching {registration.branch})")
        return web.Response(text="Ignored branch")

    scheduled = agent.coordinator.trigger(app_name, registration, "github")
    agent.metrics.emit("webhook_received", app_name, {"webhook_type": "github"})
    return web.Response(text="Deploy triggered" if scheduled else "Deploy already in progress")


async def handle_manual(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    app_name = request.query.get("app", "")
    if not app_name:
        raise web.HTTPBadRequest(text="Missing ?app= parameter")

    registration = agent.store.registry.get(app_name)
    if registration is None:
        raise web.HTTPNotFound(text="App not found")

    if not verify_bearer(request.headers.get("Authorization"), registration.secret):
        logger.warning(f"⛔ Rejected manual trigger for {app_name}: bad bearer secret")
        raise web.HTTPUnauthorized(text="Unauthorized")

    scheduled = agent.coordinator.trigger(app_name, registration, "manual")
    agent.metrics.emit("webhook_received", app_name, {"webhook_type": "manual"})
    return web.Response(text="Manual deploy triggered" if scheduled else "Deploy already in progress")


async def handle_reload(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    previous_credential = agent.store.github_app
    try:
        summary = await agent.store.reload()
    except ConfigurationError as e:
        raise web.HTTPInternalServerError(text=f"Failed to reload: {e}")

    if agent.store.github_app != previous_credential:
        logger.info("🔑 GitHub App credential changed, dropping cached installation token")
        agent.broker.invalidate()
    return web.Response(text=f"Registry reloaded. Now watching {summary.app_count} apps")


async def handle_token_url(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    repo_url = request.query.get("repo", "")
    if not repo_url:
        raise web.HTTPBadRequest(text="Missing ?repo= parameter")
    if not agent.broker.is_configured:
        raise web.HTTPServiceUnavailable(text="GitHub App not configured")

    try:
        token_url = await agent.broker.get_github_token_url(repo_url)
    except DockupError as e:
        logger.error(f"❌ Failed to get token URL: {e}")
        return web.Response(status=http_status_for(e), text=f"Failed to get token URL: {e}")

    return web.Response(text=token_url, content_type="text/plain")


async def handle_create_webhook(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    try:
        hook_request = CreateWebhookRequest.model_validate_json(await request.read())
    except ValidationError:
        raise web.HTTPBadRequest(text="Invalid JSON")
    if not hook_request.is_complete:
        raise web.HTTPBadRequest(text="Missing required fields: repo, url, secret")
    if not agent.broker.is_configured:
        raise web.HTTPServiceUnavailable(text="GitHub App not configured")

    try:
        token = await agent.broker.get_installation_token()
    except DockupError as e:
        logger.error(f"❌ Failed to get installation token for webhook creation: {e}")
        return web.Response(status=http_status_for(e), text=f"Failed to get token: {e}")

    client = GitHubClient(token=token, session=agent.session, base_url=agent.broker.base_url)
    try:
        result = await create_push_webhook(client, hook_request.repo, hook_request.url, hook_request.secret)
    except UpstreamError as e:
        status = e.status if e.status and e.status >= 400 else http_status_for(e)
        return web.Response(status=status, text=str(e))

    agent.metrics.emit(
        "webhook_created",
        "",
        {"repo_name": hook_request.repo, "webhook_id": result.hook_id, "webhook_type": "github"},
    )
    return web.json_response(
        {"id": result.hook_id, "status": result.status},
        status=201 if result.created else 200,
    )


async def handle_metrics_track(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    try:
        payload = TrackMetricRequest.model_validate_json(await request.read())
    except ValidationError:
        raise web.HTTPBadRequest(text="Invalid JSON")
    if not payload.event_type:
        raise web.HTTPBadRequest(text="Missing event_type")

    agent.metrics.emit(payload.event_type, payload.app_name, payload.data)
    return web.Response(text="Metric tracked")


async def _client_session(app: web.Application):
    """Share one outbound HTTP session for the lifetime of the server."""
    agent = app[AGENT_KEY]
    async with aiohttp.ClientSession() as session:
        agent.attach_session(session)
        yield
        await agent.metrics.drain()
        agent.attach_session(None)


def create_app(agent: DockupAgent) -> web.Application:
    app = web.Application()
    app[AGENT_KEY] = agent
    app.cleanup_ctx.append(_client_session)
    app.router.add_post("/webhook/github", handle_github)
    app.router.add_get("/webhook/manual", handle_manual)
    app.router.add_post("/webhook/manual", handle_manual)
    app.router.add_post("/reload", handle_reload)
    app.router.add_get("/github/token-url", handle_token_url)
    app.router.add_post("/github/create-webhook", handle_create_webhook)
    app.router.add_post("/metrics/track", handle_metrics_track)
    return app


async def serve(
    store: ConfigStore,
    host: str = ServerDefaults.HOST,
    port: int = ServerDefaults.PORT,
    step_timeout: Optional[float] = None,
    shutdown_timeout: float = ServerDefaults.SHUTDOWN_GRACE_SECONDS,
) -> None:
    """Load configuration and run the HTTP server until cancelled.

    Raises:
        ConfigurationError: If the registry cannot be loaded at startup
    """
    summary = await store.load()
    agent = DockupAgent.build(store, step_timeout=step_timeout)

    logger.info(f"🚀 DockUp Agent v{AGENT_VERSION} starting on {host}:{port}, watching {summary.app_count} apps")
    if summary.github_app_id:
        logger.info(f"✅ GitHub App configured (App ID: {summary.github_app_id})")
    else:
        logger.warning("⚠️  GitHub App not configured - repository fetches use existing git credentials")

    await run_agent(agent, host, port, shutdown_timeout)


async def run_agent(
    agent: DockupAgent,
    host: str = ServerDefaults.HOST,
    port: int = ServerDefaults.PORT,
    shutdown_timeout: float = ServerDefaults.SHUTDOWN_GRACE_SECONDS,
) -> None:
    """Serve ``agent`` until cancelled, then let in-flight deploys finish.

    Deploys still running after ``shutdown_timeout`` seconds are cancelled
    and their current step is killed.
    """
    runner = web.AppRunner(create_app(agent))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    try:
        await asyncio.Event().wait()
    finally:
        if agent.coordinator.in_flight:
            logger.info(f"⏳ Waiting for {agent.coordinator.in_flight} deploy(s) to finish before shutdown")
        await agent.coordinator.wait_idle(timeout=shutdown_timeout)
        await runner.cleanup()
