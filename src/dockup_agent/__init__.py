import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from click.core import ParameterSource
from dotenv import load_dotenv

from .constants import AGENT_VERSION, ConfigPaths, ServerDefaults

__version__ = AGENT_VERSION


def load_environment_files(config_path: Path) -> list[Path]:
    """Load ``.env`` files next to the registry and in the working directory.

    Variables already present in the environment are never overridden.
    """
    loaded = []
    for env_file in (config_path.parent / ".env", Path.cwd() / ".env"):
        if env_file.exists() and env_file not in loaded:
            load_dotenv(env_file, override=False)
            loaded.append(env_file)
    return loaded


def _load_env_before_options(ctx: click.Context, param: click.Parameter, config_path: Path) -> Path:
    """Eager ``--config`` callback: load ``.env`` files before the other options read the environment.

    A ``DOCKUP_CONFIG`` set only in the working-directory ``.env`` still
    selects the registry path.
    """
    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(cwd_env, override=False)
    if ctx.get_parameter_source(param.name) is ParameterSource.DEFAULT and os.environ.get("DOCKUP_CONFIG"):
        config_path = Path(os.environ["DOCKUP_CONFIG"])

    ctx.meta["env_files"] = load_environment_files(config_path)
    return config_path


@click.command()
@click.option("--port", "-p", type=int, default=ServerDefaults.PORT, envvar="DOCKUP_PORT", show_default=True)
@click.option("--host", default=ServerDefaults.HOST, envvar="DOCKUP_HOST", show_default=True)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=ConfigPaths.REGISTRY,
    envvar="DOCKUP_CONFIG",
    show_default=True,
    is_eager=True,
    callback=_load_env_before_options,
    help="Path to registry.json",
)
@click.option(
    "--github-app-config",
    type=click.Path(path_type=Path),
    default=ConfigPaths.GITHUB_APP,
    envvar="DOCKUP_GITHUB_APP_CONFIG",
    show_default=True,
)
@click.option(
    "--metrics-config",
    type=click.Path(path_type=Path),
    default=ConfigPaths.METRICS,
    envvar="DOCKUP_METRICS_CONFIG",
    show_default=True,
)
@click.option(
    "--step-timeout",
    type=float,
    default=None,
    envvar="DOCKUP_STEP_TIMEOUT",
    help="Kill a deploy step that runs longer than this many seconds",
)
@click.option("-v", "--verbose", count=True)
@click.option("--json-logs", is_flag=True, help="Emit structured JSON log lines")
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="Also log to this file at DEBUG level")
@click.version_option(AGENT_VERSION, message="DockUp Agent v%(version)s")
def main(
    port: int,
    host: str,
    config_path: Path,
    github_app_config: Path,
    metrics_config: Path,
    step_timeout: Optional[float],
    verbose: int,
    json_logs: bool,
    log_file: Optional[Path],
) -> None:
    """DockUp Agent - redeploy docker compose stacks on git push"""
    from .configuration.store import ConfigStore
    from .error_handling import ConfigurationError
    from .logging_config import configure_logging
    from .server import serve

    loaded = click.get_current_context().meta.get("env_files", [])

    logging_level = "INFO"
    if verbose >= 2:
        logging_level = "DEBUG"
    configure_logging(logging_level, structured=json_logs, log_file=log_file)
    logger = logging.getLogger(__name__)
    for env_file in loaded:
        logger.info(f"Loaded environment variables from {env_file}")

    store = ConfigStore(
        registry_path=config_path,
        github_app_path=github_app_config,
        metrics_path=metrics_config,
        environ=os.environ,
    )
    try:
        asyncio.run(serve(store, host=host, port=port, step_timeout=step_timeout))
    except ConfigurationError as e:
        logger.critical(f"❌ Failed to load config: {e}")
        logger.critical(f"   Check that {config_path} exists and contains valid JSON")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
