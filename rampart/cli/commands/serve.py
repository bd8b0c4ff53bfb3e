"""Server command.

Validates the handler and configuration in the CLI process, then starts
uvicorn with an app factory so that every worker process builds its own
pipeline from the same settings.
"""

import json
import os
from typing import Any, Dict, Optional

from ...asgi import ASGIAdapter
from ...config import ConfigLoader
from ...server import build_pipeline, load_handler

# Worker processes re-read these; they are not RAMPART_-prefixed so the
# config loader does not pick them up as settings.
_TARGET_ENV = "_RAMPART_SERVE_TARGET"
_CONFIG_ENV = "_RAMPART_SERVE_CONFIG"
_ENV_FILE_ENV = "_RAMPART_SERVE_ENV_FILE"
_OVERRIDES_ENV = "_RAMPART_SERVE_OVERRIDES"


def _load_config(
    config_path: Optional[str],
    env_file: Optional[str],
    overrides: Dict[str, Any],
) -> ConfigLoader:
    return ConfigLoader.load(
        path=config_path,
        env_file=env_file,
        overrides={"server": overrides} if overrides else None,
    )


def create_app() -> ASGIAdapter:
    """uvicorn factory: rebuild the app from the serve command's settings."""
    overrides = json.loads(os.environ.get(_OVERRIDES_ENV) or "{}")
    config = _load_config(
        os.environ.get(_CONFIG_ENV) or None,
        os.environ.get(_ENV_FILE_ENV) or None,
        overrides,
    )
    server_config = config.server_config()
    pipeline = build_pipeline(
        load_handler(os.environ[_TARGET_ENV]),
        config.csrf_config(),
        debug=server_config.debug,
    )
    return ASGIAdapter(pipeline)


def serve(
    target: str,
    *,
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    verbose: bool = False,
) -> None:
    """
    Start the server.

    Args:
        target: Terminal handler as ``module:attribute``
        config_path: JSON/YAML config file
        env_file: .env file with RAMPART_* settings
        overrides: Server settings given on the command line
        verbose: Print the effective bind address

    Raises:
        ValueError: If the handler cannot be imported
        ConfigError: If the configuration is invalid
    """
    import uvicorn

    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    # Fail here, with a readable error, rather than inside a worker
    load_handler(target)
    config = _load_config(config_path, env_file, overrides)
    config.csrf_config()
    server_config = config.server_config()

    os.environ[_TARGET_ENV] = target
    os.environ[_CONFIG_ENV] = config_path or ""
    os.environ[_ENV_FILE_ENV] = env_file or ""
    os.environ[_OVERRIDES_ENV] = json.dumps(overrides)

    if verbose:
        print("Starting Rampart")
        print(f"  Handler: {target}")
        print(f"  Bind:    {server_config.host}:{server_config.port}")
        print(f"  Workers: {server_config.workers}")
        print()

    uvicorn.run(
        "rampart.cli.commands.serve:create_app",
        factory=True,
        host=server_config.host,
        port=server_config.port,
        workers=server_config.workers,
        log_level=server_config.log_level,
        reload=False,
    )
