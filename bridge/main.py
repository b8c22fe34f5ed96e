#!/usr/bin/env python3
"""Chat bridge that relays LINE or Telegram messages to a conversational agent backend."""

import logging

import typer

from bridge import config
from bridge.backends import BACKENDS, make_backend

logging.basicConfig(
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Agent bridge: chat platforms to an agent backend", no_args_is_help=True)


def _log_startup(backend: str):
    logger.info("Agent bridge configuration:")
    logger.info("- Backend: %s", backend)
    if backend == "http":
        logger.info("- Server URL: %s", config.SERVER_URL)
        logger.info("- Server auth: %s", "enabled" if config.SERVER_PASSWORD else "disabled")
    else:
        logger.info("- Working dir: %s", config.WORKING_DIR)
    logger.info("- Timeout: %gs", config.PROMPT_TIMEOUT)
    logger.info("- Allowed users: %s", ", ".join(sorted(config.ALLOWED_USER_IDS)) or "everyone")


def _backend_option(value: str) -> str:
    if value not in BACKENDS:
        raise typer.BadParameter(f"expected one of: {', '.join(BACKENDS)}")
    return value


@app.command()
def serve(
    host: str = typer.Option(config.HOST, help="Bind address"),
    port: int = typer.Option(config.PORT, help="Port for the LINE webhook"),
    backend: str = typer.Option(config.AGENT_BACKEND, callback=_backend_option, help="http or claude"),
):
    """Serve the LINE webhook."""
    config.require(
        LINE_CHANNEL_ACCESS_TOKEN=config.LINE_CHANNEL_ACCESS_TOKEN,
        LINE_CHANNEL_SECRET=config.LINE_CHANNEL_SECRET,
    )
    import uvicorn

    from bridge.line import build_app

    _log_startup(backend)
    logger.info("LINE bot listening on http://%s:%d/webhook", host, port)
    uvicorn.run(build_app(make_backend(backend)), host=host, port=port)


@app.command()
def telegram(
    backend: str = typer.Option(config.AGENT_BACKEND, callback=_backend_option, help="http or claude"),
):
    """Run the Telegram bot (polling)."""
    config.require(TELEGRAM_BOT_TOKEN=config.TELEGRAM_BOT_TOKEN)
    if not config.ALLOWED_USER_IDS:
        print("FATAL: ALLOWED_USER_IDS is empty. Refusing to start with open access.")
        raise typer.Exit(1)

    from bridge.telegram import build_application

    _log_startup(backend)
    logger.info("Telegram bot starting (polling)...")
    build_application(backend=make_backend(backend)).run_polling(drop_pending_updates=True)


def _mask(value: str) -> str:
    if not value:
        return "(unset)"
    return value[:4] + "..." if len(value) > 8 else "***"


@app.command("config")
def show_config():
    """Print the effective configuration, secrets masked."""
    rows = [
        ("AGENT_BACKEND", config.AGENT_BACKEND),
        ("SERVER_URL", config.SERVER_URL),
        ("SERVER_PASSWORD", _mask(config.SERVER_PASSWORD)),
        ("PROMPT_TIMEOUT", f"{config.PROMPT_TIMEOUT:g}s"),
        ("WORKING_DIR", config.WORKING_DIR),
        ("HOST", config.HOST),
        ("PORT", str(config.PORT)),
        ("LINE_CHANNEL_ACCESS_TOKEN", _mask(config.LINE_CHANNEL_ACCESS_TOKEN)),
        ("LINE_CHANNEL_SECRET", _mask(config.LINE_CHANNEL_SECRET)),
        ("TELEGRAM_BOT_TOKEN", _mask(config.TELEGRAM_BOT_TOKEN)),
        ("ALLOWED_USER_IDS", ", ".join(sorted(config.ALLOWED_USER_IDS)) or "(everyone)"),
        ("LOG_LEVEL", config.LOG_LEVEL),
    ]
    width = max(len(name) for name, _ in rows)
    for name, value in rows:
        print(f"{name:<{width}}  {value}")


if __name__ == "__main__":
    app()
