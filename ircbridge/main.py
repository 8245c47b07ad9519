"""ircbridge — Main entry point."""

import asyncio
import logging
import os
import signal
from typing import Optional

from .agent import AgentClient, CommandAgentClient, HttpAgentClient
from .config import BridgeSettings, load_accounts, load_settings
from .gateway import Gateway, GatewayOptions

_log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("ircbridge")


def setup_logging(log_file: str = "~/ircbridge.log", debug: bool = False):
    logging.basicConfig(
        level=logging.INFO,
        format=_log_format,
        handlers=[
            logging.StreamHandler(),                                          # stderr (console)
            logging.FileHandler(os.path.expanduser(log_file), encoding="utf-8"),
        ],
    )
    if debug:
        logger.setLevel(logging.DEBUG)


def build_agent(settings: BridgeSettings) -> AgentClient:
    """HTTP agent when a URL is configured, otherwise the agent CLI."""
    if settings.agent_url:
        token = settings.agent_token.get_secret_value() if settings.agent_token else None
        logger.info(f"Using HTTP agent at {settings.agent_url}")
        return HttpAgentClient(settings.agent_url, token=token, timeout=settings.agent_timeout)
    logger.info(f"Using agent command '{settings.agent_command}'")
    return CommandAgentClient(settings.agent_command, timeout=settings.agent_timeout)


async def run(config_path: Optional[str] = None, settings: Optional[BridgeSettings] = None):
    """Main run loop."""
    settings = settings or load_settings()
    path = config_path or settings.config_path

    accounts = load_accounts(path)
    gateway = Gateway(build_agent(settings), GatewayOptions.from_settings(settings))
    gateway.load(accounts)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt
            pass

    try:
        await gateway.start()

        started = 0
        for account in gateway.registry.all():
            if not account.enabled:
                logger.info(f"[{account.account_id}] Account disabled, skipping.")
                continue
            try:
                await gateway.start_account(account)
                started += 1
            except Exception as e:
                logger.error(f"[{account.account_id}] Failed to start: {type(e).__name__}: {e}")

        if not started:
            logger.warning(f"No IRC account could be started from {path}.")

        logger.info("ircbridge is running. Press Ctrl+C to stop.")
        await stop_event.wait()

    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
    finally:
        await gateway.stop()
        logger.info("ircbridge stopped.")


def main():
    """Entry point."""
    settings = load_settings()
    setup_logging(settings.log_file, settings.debug)
    asyncio.run(run(settings=settings))


if __name__ == "__main__":
    main()
