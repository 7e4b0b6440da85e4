# ==============================================================================
# Base Runner Abstract Class
# ==============================================================================
"""
Base runner with common lifecycle management.

Provides signal handling, logging setup, and shutdown coordination for
asyncio services. Concrete runners implement the ``_run()`` coroutine and
poll ``shutdown_requested`` (or await ``wait_for_shutdown()``).
"""

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from typing import final

logger = logging.getLogger(__name__)


class BaseRunner(ABC):
    """Base runner with common lifecycle management."""

    def __init__(self, log_level: str = "INFO"):
        self._shutdown_requested = False
        self._shutdown_event: asyncio.Event | None = None
        self._log_level = log_level

    @final
    def run(self) -> None:
        """Main entry point with signal handling."""
        self._setup_logging()

        try:
            asyncio.run(self._main())
        except KeyboardInterrupt:
            logger.info("Runner interrupted by keyboard")

    async def _main(self) -> None:
        self._shutdown_event = asyncio.Event()
        self._setup_signal_handlers()
        try:
            await self._run()
        finally:
            await self._cleanup()

    @abstractmethod
    async def _run(self) -> None:
        """Service-specific run implementation."""
        ...

    def _setup_signal_handlers(self) -> None:
        """Common signal handling - can be overridden."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(signum, lambda s, _f: self._handle_signal(s))

    def _handle_signal(self, signum: int) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, requesting shutdown...", signum)
        self.request_shutdown()

    def request_shutdown(self) -> None:
        self._shutdown_requested = True
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        self._on_shutdown_requested()

    async def wait_for_shutdown(self) -> None:
        if self._shutdown_event is not None:
            await self._shutdown_event.wait()

    def _setup_logging(self) -> None:
        """Common logging setup - can be overridden."""
        logging.basicConfig(
            level=getattr(logging, self._log_level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    def _on_shutdown_requested(self) -> None:
        """Hook for services to handle shutdown. Optional override."""
        pass

    async def _cleanup(self) -> None:
        """Cleanup resources. Optional override."""
        pass

    @property
    def shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested
