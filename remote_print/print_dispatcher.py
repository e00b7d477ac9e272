"""
PrintDispatcher: spool an uploaded body to a temporary file and hand it to
the system print command (``lpr`` / CUPS by default).
"""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

from .exceptions import PrinterFailureError, PrintIOError
from .utils.logging_utils import log_debug_operation, log_print_event

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
PRINTER_NOT_FOUND = "not exist"
TEMP_PREFIX = "remote_print_"


@dataclass
class PrintJob:
    """A submitted print job."""

    path: Path
    printer: Optional[str]
    size: int


def parse_lpstat_printers(output: str) -> List[str]:
    """Extract printer names from ``lpstat -p`` output."""
    printers = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "printer":
            printers.append(parts[1])
    return printers


class PrintDispatcher:
    """Persists request bodies and invokes the external print command."""

    def __init__(
        self,
        printer: Optional[str] = None,
        print_command: str = "lpr",
        list_printers_command: Sequence[str] = ("lpstat", "-p"),
        temp_dir: Optional[Path] = None,
        chunk_size: int = CHUNK_SIZE,
    ):
        """
        Initialize the dispatcher.

        Args:
            printer: Default printer name; system default when None
            print_command: Executable receiving ``<file> [-P <printer>]``
            list_printers_command: Command whose output lists printers
            temp_dir: Directory for spooled files (system temp dir when None)
            chunk_size: Read size used when copying the body
        """
        self.printer = printer
        self.print_command = print_command
        self.list_printers_command = tuple(list_printers_command)
        self.temp_dir = temp_dir
        self.chunk_size = chunk_size
        self._detached: Set["asyncio.Future[None]"] = set()

    def build_command(self, path: Path, printer: Optional[str]) -> List[str]:
        command = [self.print_command, str(path)]
        if printer:
            command.extend(["-P", printer])
        return command

    async def print_job(
        self,
        body: asyncio.StreamReader,
        extension: str,
        printer: Optional[str] = None,
    ) -> PrintJob:
        """
        Spool ``body`` to a temporary file and print it.

        The temporary file is removed once the print command has finished,
        whatever the outcome. Cancelling the caller does not stop a command
        that is already running; it completes in the background.

        Raises:
            PrintIOError: If the body cannot be written; nothing is printed
            PrinterFailureError: If the print command fails
        """
        target = printer or self.printer
        path, size = await self._spool(body, extension)
        command = asyncio.ensure_future(self._print_and_remove(path, target))
        try:
            await asyncio.shield(command)
        except asyncio.CancelledError:
            if not command.done():
                # The command keeps its input file until it exits
                self._detached.add(command)
                command.add_done_callback(self._detached_done)
                log_print_event(
                    logger, "request cancelled", f"letting print of {path} finish"
                )
            raise
        log_print_event(
            logger, "printed", f"{size} bytes on {target or 'default printer'}"
        )
        return PrintJob(path=path, printer=target, size=size)

    async def _print_and_remove(self, path: Path, printer: Optional[str]) -> None:
        try:
            await self._run_print_command(path, printer)
        finally:
            self._remove(path)

    def _detached_done(self, command: "asyncio.Future[None]") -> None:
        self._detached.discard(command)
        if command.cancelled():
            return
        error = command.exception()
        if error is not None:
            logger.error(f"Print of a cancelled request failed: {error}")

    async def _spool(
        self, body: asyncio.StreamReader, extension: str
    ) -> Tuple[Path, int]:
        suffix = f".{extension}" if extension else ""
        try:
            fd, name = tempfile.mkstemp(
                prefix=TEMP_PREFIX, suffix=suffix, dir=self.temp_dir
            )
        except OSError as e:
            raise PrintIOError(
                f"Failed to create temporary file: {e}", original_exception=e
            ) from e

        path = Path(name)
        size = 0
        try:
            with os.fdopen(fd, "wb") as file:
                while True:
                    chunk = await body.read(self.chunk_size)
                    if not chunk:
                        break
                    await asyncio.to_thread(file.write, chunk)
                    size += len(chunk)
        except OSError as e:
            self._remove(path)
            raise PrintIOError(
                f"Failed to write print job: {e}",
                context={"path": str(path)},
                original_exception=e,
            ) from e
        except BaseException:
            self._remove(path)
            raise

        log_debug_operation(logger, "Spooled print job", f"{path} ({size} bytes)")
        return path, size

    async def _run_print_command(self, path: Path, printer: Optional[str]) -> None:
        command = self.build_command(path, printer)
        log_debug_operation(logger, "Running print command", command)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PrinterFailureError(
                f"Failed to run {self.print_command}: {e}",
                context={"command": self.print_command},
            ) from e
        _, stderr = await process.communicate()

        if process.returncode == 0:
            return

        error_text = stderr.decode("utf-8", errors="replace")
        available: Optional[List[str]] = None
        if PRINTER_NOT_FOUND in error_text:
            available = await self._list_printers_best_effort()
            logger.error(
                "Please specify a printer or set a default printer, "
                f"available printers: {available}"
            )
        raise PrinterFailureError(
            error_text,
            available_printers=available,
            context={"returncode": process.returncode},
        )

    async def list_printers(self) -> List[str]:
        """
        Enumerate printers known to the print system.

        Raises:
            OSError: If the listing command cannot be run
            RuntimeError: If the listing command fails
        """
        process = await asyncio.create_subprocess_exec(
            *self.list_printers_command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await process.communicate()
        if process.returncode != 0:
            raise RuntimeError(
                f"{' '.join(self.list_printers_command)} exited with {process.returncode}"
            )
        return parse_lpstat_printers(stdout.decode("utf-8", errors="replace"))

    async def _list_printers_best_effort(self) -> List[str]:
        try:
            return await self.list_printers()
        except (OSError, RuntimeError) as e:
            logger.warning(f"Failed to list printers: {e}")
            return []

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temporary file {path}: {e}")
