"""Restart bridge: restarts service units after an install.

The fetch engine calls a :class:`Restarter` once per configured unit, in
order.  The default backend shells out to ``systemctl restart <unit>``; the
command is configurable through ``TAKO_RESTART_COMMAND``.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from tako.errors import RestartError

logger = logging.getLogger(__name__)


@runtime_checkable
class Restarter(Protocol):
    def restart(self, unit: str) -> None:
        """Restart *unit*; raise RestartError on failure."""
        ...


class SystemctlRestarter:
    """Runs ``<command...> <unit>`` and checks the exit status.

    Parameters
    ----------
    command:
        Command prefix, ``["systemctl", "restart"]`` by default.
    timeout:
        Seconds to wait for the command before giving up.
    """

    def __init__(
        self,
        command: Sequence[str] = ("systemctl", "restart"),
        timeout: float = 120.0,
    ) -> None:
        self._command = list(command)
        self._timeout = timeout

    def restart(self, unit: str) -> None:
        argv = [*self._command, unit]
        logger.info("Restarting %s", unit)
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (subprocess.SubprocessError, OSError) as exc:
            raise RestartError(f"{unit}: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise RestartError(
                f"{unit}: '{' '.join(argv)}' exited with {result.returncode}"
                + (f": {stderr}" if stderr else "")
            )
