"""Process entrypoint: run the CLI and turn anything it raises into an exit code."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    GATES_FAILED = 1
    CONFIG_ERROR = 2
    REVIEWER_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Target of the ``gauntlet`` script and ``python -m gauntlet_orchestrator``."""

    from gauntlet_orchestrator.ui.cli import run_cli

    try:
        code = run_cli(argv)
    except SystemExit as exc:  # argparse usage errors and --help
        code = exc.code if isinstance(exc.code, int) else int(ExitCode.CONFIG_ERROR)
    except Exception as exc:  # noqa: BLE001 - last stop before the process exits
        routed = _route_exception(exc)
        if routed is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(routed)
    return code if code in set(ExitCode) else int(ExitCode.INTERNAL_ERROR)


def _route_exception(exc: BaseException) -> ExitCode:
    from gauntlet_orchestrator.config.loader import ConfigLoadError
    from gauntlet_orchestrator.config.schema import ConfigValidationError
    from gauntlet_orchestrator.domain.errors import InvocationError

    for item in _causes(exc):
        if isinstance(item, (ConfigLoadError, ConfigValidationError, FileNotFoundError)):
            return ExitCode.CONFIG_ERROR
        if isinstance(item, InvocationError):
            return ExitCode.REVIEWER_ERROR
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


__all__ = ["ExitCode", "cli_entrypoint"]
