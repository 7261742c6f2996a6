"""Entry point every cluster child process runs through.

Usage::

    python -m mini_cluster.bootstrap [--max-memory SIZE] TARGET [ARGS...]

``TARGET`` is either ``package.module:function``, called with the remaining
arguments as a list, or ``package.module``, run as ``__main__``.
"""

import argparse
import importlib
import importlib.util
import re
import runpy
import sys
from collections.abc import Callable
from typing import Any

from .utils.logging import LogContext, get_logger

logger = get_logger(__name__, LogContext.LAUNCHER)

_SIZE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}


def parse_memory_size(value: str) -> int:
    """Parse sizes such as ``512M``, ``1g`` or ``65536`` into bytes."""
    match = re.fullmatch(r"\s*(\d+)\s*([KMG]?)B?\s*", value, re.IGNORECASE)
    if not match:
        raise ValueError(f"Invalid memory size: {value!r}")
    return int(match.group(1)) * _SIZE_UNITS[match.group(2).upper()]


def apply_memory_limit(limit_bytes: int) -> bool:
    """Cap the address space of the current process.

    Returns:
        True if the limit was applied
    """
    try:
        import resource
    except ImportError:
        logger.warning("Memory limits are not supported on this platform")
        return False

    try:
        _, hard = resource.getrlimit(resource.RLIMIT_AS)
        if hard != resource.RLIM_INFINITY:
            limit_bytes = min(limit_bytes, hard)
        resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, hard))
    except (ValueError, OSError) as e:
        logger.warning("Could not apply memory limit", limit=limit_bytes, error=str(e))
        return False
    return True


def resolve_target(target: str) -> Callable[[list[str]], Any]:
    """Turn a target string into a callable taking the argument list.

    Raises:
        ImportError: If the module cannot be found
        AttributeError: If the function does not exist in the module
    """
    module_name, _, func_name = target.partition(":")

    if not func_name:
        if importlib.util.find_spec(module_name) is None:
            raise ImportError(f"No module named {module_name!r}")

        def run_module(args: list[str]) -> None:
            sys.argv = [module_name, *args]
            runpy.run_module(module_name, run_name="__main__", alter_sys=True)

        return run_module

    module = importlib.import_module(module_name)
    return getattr(module, func_name)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=f"python -m {__name__}")
    parser.add_argument("--max-memory", help="Address space limit, e.g. 512M")
    parser.add_argument("target", help="module:function or module to run")
    parser.add_argument("args", nargs=argparse.REMAINDER)
    return parser


def main(argv: list[str] | None = None) -> int:
    options = build_parser().parse_args(argv)

    if options.max_memory:
        try:
            apply_memory_limit(parse_memory_size(options.max_memory))
        except ValueError as e:
            print(f"bootstrap: {e}", file=sys.stderr)
            return 2

    try:
        func = resolve_target(options.target)
    except (ImportError, AttributeError) as e:
        print(f"bootstrap: cannot resolve {options.target}: {e}", file=sys.stderr)
        return 2

    result = func(options.args)
    return int(result) if result is not None else 0


if __name__ == "__main__":
    sys.exit(main())
