#!/usr/bin/env python3
"""Fake CLI for integration testing.

This script simulates a child process with scriptable behaviour, so tests do
not depend on platform tools like ``sleep`` or ``ls``.

Usage:
    python fake_cli.py [--stdout TEXT] [--stderr-lines N] [--echo-stdin]
                       [--print-env NAME] [--spawn-child SECONDS]
                       [--spawn-holder SECONDS] [--holder-detached]
                       [--sleep SECONDS] [--exit-code CODE]

Arguments:
    --stdout: Text written to stdout
    --stderr-lines: Number of lines ("err line <i>") written to stderr
    --echo-stdin: Copy stdin to stdout until EOF
    --print-env: Print "<NAME>=<value>" or "<NAME> unset"
    --spawn-child: Spawn a grandchild sleeping SECONDS, print "child=<pid>"
    --spawn-holder: Spawn a grandchild sleeping SECONDS that inherits stdout
        and stderr, print "holder=<pid>"
    --holder-detached: Start the holder through an intermediate process that
        exits at once, so the holder is no longer our descendant
    --sleep: Sleep before exiting
    --exit-code: Exit code (default: 0)
"""

from __future__ import annotations

import argparse
import os
import subprocess
import sys
import time
from typing import NoReturn


def main() -> NoReturn:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Fake CLI for testing")
    parser.add_argument("--stdout", type=str, default=None, help="Text for stdout")
    parser.add_argument("--stderr-lines", type=int, default=0, help="Lines for stderr")
    parser.add_argument("--echo-stdin", action="store_true", help="Copy stdin to stdout")
    parser.add_argument("--print-env", type=str, default=None, help="Variable to print")
    parser.add_argument("--spawn-child", type=float, default=None, help="Grandchild sleep")
    parser.add_argument("--spawn-holder", type=float, default=None, help="Pipe holder sleep")
    parser.add_argument("--holder-detached", action="store_true", help="Double-fork the holder")
    parser.add_argument("--sleep", type=float, default=0.0, help="Sleep before exit")
    parser.add_argument("--exit-code", type=int, default=0, help="Exit code")
    args = parser.parse_args()

    if args.stdout is not None:
        sys.stdout.write(args.stdout)
        sys.stdout.flush()

    for i in range(args.stderr_lines):
        sys.stderr.write(f"err line {i}\n")
    sys.stderr.flush()

    if args.echo_stdin:
        data = sys.stdin.buffer.read()
        sys.stdout.buffer.write(data)
        sys.stdout.flush()

    if args.print_env is not None:
        value = os.environ.get(args.print_env)
        if value is None:
            print(f"{args.print_env} unset", flush=True)
        else:
            print(f"{args.print_env}={value}", flush=True)

    if args.spawn_child is not None:
        child = subprocess.Popen(
            [sys.executable, "-c", f"import time; time.sleep({args.spawn_child})"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        print(f"child={child.pid}", flush=True)

    if args.spawn_holder is not None:
        sleeper = [sys.executable, "-c", f"import time; time.sleep({args.spawn_holder})"]
        if args.holder_detached:
            launcher = (
                "import subprocess, sys; "
                f"p = subprocess.Popen({sleeper!r}, stdin=subprocess.DEVNULL); "
                "print(f\"holder={p.pid}\", flush=True)"
            )
            subprocess.run([sys.executable, "-c", launcher], stdin=subprocess.DEVNULL, check=True)
        else:
            holder = subprocess.Popen(sleeper, stdin=subprocess.DEVNULL)
            print(f"holder={holder.pid}", flush=True)

    if args.sleep:
        time.sleep(args.sleep)

    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()
