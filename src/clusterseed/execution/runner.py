# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/execution/runner.py

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from clusterseed.errors import CommandFailed
from clusterseed.utils.execution import ExecutionContext

Cmd = Sequence[Union[str, "os.PathLike[str]"]]

log = logging.getLogger("clusterseed")


@dataclass
class CommandRunner:
    """
    Thin subprocess wrapper shared by the cloud CLI inventory and the firewall backend.

    Every call gets a bounded timeout. Mutating commands are skipped under
    dry-run; read-only queries still execute so the plan reflects the host.
    """

    ctx: ExecutionContext = field(default_factory=ExecutionContext)
    label: Optional[str] = None

    def available(self, binary: str) -> bool:
        return shutil.which(binary) is not None

    def run(
        self,
        cmd: Cmd,
        *,
        mutating: bool = False,
        check: bool = True,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess:
        label = self.label or "cmd"
        argv = [str(c) for c in cmd]
        cmd_str = " ".join(argv)

        log.debug("[%s] $ %s", label, cmd_str)

        if mutating and self.ctx.dry_run:
            log.info("[%s] dry-run: skipped %s", label, cmd_str)
            return subprocess.CompletedProcess(args=argv, returncode=0, stdout="", stderr="")

        start = time.time()
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout if timeout is not None else self.ctx.command_timeout,
                env={**os.environ, **env} if env else None,
            )
        except subprocess.TimeoutExpired as e:
            log.debug("[%s][timeout] %s", label, cmd_str)
            raise CommandFailed(cmd_str, None, str(e)) from e
        except FileNotFoundError as e:
            raise CommandFailed(cmd_str, 127, str(e)) from e

        duration = time.time() - start

        if result.stdout:
            log.debug("[%s][stdout]\n%s", label, result.stdout.rstrip())
        if result.stderr:
            log.debug("[%s][stderr]\n%s", label, result.stderr.rstrip())
        log.debug("[%s][exit %d] (%.2fs)", label, result.returncode, duration)

        if check and result.returncode != 0:
            raise CommandFailed(cmd_str, result.returncode, result.stderr or "")

        return result
