# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from dataclasses import dataclass

@dataclass(frozen=True)
class ExecutionContext:
    """
    controls how host-mutating operations are executed
    """

    dry_run: bool = False
    command_timeout: float = 10.0
