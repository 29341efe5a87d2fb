# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/errors.py

from __future__ import annotations


class BootstrapError(RuntimeError):
    """Base class for clusterseed failures."""


class MetadataUnavailable(BootstrapError):
    """Raised when the instance cannot resolve its own identity."""


class InventoryUnavailable(BootstrapError):
    """Raised when the cloud inventory cannot be queried at all (no config/credentials)."""


class PeerResolutionFailed(BootstrapError):
    """Raised when a single peer's network address cannot be resolved."""

    def __init__(self, instance_id: str, reason: str):
        super().__init__(f"cannot resolve private IP of {instance_id}: {reason}")
        self.instance_id = instance_id
        self.reason = reason


class FirewallBackendMissing(BootstrapError):
    """Raised when no firewall control surface exists on the host."""


class CommandFailed(BootstrapError):
    """Raised when an external command exits non-zero or times out."""

    def __init__(self, cmd: str, returncode: int | None, stderr: str = ""):
        msg = f"command failed ({'timeout' if returncode is None else f'exit {returncode}'}): {cmd}"
        if stderr:
            msg += f"\n{stderr.strip()}"
        super().__init__(msg)
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


class ArgumentError(BootstrapError, ValueError):
    """Raised on caller misuse, before any side effect."""


class MissingRequiredArgument(ArgumentError):
    pass


class InvalidRole(ArgumentError):
    pass
