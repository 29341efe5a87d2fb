# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/bootstrap/cloud_config.py
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from clusterseed.config.models import BootstrapSettings, OciCredentials
from clusterseed.errors import MissingRequiredArgument

log = logging.getLogger("clusterseed")

PROFILE = "DEFAULT"


def render_oci_config(creds: OciCredentials, key_path: Path) -> str:
    return (
        f"[{PROFILE}]\n"
        f"user={creds.user}\n"
        f"fingerprint={creds.fingerprint}\n"
        f"tenancy={creds.tenancy}\n"
        f"region={creds.region}\n"
        f"key_file={key_path}\n"
    )


@contextmanager
def oci_cli_config(creds: OciCredentials) -> Iterator[Path]:
    """
    Materialize a private OCI CLI config (and a copy of the API key) in a temp
    directory for the duration of the block. The directory is removed on every
    exit path, including errors.
    """
    missing = creds.missing()
    if missing:
        raise MissingRequiredArgument(
            "incomplete OCI credentials, missing: " + ", ".join(f"--oci-{m.replace('_', '-')}" for m in missing)
        )
    key_src = Path(creds.key_file).expanduser()
    if not key_src.is_file():
        raise MissingRequiredArgument(f"--oci-key-file {key_src} does not exist")

    workdir = Path(tempfile.mkdtemp(prefix="clusterseed-oci-"))
    try:
        os.chmod(workdir, 0o700)
        key_path = workdir / "oci_api_key.pem"
        shutil.copyfile(key_src, key_path)
        os.chmod(key_path, 0o600)

        config_path = workdir / "config"
        config_path.write_text(render_oci_config(creds, key_path))
        os.chmod(config_path, 0o600)

        log.debug("Generated OCI CLI config at %s", config_path)
        yield config_path
    finally:
        shutil.rmtree(workdir, ignore_errors=True)
        log.debug("Removed OCI CLI config dir %s", workdir)


@contextmanager
def cloud_config_scope(settings: BootstrapSettings) -> Iterator[tuple[Optional[Path], str]]:
    """
    Yield (config_file, profile) for the inventory.

    A throwaway config is generated when credential material was supplied and
    generation is not skipped; otherwise the configured existing file is used.
    """
    creds = settings.oci_credentials
    if not settings.skip_cloud_config and creds.provided():
        with oci_cli_config(creds) as path:
            yield path, PROFILE
        return

    if settings.skip_cloud_config:
        log.info("Cloud config generation skipped; using %s", settings.oci_config_file)
    yield Path(settings.oci_config_file).expanduser(), settings.oci_profile
