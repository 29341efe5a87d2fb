# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/bootstrap/supervisor.py
from __future__ import annotations

import logging
from pathlib import Path

from jinja2 import Environment, StrictUndefined

from clusterseed.bootstrap.agent_config import atomic_write
from clusterseed.config.models import BootstrapSettings
from clusterseed.utils.execution import ExecutionContext

log = logging.getLogger("clusterseed")

# supervisord program stanza; the supervisor only ever reads this file
STANZA_TEMPLATE = """\
[program:{{ program }}]
command={{ binary }} agent -config-dir={{ config_dir }} -data-dir={{ data_dir }}
user={{ user }}
autostart=true
autorestart=true
startsecs=5
stopsignal=INT
stdout_logfile={{ log_dir }}/{{ program }}.out.log
stderr_logfile={{ log_dir }}/{{ program }}.err.log
"""

_env = Environment(undefined=StrictUndefined, keep_trailing_newline=True)


def render_supervisor_stanza(settings: BootstrapSettings, program: str = "consul") -> str:
    return _env.from_string(STANZA_TEMPLATE).render(
        program=program,
        binary=settings.agent_binary,
        config_dir=settings.config_dir,
        data_dir=settings.data_dir,
        log_dir=settings.log_dir,
        user=settings.user,
    )


def write_supervisor_stanza(
    settings: BootstrapSettings,
    ctx: ExecutionContext,
    program: str = "consul",
) -> Path:
    path = Path(settings.supervisor_conf_path)
    text = render_supervisor_stanza(settings, program)
    if ctx.dry_run:
        log.info("[dry-run] would write %s:\n%s", path, text.rstrip())
        return path
    atomic_write(path, text, mode=0o644)
    log.info("Wrote supervisor stanza %s", path)
    return path
