# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

from pathlib import Path
from typing import Any

from flask.app import Flask

from .base import JumpAheadAppBuilder


def create_app(test_config: dict[str, Any] | None = None, instance_path: Path | None = None) -> Flask:
    ''' Flask app factory.  Create and configure the application. '''

    # App-specific configuration
    app_config = dict(
        APPLICATION_TITLE='Jump Ahead Learning',
        DATABASE_NAME='jumpahead.db',  # will be combined with app.instance_path in JumpAheadAppBuilder
    )

    # load test config if provided, potentially overriding above config
    if test_config is not None:
        app_config = app_config | test_config

    builder = JumpAheadAppBuilder(__name__, app_config, instance_path)
    return builder.build()
