# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import logging
import logging.config
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from flask import Flask
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from . import auth, courses, dashboard, db, learning, modules, profile
from .db import NotFound, StoreUnavailable
from .learning.evaluation import COMPLETION_THRESHOLD
from .learning.knowledge import DEFAULT_TIMEOUT


class MissingEnvVarError(Exception):
    def __init__(self, varname: str):
        super().__init__(f"Required environment variable not set: {varname}")


class JumpAheadAppBuilder:
    ''' A class to incrementally set up and finally build a complete Jump Ahead application. '''

    def __init__(self, import_name: str, app_config: dict[str, Any], instance_path: Path | None):
        '''
        Args:
            import_name: The name of the application's package.
            app_config: A dictionary containing application-specific configuration for the Flask object (w/ CAPITALIZED keys)
            instance_path: A path to the instance folder (for the database file, primarily)
        '''
        # load config values from .env file
        load_dotenv()

        # set up instance path from env variable if not provided
        if instance_path is None:
            try:
                instance_path = Path(os.environ["FLASK_INSTANCE_PATH"])
            except KeyError:
                print("Instance path not set and FLASK_INSTANCE_PATH environment variable not found.")
                sys.exit(1)
        # Flask() requires an absolute instance path
        instance_path = instance_path.resolve()
        instance_path.mkdir(parents=True, exist_ok=True)

        self._app = Flask(import_name, instance_path=str(instance_path), instance_relative_config=True)
        app = self._app

        testing = self._app.debug or app_config.get("TESTING", False)
        self._init_logging(testing=testing)

        self._config_app(app_config)

        # live learning sessions, keyed by (user_id, module_id); see learning/session.py
        app.extensions['learning_sessions'] = {}

        # set up middleware to fix headers from a proxy if configured as such
        if os.environ.get("FLASK_APP_BEHIND_PROXY", "").lower() in ("yes", "true", "1"):
            app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore[method-assign]

        self._register_error_handlers()

    def _init_logging(self, *, testing: bool) -> None:
        """ Configure logging before anything logs via app.logger, so that
        Flask does not install its own default handler (which can cause
        missing logs or double-logging).
        """
        if not testing:
            logging.config.dictConfig({
                'version': 1,
                'formatters': {'default': {
                    'format': '[%(asctime)s] %(levelname)s in %(module)s: %(message)s',
                }},
                'handlers': {'wsgi': {
                    'class': 'logging.StreamHandler',
                    'stream': 'ext://flask.logging.wsgi_errors_stream',
                    'formatter': 'default'
                }},
                'root': {
                    'level': 'INFO',
                    'handlers': ['wsgi']
                },
            })
        else:
            # For testing/debugging, ensure DEBUG level logging.
            logging.getLogger().setLevel(logging.DEBUG)
            logging.getLogger('httpcore').setLevel(logging.INFO)  # avoid noisy debug logging in httpcore
            logging.debug("DEBUG logging enabled.")

    def _config_app(self, app_config: dict[str, Any]) -> None:
        app = self._app

        base_config = dict(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            SESSION_COOKIE_SAMESITE='Lax',
            # may be overridden by app_config (e.g. if test_config sets DATABASE)
            DATABASE=os.path.join(app.instance_path, app_config['DATABASE_NAME']),
            OPENAI_MODEL='gpt-4o',
            OPENAI_BASE_URL=None,
            KNOWLEDGE_FETCH_TIMEOUT=DEFAULT_TIMEOUT,
            COMPLETION_THRESHOLD=COMPLETION_THRESHOLD,
        )

        # Add vars set in .env, loaded by load_dotenv() above, to config dictionary.
        # Required variables:
        #  - SECRET_KEY: used by Flask to sign session cookies
        #  - OPENAI_API_KEY: the API key used for all tutor completions
        for varname in ["SECRET_KEY", "OPENAI_API_KEY"]:
            try:
                env_var = os.environ[varname]
            except KeyError as e:
                raise MissingEnvVarError(varname) from e
            base_config[varname] = env_var

        # Optional variables:
        #  - OPENAI_MODEL: model name for completions
        #  - OPENAI_BASE_URL: an OpenAI-compatible endpoint to use instead of OpenAI's
        for varname in ["OPENAI_MODEL", "OPENAI_BASE_URL"]:
            if env_var := os.environ.get(varname):
                base_config[varname] = env_var

        #  - KNOWLEDGE_FETCH_TIMEOUT: seconds to wait for each knowledge source
        if env_var := os.environ.get("KNOWLEDGE_FETCH_TIMEOUT"):
            try:
                base_config["KNOWLEDGE_FETCH_TIMEOUT"] = float(env_var)
            except ValueError:
                app.logger.warning(f"Invalid KNOWLEDGE_FETCH_TIMEOUT '{env_var}'; using {DEFAULT_TIMEOUT} seconds.")

        total_config = base_config | app_config

        app.config.from_mapping(total_config)

    def _register_error_handlers(self) -> None:
        """ All errors are reported as JSON: {'error': <message>}. """
        app = self._app

        @app.errorhandler(HTTPException)
        def http_error(e: HTTPException) -> tuple[dict[str, Any], int]:
            return {'error': e.description}, e.code or 500

        @app.errorhandler(NotFound)
        def not_found(e: NotFound) -> tuple[dict[str, Any], int]:
            return {'error': f"The requested {e.kind} was not found."}, 404

        @app.errorhandler(StoreUnavailable)
        def store_unavailable(e: StoreUnavailable) -> tuple[dict[str, Any], int]:
            return {'error': f"Could not {e.action}.  Please try again later."}, 503

    def _register_blueprints(self) -> None:
        app = self._app
        app.register_blueprint(auth.bp, url_prefix='/auth')
        app.register_blueprint(profile.bp, url_prefix='/profile')
        app.register_blueprint(courses.bp, url_prefix='/courses')
        app.register_blueprint(modules.bp, url_prefix='/modules')
        app.register_blueprint(dashboard.bp, url_prefix='/dashboard')
        app.register_blueprint(learning.bp)  # url_prefix set on the blueprint

    def build(self) -> Flask:
        """ Finalize the app and return a complete Flask app. """
        app = self._app

        self._register_blueprints()
        db.init_app(app)

        return app
