#!/usr/bin/env python3
"""
Spiel API - Web server
Flask application exposing the Spiel catalog over REST (``/rest``) and
GraphQL (``/graphql``), with Keycloak login, health probes and Swagger UI.
"""

import argparse
import io
import logging
import os
import time
from functools import wraps
from typing import Dict, List, Optional

from flask import Flask, Response, g, jsonify, request, send_file
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import NotFound, RequestEntityTooLarge

import database
import keycloak_client
import spielapi
from graphql_schema import build_schema
from keycloak_client import KeycloakAuthError, KeycloakError
from mail_notifier import MailNotifier
from spiel.dto import SpielDTO, SpielDtoOhneRef, validation_messages
from spiel.exceptions import NotFoundException, SpielError
from spiel.services.pageable import create_page, create_pageable
from spiel.services.read_service import ReadService
from spiel.services.write_service import WriteService

# Initialize logging early so database module logs are captured
config = spielapi.load_config(os.getenv('SPIEL_CONFIG', 'config.json'))
spielapi.setup_logging(config['log_level'], config['log_file'] or None)
web_logger = logging.getLogger('spielapi.web')

database.configure(config['database_url'])

# Services are shared by all requests; sessions are opened per request.
_mail_notifier: Optional[MailNotifier] = None
_keycloak: Optional[keycloak_client.KeycloakClient] = None
_read_service: Optional[ReadService] = None
_write_service: Optional[WriteService] = None


def init_services(cfg: Dict) -> None:
    """(Re)create the service singletons from *cfg*."""
    global _mail_notifier, _keycloak, _read_service, _write_service
    _mail_notifier = MailNotifier(cfg)
    _keycloak = keycloak_client.from_config(cfg)
    _read_service = ReadService()
    _write_service = WriteService(_read_service, _mail_notifier)


init_services(config)

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = config['max_upload_bytes']

REST_PATH = '/rest'
FILE_PATH = '/rest/file'


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error_response(status: int, error: str, message):
    return jsonify({'error': error, 'message': message, 'statusCode': status}), status


def _base_url() -> str:
    return request.host_url.rstrip('/')


def _accepts_json_or_html() -> bool:
    """False only when an Accept header excludes both JSON and HTML."""
    if not request.headers.get('Accept'):
        return True
    return request.accept_mimetypes.best_match(['application/json', 'text/html']) is not None


def _current_roles() -> Optional[List[str]]:
    """Roles of the caller's Bearer token, or ``None`` when not authenticated."""
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    token = header[len('Bearer '):].strip()
    if not token or _keycloak is None:
        return None
    try:
        claims = _keycloak.introspect(token)
    except KeycloakAuthError:
        web_logger.debug("Rejected token")
        return None
    return _keycloak.roles(claims)


def require_roles(*roles):
    """Decorator to require a Bearer token with at least one of *roles*"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_roles = _current_roles()
            if user_roles is None:
                return _error_response(401, 'Unauthorized', 'Unauthorized')
            if not set(roles) & set(user_roles):
                return _error_response(403, 'Forbidden', 'Forbidden resource')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def _json_body() -> Optional[Dict]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# ---------------------------------------------------------------------------
# Request hooks / error handlers
# ---------------------------------------------------------------------------

@app.before_request
def _start_timer():
    g.request_start = time.perf_counter()


@app.after_request
def _log_response_time(response):
    start = getattr(g, 'request_start', None)
    if start is not None:
        elapsed_ms = (time.perf_counter() - start) * 1000
        web_logger.debug("%s %s -> %s (%.1f ms)", request.method, request.path,
                         response.status_code, elapsed_ms)
    return response


@app.errorhandler(SpielError)
def _handle_spiel_error(exc: SpielError):
    web_logger.debug("%s: %s", type(exc).__name__, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


@app.errorhandler(ValidationError)
def _handle_validation_error(exc: ValidationError):
    messages = validation_messages(exc)
    web_logger.debug("Validation failed: %s", messages)
    return _error_response(422, 'Unprocessable Entity', messages)


@app.errorhandler(RequestEntityTooLarge)
def _handle_too_large(exc):
    return _error_response(413, 'Payload Too Large', 'File too large')


@app.errorhandler(NotFound)
def _handle_not_found(exc):
    return _error_response(404, 'Not Found', f"Cannot {request.method} {request.path}")


@app.errorhandler(KeycloakError)
def _handle_keycloak_error(exc: KeycloakError):
    web_logger.error("Keycloak error: %s", exc)
    return _error_response(503, 'Service Unavailable', 'Identity provider unavailable')


# ---------------------------------------------------------------------------
# REST: read
# ---------------------------------------------------------------------------

@app.route(REST_PATH, methods=['GET'])
def find_spiele():
    """Search Spiel data. Query parameters are criteria plus ``page``/``size``."""
    if not _accepts_json_or_html():
        return _error_response(406, 'Not Acceptable', 'Not Acceptable')

    suchkriterien = request.args.to_dict()
    page = suchkriterien.pop('page', None)
    size = suchkriterien.pop('size', None)
    pageable = create_pageable(page, size)
    web_logger.debug("find_spiele: suchkriterien=%s, pageable=%s", suchkriterien, pageable)

    db = database.SessionLocal()
    try:
        slice_ = _read_service.find(db, suchkriterien, pageable)
        return jsonify(create_page(slice_, pageable, lambda s: s.to_dict()))
    finally:
        db.close()


@app.route(f'{REST_PATH}/<int:spiel_id>', methods=['GET'])
def find_spiel_by_id(spiel_id: int):
    """Return one Spiel with its version as ``ETag``; 304 for a matching ``If-None-Match``."""
    if not _accepts_json_or_html():
        return _error_response(406, 'Not Acceptable', 'Not Acceptable')

    db = database.SessionLocal()
    try:
        spiel = _read_service.find_by_id(db, spiel_id)
        etag = f'"{spiel.version}"'
        if request.headers.get('If-None-Match') == etag:
            web_logger.debug("find_spiel_by_id: not modified")
            return Response(status=304)
        response = jsonify(spiel.to_dict())
    finally:
        db.close()
    response.headers['ETag'] = etag
    return response


@app.route(f'{FILE_PATH}/<int:spiel_id>', methods=['GET'])
def find_file(spiel_id: int):
    """Download the file attached to a Spiel."""
    db = database.SessionLocal()
    try:
        spiel_file = _read_service.find_file_by_spiel_id(db, spiel_id)
        if spiel_file is None:
            raise NotFoundException(f"There is no file for the Spiel with id {spiel_id}.")
        data = spiel_file.data
        filename = spiel_file.filename
        mimetype = spiel_file.mimetype or 'application/octet-stream'
    finally:
        db.close()
    return send_file(io.BytesIO(data), mimetype=mimetype,
                     as_attachment=False, download_name=filename)


# ---------------------------------------------------------------------------
# REST: write
# ---------------------------------------------------------------------------

@app.route(REST_PATH, methods=['POST'])
@require_roles('admin', 'user')
def create_spiel():
    """Create a Spiel from a ``SpielDTO`` body; 201 with ``Location``."""
    data = _json_body()
    if data is None:
        return _error_response(400, 'Bad Request', 'JSON body required')
    dto = SpielDTO.model_validate(data)

    db = database.SessionLocal()
    try:
        new_id = _write_service.create(db, dto.to_spiel())
    finally:
        db.close()
    web_logger.info("Created Spiel %s", new_id)
    response = Response(status=201)
    response.headers['Location'] = f"{_base_url()}{REST_PATH}/{new_id}"
    return response


@app.route(f'{REST_PATH}/<int:spiel_id>', methods=['POST'])
def upload_file(spiel_id: int):
    """Attach the multipart field ``file`` to a Spiel; 204 with ``Location``."""
    upload = request.files.get('file')
    if upload is None:
        return _error_response(400, 'Bad Request', 'File missing')
    data = upload.read()

    db = database.SessionLocal()
    try:
        _write_service.add_file(db, spiel_id, data, upload.filename, upload.mimetype)
    finally:
        db.close()
    response = Response(status=204)
    response.headers['Location'] = f"{_base_url()}{FILE_PATH}/{spiel_id}"
    return response


@app.route(f'{REST_PATH}/<int:spiel_id>', methods=['PUT'])
@require_roles('admin', 'user')
def update_spiel(spiel_id: int):
    """Update a Spiel. Requires ``If-Match`` with the current version."""
    version = request.headers.get('If-Match')
    if not version:
        return _error_response(428, 'Precondition Required', 'Header "If-Match" missing')
    data = _json_body()
    if data is None:
        return _error_response(400, 'Bad Request', 'JSON body required')
    dto = SpielDtoOhneRef.model_validate(data)

    db = database.SessionLocal()
    try:
        new_version = _write_service.update(db, spiel_id, dto.scalar_fields(), version)
    finally:
        db.close()
    response = Response(status=204)
    response.headers['ETag'] = f'"{new_version}"'
    return response


@app.route(f'{REST_PATH}/<int:spiel_id>', methods=['DELETE'])
@require_roles('admin')
def delete_spiel(spiel_id: int):
    """Delete a Spiel; 204 whether or not it existed."""
    db = database.SessionLocal()
    try:
        deleted = _write_service.delete(db, spiel_id)
    finally:
        db.close()
    web_logger.debug("delete_spiel: id=%s, deleted=%s", spiel_id, deleted)
    return Response(status=204)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def _token_response(call):
    if _keycloak is None:
        return _error_response(503, 'Service Unavailable', 'Identity provider not configured')
    try:
        result = call(_keycloak)
    except KeycloakAuthError:
        return _error_response(401, 'Unauthorized', 'Wrong username or password')
    return jsonify(result)


@app.route('/auth/token', methods=['POST'])
def auth_token():
    """Log in with ``username``/``password`` (JSON or form body)."""
    data = _json_body() or request.form
    username = data.get('username')
    password = data.get('password')
    if not username or not password:
        return _error_response(401, 'Unauthorized', 'Wrong username or password')
    return _token_response(lambda kc: kc.token(username, password))


@app.route('/auth/refresh', methods=['POST'])
def auth_refresh():
    """Exchange ``refresh_token`` for a new access token."""
    data = _json_body() or request.form
    refresh_token = data.get('refresh_token')
    if not refresh_token:
        return _error_response(401, 'Unauthorized', 'Invalid refresh token')
    return _token_response(lambda kc: kc.refresh(refresh_token))


# ---------------------------------------------------------------------------
# GraphQL API (POST /graphql)
# ---------------------------------------------------------------------------

_graphql_schema = None


def _get_graphql_schema():
    global _graphql_schema
    if _graphql_schema is None:
        _graphql_schema = build_schema()
    return _graphql_schema


def _format_graphql_error(error, validation_failed: bool) -> Dict:
    formatted = dict(error.formatted)
    extensions = dict(formatted.get('extensions') or {})
    if validation_failed and 'code' not in extensions:
        extensions['code'] = 'GRAPHQL_VALIDATION_FAILED'
    if extensions:
        formatted['extensions'] = extensions
    return formatted


@app.route('/graphql', methods=['POST'])
def graphql_endpoint():
    """Execute a GraphQL query or mutation.

    Request JSON::

        {"query": "...", "variables": {...}, "operationName": "..."}

    Response JSON::

        {"data": { ... }}                    // 200
        {"data": { ... }, "errors": [...]}   // 200, resolver errors
        {"errors": [...]}                   // 400, invalid query
    """
    data = _json_body() or {}
    query = data.get('query', '')
    if not query:
        return jsonify({'errors': [{'message': 'query is required',
                                    'extensions': {'code': 'BAD_REQUEST'}}]}), 400

    db = database.SessionLocal()
    try:
        result = _get_graphql_schema().execute(
            query,
            variables=data.get('variables') or {},
            operation_name=data.get('operationName'),
            context={
                'db': db,
                'read_service': _read_service,
                'write_service': _write_service,
                'keycloak': _keycloak,
                'roles': _current_roles,
            },
        )
    finally:
        db.close()

    response: Dict = {}
    validation_failed = result.data is None
    if result.errors:
        response['errors'] = [_format_graphql_error(e, validation_failed) for e in result.errors]
    if result.data is not None:
        response['data'] = result.data
    status = 400 if result.errors and validation_failed else 200
    return jsonify(response), status


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.route('/health/liveness')
def health_liveness():
    return jsonify({'status': 'up'})


@app.route('/health/readiness')
def health_readiness():
    try:
        database.ping()
    except SQLAlchemyError as e:
        web_logger.warning("Readiness check failed: %s", e)
        return jsonify({'status': 'down'}), 503
    return jsonify({'status': 'up'})


# ---------------------------------------------------------------------------
# API Documentation: OpenAPI 3.0 + Swagger UI
# ---------------------------------------------------------------------------

@app.route('/swagger.json')
def api_openapi_spec():
    """Serve the OpenAPI 3.0 specification as JSON."""
    from openapi_spec import build_spec
    return jsonify(build_spec(server_url=_base_url()))


@app.route('/swagger')
def api_swagger_ui():
    """Serve an interactive Swagger UI for the Spiel REST API."""
    openapi_url = '/swagger.json'
    html = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Spiel API Documentation</title>
  <link rel="stylesheet"
        href="https://unpkg.com/swagger-ui-dist@5/swagger-ui.css">
</head>
<body>
  <div id="swagger-ui"></div>
  <script src="https://unpkg.com/swagger-ui-dist@5/swagger-ui-bundle.js"></script>
  <script>
    SwaggerUIBundle({{
      url: "{openapi_url}",
      dom_id: "#swagger-ui",
      presets: [SwaggerUIBundle.presets.apis, SwaggerUIBundle.SwaggerUIStandalonePreset],
      layout: "BaseLayout",
      deepLinking: true,
    }});
  </script>
</body>
</html>"""
    return html, 200, {'Content-Type': 'text/html; charset=utf-8'}


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv=None):
    """Main entry point for the server"""
    parser = argparse.ArgumentParser(description='Spiel API server')
    parser.add_argument('--config', default='config.json', help='Path to config file')
    parser.add_argument('--host', default=None, help='Bind address (overrides config)')
    parser.add_argument('--port', type=int, default=None, help='Port (overrides config)')
    parser.add_argument('--populate', action='store_true',
                        help='Recreate the tables and load the sample data')
    args = parser.parse_args(argv)

    cfg = spielapi.load_config(args.config)
    spielapi.setup_logging(cfg['log_level'], cfg['log_file'] or None)
    database.configure(cfg['database_url'])
    init_services(cfg)
    app.config['MAX_CONTENT_LENGTH'] = cfg['max_upload_bytes']

    if args.populate or cfg['db_populate']:
        database.populate()
    else:
        database.init_db()

    host = args.host or cfg['host']
    port = args.port or cfg['port']
    web_logger.info("Spiel API listening on http://%s:%s", host, port)
    app.run(host=host, port=port, debug=False)


if __name__ == "__main__":
    main()
