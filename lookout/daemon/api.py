"""HTTP API for the lookout daemon."""

import asyncio
import json

from aiohttp import web
from loguru import logger

from .aliases import InsertResult
from .metrics import get_metrics, LatencyTimer
from .models import AliasEntry, QueryOrigin, alias_target_from_dict
from .ranking import Direction


class BadRequest(ValueError):
    """Client sent something the API cannot use."""


def create_api_app(daemon) -> web.Application:
    """Create the aiohttp application with routes."""
    app = web.Application(middlewares=[error_middleware, cors_middleware])
    app['daemon'] = daemon

    app.router.add_get('/search', handle_search)
    app.router.add_post('/select', handle_select)
    app.router.add_get('/aliases', handle_list_aliases)
    app.router.add_post('/aliases', handle_add_alias)
    app.router.add_delete('/aliases/{key}', handle_remove_alias)
    app.router.add_post('/sources/{id}/move', handle_move_source)
    app.router.add_post('/usage/reset', handle_reset_usage)
    app.router.add_get('/status', handle_status)
    app.router.add_get('/metrics', handle_metrics)
    app.router.add_post('/shutdown', handle_shutdown)

    return app


def error_response(code: str, message: str, status: int) -> web.Response:
    return web.json_response({'error': {'code': code, 'message': message}}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except BadRequest as e:
        return error_response('invalid_request', str(e), 400)
    except Exception as e:
        logger.exception(f"{request.method} {request.path} failed: {e}")
        get_metrics().increment_counter("api.error")
        return error_response('internal_error', str(e), 500)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    # Local tools (browser extensions, panels) call the daemon directly
    response = await handler(request)
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, DELETE, OPTIONS'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
    return response


async def read_json(request: web.Request) -> dict:
    try:
        data = await request.json()
    except json.JSONDecodeError:
        raise BadRequest("body must be valid JSON")
    if not isinstance(data, dict):
        raise BadRequest("body must be a JSON object")
    return data


async def handle_search(request: web.Request) -> web.Response:
    """Run one query turn. A blank or missing `q` lists the defaults."""
    engine = request.app['daemon'].engine
    text = request.query.get('q', '')

    origin_value = request.query.get('origin', QueryOrigin.USER_INPUT.value)
    try:
        origin = QueryOrigin(origin_value)
    except ValueError:
        raise BadRequest(f"unknown origin: {origin_value}")

    with LatencyTimer("api.search"):
        result = await engine.submit(text, origin)

    get_metrics().increment_counter("api.search")
    return web.json_response(result.to_dict())


async def handle_select(request: web.Request) -> web.Response:
    """Select a candidate from the last delivered turn."""
    engine = request.app['daemon'].engine
    data = await read_json(request)

    candidate_id = data.get('id')
    if not candidate_id or not isinstance(candidate_id, str):
        raise BadRequest("id is required")

    if engine.find_candidate(candidate_id) is None:
        return error_response('not_found', f"no selectable candidate {candidate_id}", 404)
    if not await engine.select(candidate_id):
        get_metrics().increment_counter("api.action_failed")
        return error_response('action_failed', f"action for {candidate_id} failed", 500)
    return web.json_response({'id': candidate_id, 'selected': True})


async def handle_list_aliases(request: web.Request) -> web.Response:
    engine = request.app['daemon'].engine
    return web.json_response({
        'aliases': [entry.to_dict() for entry in engine.aliases.entries],
    })


async def handle_add_alias(request: web.Request) -> web.Response:
    """
    Create an alias.

    Body is either `{"alias": ..., "target": {...}}` or
    `{"candidate_id": ..., "alias": optional}` to bind the target of a
    result from the last turn.
    """
    engine = request.app['daemon'].engine
    data = await read_json(request)
    alias_key = data.get('alias')
    if alias_key is not None and not isinstance(alias_key, str):
        raise BadRequest("alias must be a string")

    if 'candidate_id' in data:
        result = engine.alias_from_candidate(str(data['candidate_id']), alias_key)
        if result is None:
            return error_response('not_found', "candidate has no alias target", 404)
    else:
        target = alias_target_from_dict(data.get('target'))
        if target is None:
            raise BadRequest("target is missing or malformed")
        result = engine.add_alias(alias_key or '', target)

    if result is InsertResult.DUPLICATE:
        return error_response('duplicate', "alias already exists", 409)
    if result is InsertResult.INVALID_KEY:
        return error_response('invalid_alias', "alias cannot be empty", 400)

    entry: AliasEntry = engine.aliases.entries[-1]
    return web.json_response(entry.to_dict(), status=201)


async def handle_remove_alias(request: web.Request) -> web.Response:
    engine = request.app['daemon'].engine
    key = request.match_info['key']
    existed = engine.aliases.get(key) is not None
    engine.remove_alias(key)
    return web.json_response({'alias': key, 'removed': existed})


async def handle_move_source(request: web.Request) -> web.Response:
    engine = request.app['daemon'].engine
    source_id = request.match_info['id']
    data = await read_json(request)

    try:
        direction = Direction(str(data.get('direction', '')).lower())
    except ValueError:
        raise BadRequest("direction must be 'up' or 'down'")

    moved = engine.move_source(source_id, direction)
    return web.json_response({
        'moved': moved,
        'order': list(engine.ranking.source_order),
    })


async def handle_reset_usage(request: web.Request) -> web.Response:
    engine = request.app['daemon'].engine
    engine.reset_usage()
    return web.json_response({'status': 'reset'})


async def handle_status(request: web.Request) -> web.Response:
    """Get daemon status."""
    daemon = request.app['daemon']
    return web.json_response(daemon.get_status())


async def handle_metrics(request: web.Request) -> web.Response:
    """Export metrics."""
    format = request.query.get('format', 'json')
    metrics = get_metrics()

    if format == 'prometheus':
        return web.Response(
            text=metrics.export_metrics('prometheus'),
            content_type='text/plain'
        )
    if format != 'json':
        raise BadRequest(f"unknown format: {format}")
    return web.Response(
        text=metrics.export_metrics('json'),
        content_type='application/json'
    )


async def handle_shutdown(request: web.Request) -> web.Response:
    """Shutdown the daemon."""
    daemon = request.app['daemon']
    logger.info("Shutdown requested via API")

    # Let the response go out before the server stops
    loop = asyncio.get_running_loop()
    loop.call_later(0.2, daemon.request_shutdown)

    return web.json_response({'status': 'shutting down'})
