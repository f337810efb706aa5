#!/usr/bin/env python3
"""
datadesk Web UI - Flask application rendering list, detail and form views
for any configured backend table, plus a small JSON API.
"""

from flask import Flask, render_template, request, jsonify, redirect, url_for, flash, Response, g
from pathlib import Path
import os
import sys
import threading
import time

# Prometheus metrics
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

# Add the parent directory to Python path to import datadesk modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from datadesk.core.v1.config import get_web_secret, table_title
from datadesk.core.v1.context import AppContext, bootstrap
from datadesk.core.v1.backends import BackendError
from datadesk.core.v1.forms import build_display, build_form, build_table, check_parent
from datadesk.core.v1.navigation import ParentLink
from datadesk.core.v1.records import (
    RecordInUse,
    RecordNotFound,
    ValidationError,
    create_record,
    delete_record,
    get_record,
    list_records,
    parse_filter_args,
    search_rows,
    table_counts,
    update_record,
)
from datadesk.core.v1.relations import form_options, related_items, relation_options
from datadesk.core.v1.validate import validate_catalog

app = Flask(__name__)
app.secret_key = get_web_secret()

# Columns shown in list and related-item tables
LIST_COLUMN_LIMIT = int(os.environ.get('DD_LIST_COLUMNS', '6'))
RELATED_COLUMN_LIMIT = 5

# -----------------------
# Application context
# -----------------------
_CTX: AppContext | None = None
_CTX_LOCK = threading.Lock()


def set_context(ctx: AppContext | None) -> None:
    """Install the context used by all routes (the CLI does this for -W)."""
    global _CTX
    with _CTX_LOCK:
        _CTX = ctx


def get_context() -> AppContext:
    global _CTX
    with _CTX_LOCK:
        if _CTX is None:
            _CTX = bootstrap(os.environ.get('DD_WORKSPACE') or None)
            app.logger.info(f"[datadesk] Workspace: {_CTX.workspace}")
        return _CTX


def _navigation(ctx: AppContext) -> list:
    nav = list(ctx.catalog.navigation or [])
    if not nav:
        nav = [{'id': t, 'title': table_title(t), 'icon': None} for t in ctx.catalog.table_ids()]
    return nav


@app.context_processor
def inject_navigation():
    try:
        nav = _navigation(get_context())
    except Exception:
        nav = []
    return {'navigation': nav}


def _truthy(val) -> bool:
    return str(val or '').strip().lower() in ('1', 'true', 'yes', 'on')


# -----------------------
# Prometheus instrumentation
# -----------------------
_METRICS_ENV = os.environ.get('METRICS_ENV', 'prod')
_SERVICE_NAME = os.environ.get('SERVICE_NAME', 'datadesk')

HTTP_REQUESTS_TOTAL = Counter(
    'dd_web_http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status', 'env', 'service'],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    'dd_web_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path', 'status', 'env', 'service'],
    buckets=(0.05, 0.1, 0.3, 1, 3, 10),
)

DD_CACHE_ENTRIES = Gauge('dd_cache_entries', 'Entries in the entity cache', ['env', 'service'])
DD_CACHE_RECORDS = Gauge('dd_cache_records', 'Records held across all cache entries', ['env', 'service'])
DD_CONFIGURED_TABLES = Gauge('dd_configured_tables', 'Tables in the metadata dictionary', ['env', 'service'])


@app.before_request
def _metrics_before_request():
    g._metrics_t0 = time.time()


@app.after_request
def _metrics_after_request(response: Response):
    try:
        t0 = getattr(g, '_metrics_t0', None)
        dt = (time.time() - t0) if t0 is not None else None
        method = str(request.method or 'GET')
        # Route rule keeps label cardinality bounded; fall back to path
        rule = request.url_rule.rule if request.url_rule is not None else None
        path_label = str(rule or request.path or '/')
        status = str(response.status_code)
        HTTP_REQUESTS_TOTAL.labels(method, path_label, status, _METRICS_ENV, _SERVICE_NAME).inc()
        if dt is not None:
            HTTP_REQUEST_DURATION_SECONDS.labels(method, path_label, status, _METRICS_ENV, _SERVICE_NAME).observe(dt)
    except Exception as e:
        # Never break responses on metrics errors
        app.logger.warning(f"[datadesk] metrics error: {e}")
    return response


def _update_internal_gauges() -> None:
    ctx = get_context()
    stats = ctx.cache.stats()
    DD_CACHE_ENTRIES.labels(_METRICS_ENV, _SERVICE_NAME).set(stats['entry_count'])
    DD_CACHE_RECORDS.labels(_METRICS_ENV, _SERVICE_NAME).set(
        sum(e['record_count'] for e in stats['entries'].values())
    )
    DD_CONFIGURED_TABLES.labels(_METRICS_ENV, _SERVICE_NAME).set(len(ctx.catalog.table_ids()))


@app.get('/metrics')
def _metrics_endpoint():
    try:
        _update_internal_gauges()
    except Exception as e:
        # Never fail the scrape if the workspace is unavailable
        app.logger.warning(f"[datadesk] gauge update failed: {e}")
    data = generate_latest()  # default registry
    return Response(response=data, status=200, mimetype=CONTENT_TYPE_LATEST)


# -----------------------
# HTML views
# -----------------------

def _parent_from_request() -> ParentLink | None:
    return ParentLink.from_args(request.args) or ParentLink.from_args(request.form)


@app.route('/')
def index():
    """Home page: configured tables with row counts."""
    try:
        ctx = get_context()
        q = (request.args.get('q') or '').strip()
        nav = _navigation(ctx)
        if q:
            low = q.lower()
            nav = [n for n in nav if low in str(n['title']).lower() or low in str(n['id']).lower()]
        counts = table_counts(ctx, [n['id'] for n in nav])
        tables = [dict(n, count=counts.get(n['id'])) for n in nav]
        return render_template('index.html', tables=tables, q=q, workspace=str(ctx.workspace or ''))
    except Exception as e:
        app.logger.error(f"[datadesk] index failed: {e}")
        return render_template('error.html', error=str(e))


@app.route('/tables/<table_id>')
def tables_list(table_id):
    """List rows of a table. q= searches loaded rows; <col>=eq.v / ilike.p filter server-side."""
    try:
        ctx = get_context()
        meta = ctx.catalog.get(table_id)
        filters = parse_filter_args(request.args, meta)
        q = (request.args.get('q') or '').strip()
        rows = list_records(
            ctx,
            table_id,
            filters=filters,
            search=q,
            order=request.args.get('order') or None,
            ignore_cache=_truthy(request.args.get('refresh')),
        )
        table = build_table(meta, rows, limit=LIST_COLUMN_LIMIT)
        return render_template('tables/list.html', meta=meta, table=table, q=q, filters=filters)
    except Exception as e:
        flash(f'Error loading {table_id}: {e}', 'error')
        return redirect(url_for('index'))


@app.route('/tables/<table_id>/new', methods=['GET', 'POST'])
def tables_new(table_id):
    """Create form. A parent link (parent_table/parent_id/parent_fk) locks the foreign key."""
    ctx = get_context()
    parent = _parent_from_request()
    try:
        meta = ctx.catalog.get(table_id)
    except Exception as e:
        flash(f'Error loading {table_id}: {e}', 'error')
        return redirect(url_for('index'))
    try:
        check_parent(meta, parent)
    except ValueError as e:
        flash(str(e), 'error')
        return redirect(url_for('tables_list', table_id=table_id))

    values = {}
    errors = {}
    if request.method == 'POST':
        values = request.form.to_dict(flat=True)
        try:
            row = create_record(ctx, table_id, values, parent=parent)
            rid = row.get(meta['primaryKey'])
            flash(f"Created {meta['title']} {rid}", 'success')
            if parent is not None:
                return redirect(url_for('tables_view', table_id=parent.table, record_id=parent.id))
            return redirect(url_for('tables_list', table_id=table_id))
        except ValidationError as e:
            errors = e.errors
            flash(str(e), 'error')
        except Exception as e:
            app.logger.error(f"[datadesk] create {table_id} failed: {e}")
            flash(f'Error creating record: {e}', 'error')

    form = build_form(meta, values, 'create', errors=errors, options=form_options(ctx, meta), parent=parent)
    status = 400 if errors else 200
    return render_template('tables/form.html', meta=meta, form=form), status


@app.route('/tables/<table_id>/<record_id>')
def tables_view(table_id, record_id):
    """Detail page with related items for each configured relation."""
    try:
        ctx = get_context()
        meta = ctx.catalog.get(table_id)
        refresh = _truthy(request.args.get('refresh'))
        record = get_record(ctx, table_id, record_id, ignore_cache=refresh)
        display = build_display(meta, record)
        rq = (request.args.get('rq') or '').strip()
        related = []
        for group in related_items(ctx, table_id, record, ignore_cache=refresh):
            rows = search_rows(group['rows'], rq)
            group['table_view'] = build_table(group['meta'], rows, limit=RELATED_COLUMN_LIMIT)
            related.append(group)
        return render_template('tables/view.html', meta=meta, display=display, related=related, rq=rq)
    except RecordNotFound as e:
        flash(str(e), 'error')
        return redirect(url_for('tables_list', table_id=table_id))
    except Exception as e:
        flash(f'Error viewing record: {e}', 'error')
        return redirect(url_for('tables_list', table_id=table_id))


@app.route('/tables/<table_id>/<record_id>/edit', methods=['GET', 'POST'])
def tables_edit(table_id, record_id):
    ctx = get_context()
    try:
        meta = ctx.catalog.get(table_id)
        record = get_record(ctx, table_id, record_id)
    except Exception as e:
        flash(f'Error loading record: {e}', 'error')
        return redirect(url_for('tables_list', table_id=table_id))

    errors = {}
    values = record
    if request.method == 'POST':
        values = dict(record, **request.form.to_dict(flat=True))
        try:
            update_record(ctx, table_id, record_id, request.form.to_dict(flat=True))
            flash(f"Saved {meta['title']} {record_id}", 'success')
            return redirect(url_for('tables_view', table_id=table_id, record_id=record_id))
        except ValidationError as e:
            errors = e.errors
            flash(str(e), 'error')
        except Exception as e:
            app.logger.error(f"[datadesk] update {table_id}/{record_id} failed: {e}")
            flash(f'Error saving record: {e}', 'error')

    form = build_form(meta, values, 'edit', errors=errors, options=form_options(ctx, meta))
    status = 400 if errors else 200
    return render_template('tables/form.html', meta=meta, form=form), status


@app.route('/tables/<table_id>/<record_id>/delete', methods=['POST'])
def tables_delete(table_id, record_id):
    try:
        ctx = get_context()
        delete_record(ctx, table_id, record_id)
        flash(f'Deleted {record_id}', 'success')
        return redirect(url_for('tables_list', table_id=table_id))
    except RecordInUse as e:
        flash(str(e), 'error')
        return redirect(url_for('tables_view', table_id=table_id, record_id=record_id))
    except Exception as e:
        flash(f'Error deleting record: {e}', 'error')
        return redirect(url_for('tables_list', table_id=table_id))


# -----------------------
# JSON API
# -----------------------

def _api_error(e: Exception):
    if isinstance(e, RecordNotFound):
        return jsonify({'success': False, 'error': str(e)}), 404
    if isinstance(e, ValidationError):
        return jsonify({'success': False, 'error': str(e), 'errors': e.errors}), 400
    if isinstance(e, (ValueError, RecordInUse)):
        return jsonify({'success': False, 'error': str(e)}), 400
    if isinstance(e, BackendError) and e.status and 400 <= e.status < 500:
        return jsonify({'success': False, 'error': str(e)}), e.status
    app.logger.error(f"[datadesk] API error: {e}")
    return jsonify({'success': False, 'error': str(e)}), 500


def _json_payload() -> dict:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        payload = request.form.to_dict(flat=True)
    if not isinstance(payload, dict):
        raise ValueError('Invalid payload')
    return payload


@app.route('/api/tables')
def api_tables():
    try:
        ctx = get_context()
        nav = _navigation(ctx)
        counts = table_counts(ctx, [n['id'] for n in nav]) if _truthy(request.args.get('counts')) else {}
        tables = [
            dict(n, configured=ctx.catalog.is_configured(n['id']), count=counts.get(n['id']))
            for n in nav
        ]
        return jsonify({'success': True, 'tables': tables})
    except Exception as e:
        return _api_error(e)


@app.route('/api/tables/<table_id>/metadata')
def api_table_metadata(table_id):
    try:
        return jsonify({'success': True, 'metadata': get_context().catalog.get(table_id)})
    except Exception as e:
        return _api_error(e)


@app.route('/api/tables/<table_id>/records', methods=['GET'])
def api_records_list(table_id):
    try:
        ctx = get_context()
        meta = ctx.catalog.get(table_id)
        rows = list_records(
            ctx,
            table_id,
            filters=parse_filter_args(request.args, meta),
            search=request.args.get('q'),
            order=request.args.get('order') or None,
            ignore_cache=_truthy(request.args.get('refresh')),
        )
        return jsonify({'success': True, 'records': rows, 'count': len(rows)})
    except Exception as e:
        return _api_error(e)


@app.route('/api/tables/<table_id>/records', methods=['POST'])
def api_records_create(table_id):
    """Create a record from a JSON object. Accepts {"values": {...}, "parent": {...}} or a bare object."""
    try:
        ctx = get_context()
        payload = _json_payload()
        values = payload.get('values') if isinstance(payload.get('values'), dict) else payload
        parent = ParentLink.from_args(request.args)
        if parent is None and isinstance(payload.get('parent'), dict):
            p = payload['parent']
            parent = ParentLink.from_args({
                'parent_table': p.get('table'),
                'parent_id': p.get('id'),
                'parent_fk': p.get('foreign_key') or p.get('foreignKey'),
            })
        row = create_record(ctx, table_id, values, parent=parent)
        return jsonify({'success': True, 'record': row})
    except Exception as e:
        return _api_error(e)


@app.route('/api/tables/<table_id>/records/<record_id>', methods=['GET'])
def api_record_get(table_id, record_id):
    try:
        ctx = get_context()
        record = get_record(ctx, table_id, record_id, ignore_cache=_truthy(request.args.get('refresh')))
        return jsonify({'success': True, 'record': record})
    except Exception as e:
        return _api_error(e)


@app.route('/api/tables/<table_id>/records/<record_id>', methods=['PATCH', 'POST'])
def api_record_update(table_id, record_id):
    """Update only the supplied fields. Accepts {"updates": {...}} or a bare object."""
    try:
        ctx = get_context()
        payload = _json_payload()
        updates = payload.get('updates') if isinstance(payload.get('updates'), dict) else payload
        if not updates:
            raise ValueError('No updates provided')
        row = update_record(ctx, table_id, record_id, updates, partial=True)
        return jsonify({'success': True, 'record': row})
    except Exception as e:
        return _api_error(e)


@app.route('/api/tables/<table_id>/records/<record_id>', methods=['DELETE'])
def api_record_delete(table_id, record_id):
    try:
        deleted = delete_record(get_context(), table_id, record_id)
        return jsonify({'success': True, 'deleted': deleted})
    except Exception as e:
        return _api_error(e)


@app.route('/api/tables/<table_id>/options')
def api_relation_options(table_id):
    try:
        options = relation_options(
            get_context(),
            table_id,
            _truthy(request.args.get('required')),
            ignore_cache=_truthy(request.args.get('refresh')),
        )
        return jsonify({'success': True, 'options': options})
    except Exception as e:
        return _api_error(e)


@app.route('/api/cache')
def api_cache_stats():
    try:
        return jsonify({'success': True, 'stats': get_context().cache.stats()})
    except Exception as e:
        return _api_error(e)


@app.route('/api/cache/clear', methods=['POST'])
def api_cache_clear():
    """Clear the whole cache, or one table's entries with {"table": <id>}."""
    try:
        ctx = get_context()
        payload = request.get_json(force=True, silent=True) or {}
        table = payload.get('table') if isinstance(payload, dict) else None
        table = table or request.args.get('table')
        if table:
            cleared = ctx.cache.invalidate_table(table)
            ctx.catalog.forget(table)
        else:
            cleared = len(ctx.cache)
            ctx.cache.clear_all()
            ctx.catalog.forget()
        return jsonify({'success': True, 'cleared': cleared})
    except Exception as e:
        return _api_error(e)


@app.route('/api/validate')
def api_validate():
    try:
        result = validate_catalog(get_context().catalog.raw_tables())
        return jsonify({'success': True, **result})
    except Exception as e:
        return _api_error(e)


@app.errorhandler(404)
def not_found(error):
    if request.path.startswith('/api/'):
        return jsonify({'success': False, 'error': 'Not found'}), 404
    return render_template('404.html'), 404


@app.errorhandler(500)
def internal_error(error):
    if request.path.startswith('/api/'):
        return jsonify({'success': False, 'error': 'Internal server error'}), 500
    return render_template('error.html', error='Internal server error'), 500


def run(host: str = '0.0.0.0', port: int = 8080, debug: bool = False) -> None:
    app.run(debug=debug, host=host, port=port, use_reloader=debug)


if __name__ == '__main__':
    # Determine port (env PORT or --port flag), default 8080
    port = int(os.environ.get('PORT', '8080'))
    if '--port' in sys.argv:
        idx = sys.argv.index('--port')
        if idx + 1 < len(sys.argv):
            port = int(sys.argv[idx + 1])

    print("Starting datadesk Web UI...")
    print(f"Access the interface at: http://localhost:{port}")
    print("=" * 50)

    debug_mode = os.environ.get('FLASK_ENV') == 'development' or '--debug' in sys.argv
    try:
        run(port=port, debug=debug_mode)
    except KeyboardInterrupt:
        print("\nShutting down datadesk Web UI...")
