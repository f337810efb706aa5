import sys
import os
import argparse
import pathlib
import json
import yaml

from datadesk import __version__
from datadesk.core.v1.config import (
    CONFIG_FILENAME,
    get_workspace_path,
)
from datadesk.core.v1.context import bootstrap
from datadesk.core.v1.detect import detect_schema
from datadesk.core.v1.metadata import column_display, visible_columns
from datadesk.core.v1.navigation import ParentLink
from datadesk.core.v1.records import (
    ValidationError,
    create_record,
    delete_record,
    get_record,
    list_records,
    parse_filter_expressions,
    table_counts,
    update_record,
)
from datadesk.core.v1.validate import validate_catalog
from datadesk.core.v1.workspace import init_workspace


class DeskArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that prints full help on error instead of short usage."""
    def error(self, message):
        self.print_help()
        sys.stderr.write(f"\nError: {message}\n")
        raise SystemExit(2)


def _human_table(rows, fields, labels=None, width=15):
    labels = labels or [f.replace("_", " ").title() for f in fields]
    header = " | ".join(f"{lbl:<{width}}" for lbl in labels)
    print(header)
    print("-" * len(header))
    for r in rows:
        print(" | ".join(f"{str(v):<{width}}" for v in r))


def main(argv=None):
    # Root parser and global options (git-like)
    env_format = os.getenv("DD_FORMAT", "human").lower()
    if env_format not in ("human", "json", "yaml"):
        env_format = "human"
    parser = DeskArgumentParser(prog="desk", description="datadesk CLI")
    parser.add_argument("-W", "--workspace", dest="workspace", default=os.getenv("DD_WORKSPACE"), help="Override workspace path")
    parser.add_argument(
        "-F", "--format", dest="format", choices=["human", "json", "yaml"], default=env_format,
        help="Output format (default from DD_FORMAT or 'human')"
    )
    parser.add_argument("--version", action="version", version=f"datadesk {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=False, parser_class=DeskArgumentParser)

    # init
    init_parser = subparsers.add_parser("init", help="Initialize a workspace at PATH and make it the default")
    init_parser.add_argument("path", nargs="?", default=".", help="Workspace directory (default: current directory)")
    init_parser.add_argument("--sample", action="store_true", help="Include the suppliers/products/customers/orders sample tables")
    init_parser.add_argument("--backend-url", dest="backend_url", default=None, help="PostgREST/Supabase URL (default: local YAML backend)")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing datadesk.yml")

    # tables
    tables_parser = subparsers.add_parser("tables", help="Configured tables")
    tables_sub = tables_parser.add_subparsers(dest="tables_cmd", required=False, parser_class=DeskArgumentParser)
    tables_ls = tables_sub.add_parser("ls", aliases=["list"], help="List configured tables")
    tables_ls.add_argument("--counts", action="store_true", help="Include row counts (queries the backend)")

    # schema
    schema_parser = subparsers.add_parser("schema", help="Table metadata")
    schema_sub = schema_parser.add_subparsers(dest="schema_cmd", required=False, parser_class=DeskArgumentParser)
    schema_show = schema_sub.add_parser("show", help="Show the metadata used for a table")
    schema_show.add_argument("table", help="Table id")
    schema_detect = schema_sub.add_parser("detect", help="Detect metadata from sample rows (paste into datadesk.yml)")
    schema_detect.add_argument("table", help="Table id")

    # records
    records_parser = subparsers.add_parser("records", help="Record operations")
    rec_sub = records_parser.add_subparsers(dest="rec_cmd", required=False, parser_class=DeskArgumentParser)

    rec_ls = rec_sub.add_parser(
        "ls",
        aliases=["list"],
        help="List records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  desk records ls products category=eq.Fasteners\n"
            "  desk records ls customers name=ilike.%corp% --search austin\n"
        ),
    )
    rec_ls.add_argument("table", help="Table id")
    rec_ls.add_argument("filters", nargs="*", help="column=eq.value or column=ilike.pattern server-side filters")
    rec_ls.add_argument("--search", default=None, help="Case-insensitive substring match over all values")
    rec_ls.add_argument("--order", default=None, help="Order by column, e.g. created_at.desc")

    rec_show = rec_sub.add_parser("show", aliases=["view"], help="Show a record")
    rec_show.add_argument("table", help="Table id")
    rec_show.add_argument("id", help="Primary key value")

    rec_add = rec_sub.add_parser("add", help="Create a record")
    rec_add.add_argument("table", help="Table id")
    rec_add.add_argument("pairs", nargs="*", help="key=value fields")
    rec_add.add_argument(
        "--parent", default=None, metavar="TABLE:ID:FK",
        help="Create as a child of TABLE record ID; FK is this table's foreign key column",
    )

    rec_set = rec_sub.add_parser("set", help="Update fields of a record")
    rec_set.add_argument("table", help="Table id")
    rec_set.add_argument("id", help="Primary key value")
    rec_set.add_argument("pairs", nargs="+", help="key=value fields to set")

    rec_rm = rec_sub.add_parser("rm", aliases=["remove"], help="Delete a record (refused while children reference it)")
    rec_rm.add_argument("table", help="Table id")
    rec_rm.add_argument("id", help="Primary key value")

    # validate
    validate_parser = subparsers.add_parser("validate", help="Check the metadata dictionary in datadesk.yml")
    validate_parser.add_argument("--strict", action="store_true", help="Exit non-zero on warnings as well")

    # web
    web_parser = subparsers.add_parser("web", help="Start the web UI server")
    web_parser.add_argument("--port", type=int, default=8080, help="Port to run the web server on (default: 8080)")
    web_parser.add_argument("--host", default="0.0.0.0", help="Host to bind the web server to (default: 0.0.0.0)")
    web_parser.add_argument("--debug", action="store_true", help="Run in debug mode with auto-reload")

    args = parser.parse_args(argv)

    # Helper: resolve workspace honoring -W/--workspace
    def _workspace_path() -> pathlib.Path:
        if getattr(args, "workspace", None):
            return pathlib.Path(args.workspace).expanduser().resolve()
        return get_workspace_path()

    def _context():
        try:
            return bootstrap(_workspace_path())
        except Exception as e:
            print(f"[datadesk] Error: {e}")
            sys.exit(1)

    def _fmt() -> str:
        return args.format

    def _emit(obj, human=None):
        fmt = _fmt()
        if fmt == "json":
            print(json.dumps(obj, indent=2, default=str))
        elif fmt == "yaml":
            print(yaml.safe_dump(obj, sort_keys=False))
        elif human is not None:
            human()
        else:
            print(yaml.safe_dump(obj, sort_keys=False))

    def _parse_pairs(pairs_list):
        updates = {}
        for pair in pairs_list or []:
            if "=" not in pair:
                print(f"[datadesk] Error: invalid key=value pair '{pair}'")
                sys.exit(1)
            k, v = pair.split("=", 1)
            updates[k.strip()] = v.strip()
        return updates

    def _fail(e):
        if isinstance(e, ValidationError):
            print(f"[datadesk] Error: {e}")
            for field, msg in sorted(e.errors.items()):
                print(f"  - {field}: {msg}")
        else:
            print(f"[datadesk] Error: {e}")
        sys.exit(1)

    def cmd_init(args):
        backend = {"type": "postgrest", "url": args.backend_url} if args.backend_url else None
        try:
            ws = init_workspace(pathlib.Path(args.path), sample=args.sample, force=args.force, backend=backend)
        except Exception as e:
            print(f"[datadesk] Error: {e}")
            sys.exit(1)
        def human():
            print(f"[datadesk] Initialized workspace at '{ws}'")
            print(f"[datadesk] Default workspace set in '{CONFIG_FILENAME}'")
        _emit({"workspace": str(ws), "sample": bool(args.sample)}, human)

    def cmd_tables_ls(args):
        ctx = _context()
        ids = ctx.catalog.table_ids()
        counts = table_counts(ctx, ids) if args.counts else {}
        rows = [
            {"id": tid, "title": ctx.catalog.get(tid)["title"], "count": counts.get(tid)}
            for tid in ids
        ]
        def human():
            if not rows:
                print("[datadesk] No tables configured.")
                return
            fields = ["id", "title"] + (["count"] if args.counts else [])
            _human_table([[r[f] if r[f] is not None else "?" for f in fields] for r in rows], fields)
        _emit(rows, human)

    def cmd_schema_show(args):
        ctx = _context()
        try:
            meta = ctx.catalog.get(args.table)
        except Exception as e:
            _fail(e)
        _emit(meta)

    def cmd_schema_detect(args):
        ctx = _context()
        try:
            meta = detect_schema(ctx.backend, args.table, known_tables=ctx.catalog.table_ids())
        except Exception as e:
            _fail(e)
        meta = {k: v for k, v in meta.items() if k not in ("id", "title", "detected")}
        _emit({args.table: meta})

    def cmd_records_ls(args):
        ctx = _context()
        try:
            meta = ctx.catalog.get(args.table)
            filters = parse_filter_expressions(args.filters, meta)
            rows = list_records(ctx, args.table, filters=filters, search=args.search, order=args.order)
        except Exception as e:
            _fail(e)
        def human():
            if not rows:
                print(f"[datadesk] No records found in {args.table}.")
                return
            cols = visible_columns(meta, 5)
            _human_table(
                [[column_display(c, r) for c in cols] for r in rows],
                [c["name"] for c in cols],
                [c["label"] for c in cols],
            )
        _emit(rows, human)

    def cmd_records_show(args):
        ctx = _context()
        try:
            rec = get_record(ctx, args.table, args.id)
        except Exception as e:
            _fail(e)
        _emit(rec)

    def cmd_records_add(args):
        ctx = _context()
        values = _parse_pairs(args.pairs)
        parent = None
        if args.parent:
            parts = args.parent.split(":")
            if len(parts) != 3 or not all(p.strip() for p in parts):
                print("[datadesk] Error: --parent expects TABLE:ID:FK")
                sys.exit(2)
            parent = ParentLink(table=parts[0].strip(), id=parts[1].strip(), foreign_key=parts[2].strip())
        try:
            row = create_record(ctx, args.table, values, parent=parent)
        except Exception as e:
            _fail(e)
        pk = ctx.catalog.get(args.table)["primaryKey"]
        _emit(row, lambda: print(f"[datadesk] Created {args.table} '{row.get(pk)}'"))

    def cmd_records_set(args):
        ctx = _context()
        updates = _parse_pairs(args.pairs)
        if not updates:
            print("[datadesk] Error: no key=value pairs provided")
            sys.exit(2)
        try:
            row = update_record(ctx, args.table, args.id, updates, partial=True)
        except Exception as e:
            _fail(e)
        changed = ", ".join(sorted(updates.keys()))
        _emit(row, lambda: print(f"[datadesk] Updated {args.table} '{args.id}' fields: {changed}"))

    def cmd_records_rm(args):
        ctx = _context()
        try:
            n = delete_record(ctx, args.table, args.id)
        except Exception as e:
            _fail(e)
        _emit({"table": args.table, "id": args.id, "deleted": n},
              lambda: print(f"[datadesk] Deleted {args.table} '{args.id}'"))

    def cmd_validate(args):
        ctx = _context()
        result = validate_catalog(ctx.catalog.raw_tables())
        errors = int(result.get("errors", 0))
        warnings = int(result.get("warnings", 0))
        def human():
            print(f"[datadesk] Validation results for {ctx.workspace}")
            print(f"Errors: {errors}, Warnings: {warnings}")
            for it in result.get("issues", []):
                sev = it.get("severity", "?")
                print(f" - [{sev.upper()}] {it.get('code', '?')} :: {it.get('path', '')} :: {it.get('message', '')}")
        _emit(result, human)
        if errors > 0 or (args.strict and warnings > 0):
            sys.exit(1)

    def cmd_web(args):
        try:
            # Flask is only needed for this command
            project_root = pathlib.Path(__file__).parent.parent.parent
            sys.path.insert(0, str(project_root))
            from web import app as web_app
        except ImportError as e:
            missing = getattr(e, "name", "") or ""
            if missing == "flask":
                print("[datadesk] Error: Flask is not installed.")
                print("   Install it with: pip install flask")
            else:
                print(f"[datadesk] Import error starting web UI: {e}")
            sys.exit(1)

        web_app.set_context(_context())
        print("Starting datadesk Web UI...")
        print(f"Access the interface at: http://localhost:{args.port}")
        print("=" * 50)
        try:
            web_app.run(host=args.host, port=args.port, debug=args.debug)
        except KeyboardInterrupt:
            print("\nShutting down datadesk Web UI...")
        except OSError as e:
            if "Address already in use" in str(e):
                print(f"[datadesk] Error: Port {args.port} is already in use.")
                print(f"   Try using a different port: desk web --port {args.port + 1}")
            else:
                print(f"[datadesk] Error starting web server: {e}")
            sys.exit(1)

    # Dispatch via table
    cmd = args.command
    if cmd == "tables":
        sub = getattr(args, "tables_cmd", None)
    elif cmd == "schema":
        sub = getattr(args, "schema_cmd", None)
    elif cmd == "records":
        sub = getattr(args, "rec_cmd", None)
    else:
        sub = None

    DISPATCH = {
        ("init", None): cmd_init,
        ("web", None): cmd_web,
        ("validate", None): cmd_validate,
        ("tables", "ls"): cmd_tables_ls,
        ("tables", "list"): cmd_tables_ls,
        ("schema", "show"): cmd_schema_show,
        ("schema", "detect"): cmd_schema_detect,
        ("records", "ls"): cmd_records_ls,
        ("records", "list"): cmd_records_ls,
        ("records", "show"): cmd_records_show,
        ("records", "view"): cmd_records_show,
        ("records", "add"): cmd_records_add,
        ("records", "set"): cmd_records_set,
        ("records", "rm"): cmd_records_rm,
        ("records", "remove"): cmd_records_rm,
    }

    handler = DISPATCH.get((cmd, sub))
    if handler:
        handler(args)
    else:
        if cmd == "tables":
            tables_parser.print_help()
        elif cmd == "schema":
            schema_parser.print_help()
        elif cmd == "records":
            records_parser.print_help()
        else:
            parser.print_help()


if __name__ == "__main__":
    main()
