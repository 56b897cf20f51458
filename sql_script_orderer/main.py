from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from sql_script_orderer.core.database import DatabaseConnection
from sql_script_orderer.core.exceptions import OrderingError
from sql_script_orderer.core.metadata_extractor import MetadataExtractor
from sql_script_orderer.core.options import ScriptBehavior, ScriptingOptions
from sql_script_orderer.core.orderer import DependencyOrderer
from sql_script_orderer.core.snapshot import EntitySnapshot
from sql_script_orderer.utils.config import Config
from sql_script_orderer.utils.logger import get_logger, setup_logger
from sql_script_orderer.utils.report_generator import export_report, ordering_rows
from sql_script_orderer.utils.urn_loader import load_urn_file

logger = get_logger(__name__)

PASSWORD_ENV = "SQL_ORDERER_PASSWORD"


def _add_connection_args(parser: argparse.ArgumentParser, required: bool) -> None:
    group = parser.add_argument_group("connection")
    group.add_argument("--server", required=required, help="SQL Server host name")
    group.add_argument("--database", required=required, help="Database name")
    group.add_argument("--auth", choices=["sql", "windows", "entra"], help="Authentication type")
    group.add_argument("--username")
    group.add_argument("--password", help=f"Password for SQL auth (defaults to ${PASSWORD_ENV})")
    group.add_argument("--no-encrypt", action="store_true")
    group.add_argument("--trust-cert", action="store_true")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sql-script-orderer", description="Order SQL Server entities for scripting")
    parser.add_argument("--config", type=Path, help="Settings file (default: config/settings.json)")
    parser.add_argument("--log-dir", help="Directory for log files")
    parser.add_argument("-v", "--verbose", action="store_true", help="Echo INFO messages to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    order = sub.add_parser("order", help="Order identifiers from a file")
    order.add_argument("urns", type=Path, help="File with one identifier per line")
    order.add_argument("--snapshot", type=Path, help="Entity snapshot to order against (no live connection)")
    _add_connection_args(order, required=False)
    order.add_argument("--data", action="store_true", default=None, help="Script table data")
    order.add_argument("--no-ddl", action="store_true", help="Script data only")
    order.add_argument("--associations", action="store_true", default=None)
    order.add_argument("--owner", action="store_true", default=None)
    order.add_argument("--permissions", action="store_true", default=None)
    order.add_argument("--behavior", help="create, drop, drop_and_create or create_or_alter")
    order.add_argument("--design-mode", action="store_true", help="Treat the server as being designed offline")
    order.add_argument("--export", type=Path, help="Write the ordering to .csv, .json, .html, .xlsx or .pdf")

    snap = sub.add_parser("snapshot", help="Capture entity metadata and dependencies of a database")
    _add_connection_args(snap, required=True)
    snap.add_argument("--output", type=Path, required=True, help="Snapshot file to write")
    snap.add_argument("--schema", help="Only capture objects of this schema")
    snap.add_argument("--no-server", action="store_true", help="Skip logins and server roles")

    return parser


def _connection(args: argparse.Namespace, config: Config) -> DatabaseConnection:
    db_config = config.get_section("database")
    return DatabaseConnection(
        server=args.server,
        database=args.database,
        auth_type=args.auth or db_config.get("default_auth_type", "windows"),
        username=args.username,
        password=args.password or os.environ.get(PASSWORD_ENV),
        encrypt=not args.no_encrypt,
        trust_cert=args.trust_cert,
        driver=db_config.get("driver", "ODBC Driver 18 for SQL Server"),
        timeout=int(db_config.get("command_timeout", 300)),
    )


def _options(args: argparse.Namespace, config: Config) -> ScriptingOptions:
    defaults = ScriptingOptions.from_config(config)
    return ScriptingOptions(
        include_ddl=False if args.no_ddl else defaults.include_ddl,
        include_data=True if (args.data or args.no_ddl) else defaults.include_data,
        include_associations=args.associations or defaults.include_associations,
        include_owner=args.owner or defaults.include_owner,
        include_permissions=args.permissions or defaults.include_permissions,
        behavior=ScriptBehavior.parse(args.behavior) if args.behavior else defaults.behavior,
        filestream_column=defaults.filestream_column,
    ).validate()


def run_order(args: argparse.Namespace, config: Config) -> int:
    urns = load_urn_file(args.urns)
    options = _options(args, config)

    if args.snapshot:
        snapshot = EntitySnapshot.load(args.snapshot)
        catalog = snapshot.catalog
    elif args.server and args.database:
        connection = _connection(args, config)
        snapshot = MetadataExtractor(connection).extract(progress_callback=logger.info)
        catalog = connection
    else:
        raise ValueError("Either --snapshot or --server and --database is required")

    server = snapshot.server
    if args.design_mode:
        server = replace(server, is_design_mode=True)

    orderer = DependencyOrderer(snapshot.repository, catalog=catalog, options=options, server=server)
    plan = orderer.plan(urns)

    for urn in plan.urns:
        print(urn)

    if args.export:
        rows = ordering_rows(plan.urns, orderer.kind_table, plan.embedded)
        export_report(rows, args.export)
        logger.info(f"Exported {len(rows)} rows to {args.export}")
    return 0


def run_snapshot(args: argparse.Namespace, config: Config) -> int:
    connection = _connection(args, config)
    ok, message = connection.test_connection()
    if not ok:
        raise ConnectionError(message)
    snapshot = MetadataExtractor(connection).extract(
        progress_callback=logger.info,
        schema_filter=args.schema,
        include_server=not args.no_server,
    )
    snapshot.save(args.output)
    print(f"Saved {len(snapshot.repository)} entities to {args.output}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = Config(args.config)
    log_config = config.get_section("logging")
    setup_logger(
        log_dir=args.log_dir or log_config.get("log_dir", "logs"),
        level=log_config.get("level", "INFO"),
        console_level="INFO" if args.verbose else log_config.get("console_level", "WARNING"),
    )

    commands = {"order": run_order, "snapshot": run_snapshot}
    try:
        return commands[args.command](args, config)
    except (OrderingError, ValueError, ConnectionError, RuntimeError) as exc:
        logger.error(f"{args.command} failed: {exc}", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
