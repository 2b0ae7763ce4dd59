"""
ldap_sync.__main__
~~~~~~~~~~~~~~~~~~
"""
import argparse
import importlib
import logging
import os
import typing

from . import logger
from .config import Settings, get_settings_or_exit
from .ldap import Ldap3DirectoryClient
from .syncer import SyncReport, run_synchronization
from .targets.sqla import SqlaObjectStore, SqlaSchema, establish_and_return_session


def load_models(reference: str) -> typing.Any:
    """Import the declarative base given as ``module:attribute``."""
    module_name, _, attribute = reference.partition(':')
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attribute or 'Base')
    except (ImportError, AttributeError) as e:
        logger.critical("Cannot load models %r: %s, quitting", reference, e)
        exit(2)


def get_db_uri_or_exit(db_uri: str | None) -> str:
    if db_uri is not None:
        return db_uri
    try:
        return os.environ['LDAP_SYNC_DB_URI']
    except KeyError:
        logger.critical('LDAP_SYNC_DB_URI not set, quitting')
        exit(2)


def sync_production(args: argparse.Namespace) -> SyncReport:
    settings = get_settings_or_exit(args.config)
    if args.simulate:
        settings = settings.with_simulation()
    logger.setLevel(effective_level(settings, args.loglevel))
    logger.info("Starting the sync. See --help for other options.")

    schema = SqlaSchema(load_models(args.models))
    db_session = establish_and_return_session(get_db_uri_or_exit(args.db_uri))
    store = SqlaObjectStore(db_session, schema)
    try:
        return run_synchronization(
            settings, store, schema, Ldap3DirectoryClient(), time_limit=args.time_limit
        )
    finally:
        db_session.close()


NAME_LEVEL_MAPPING: dict[str, int] = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL,
}


def effective_level(settings: Settings, loglevel: str | None) -> int:
    """An explicit level wins, otherwise ``trace_log`` switches the trace on."""
    if loglevel is not None:
        return NAME_LEVEL_MAPPING[loglevel]
    return logging.INFO if settings.trace_log else logging.WARNING


parser = argparse.ArgumentParser(description="Rule based LDAP syncer")
parser.add_argument('--config', dest='config', default=None,
                    help="The JSON configuration file (default: $LDAP_SYNC_CONFIG)")
parser.add_argument('--db-uri', dest='db_uri', default=None,
                    help="The database of the object store (default: $LDAP_SYNC_DB_URI)")
parser.add_argument('--models', dest='models', required=True,
                    help="The declarative base of the object store, as module:attribute")
parser.add_argument('--simulate', dest='simulate', action='store_true', default=False,
                    help="Do not modify the object store")
parser.add_argument('--time-limit', dest='time_limit', type=float, default=None,
                    help="The time budget of the run in seconds (informational)")
parser.add_argument("-l", "--log", dest='loglevel', type=str,
                    choices=list(NAME_LEVEL_MAPPING.keys()), default=None,
                    help="Set the loglevel")
parser.add_argument("-d", "--debug", dest='loglevel', action='store_const',
                    const='debug', help="Short for --log=debug")


def add_stdout_logging(logger: logging.Logger, level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    fmt = logging.Formatter("%(levelname)s %(asctime)s %(name)s %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    logger.setLevel(level)


def main(argv: typing.Sequence[str] | None = None) -> int:
    args = parser.parse_args(argv)

    add_stdout_logging(logger, level=NAME_LEVEL_MAPPING.get(args.loglevel, logging.WARNING))

    try:
        report = sync_production(args)
    except KeyboardInterrupt:
        logger.fatal("SIGINT received, stopping.")
        logger.info("Re-run the syncer to retain a consistent state.")
        return 1
    if report.failed_rules:
        logger.warning("%d sync rule(s) failed: %s", len(report.failed_rules),
                       ", ".join(map(str, report.failed_rules)))
    return 0


if __name__ == '__main__':
    exit(main())
