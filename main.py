# =============================================================================
# main.py - CLI entry point
# =============================================================================

import argparse
import contextlib
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from principals.directory_service import LdapDirectoryService
from principals.domain_resolver import DomainResolver
from principals.errors import PrincipalResolutionError
from principals.models import AccountType, SPVersion, TransformationConfig
from principals.principal_search import PrincipalSearchService
from principals.remapper import PrincipalRemapper
from processors.permission_export import PermissionExportProcessor
from utils.config import Config


def setup_logging(level: str = "INFO") -> str:
    """Setup logging configuration with both console and file output"""
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    # Generate date-stamped filename
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_filename = log_dir / f"principal_remapper_{timestamp}.log"

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_filename, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized - Console: {level.upper()}, File: DEBUG")
    logger.info(f"Log file: {log_filename}")

    return str(log_filename)


def build_run_config(args, config: Config) -> TransformationConfig:
    """Combine environment configuration with command line overrides"""
    return config.to_transformation_config(
        user_mapping_file=getattr(args, 'mapping_file', None),
        source_version=SPVersion.parse(args.source_version) if getattr(args, 'source_version', None) else None,
        resolve_with_directory=False if getattr(args, 'mapping_only', False) else None,
    )


def open_directory(config: Config, run_config: TransformationConfig) -> Optional[LdapDirectoryService]:
    """Directory client for on-premises runs, or None when only the mapping file is used"""
    logger = logging.getLogger(__name__)

    if not run_config.allows_directory_lookup:
        logger.info("Directory lookups disabled for this run")
        return None
    if not config.validate_ad_config():
        logger.warning(f"Missing AD settings {config.get_missing_ad_vars()}, using the mapping file only")
        return None
    return LdapDirectoryService(
        config.ad_server, config.ad_username, config.ad_password,
        base_dn=config.base_dn, timeout=run_config.directory_timeout,
    )


def build_remapper(run_config: TransformationConfig,
                   directory: Optional[LdapDirectoryService]) -> PrincipalRemapper:
    search_service = None
    if directory is not None:
        search_service = PrincipalSearchService(directory, DomainResolver(directory))
    return PrincipalRemapper(run_config, search_service=search_service)


def handle_remap(args, config: Config) -> None:
    """Remap principals given on the command line"""
    run_config = build_run_config(args, config)
    account_type = AccountType(args.type) if args.type else None
    directory = open_directory(config, run_config)

    with directory if directory is not None else contextlib.nullcontext():
        remapper = build_remapper(run_config, directory)
        for principal in args.principals:
            result = remapper.remap_principal(principal, account_type)
            print(f"{result.original}\t{result.resolved_upn}\t{result.source.value}")


def handle_resolve_domain(args, config: Config) -> None:
    """Resolve friendly domain names to LDAP connection strings"""
    run_config = build_run_config(args, config)
    directory = open_directory(config, run_config)
    if directory is None:
        raise PrincipalResolutionError("Domain resolution needs an on-premises directory connection")

    with directory:
        resolver = DomainResolver(directory)
        if not args.domains:
            print(resolver.get_ldap_connection_string())
        for name in args.domains:
            fqdn = resolver.resolve_friendly_domain_to_ldap(name)
            print(f"{name}\t{fqdn}\t{resolver.build_ldap_connection_string(fqdn)}")


def handle_export(args, config: Config) -> None:
    """Remap every principal of a permission export file"""
    logger = logging.getLogger(__name__)
    run_config = build_run_config(args, config)
    directory = open_directory(config, run_config)

    with directory if directory is not None else contextlib.nullcontext():
        processor = PermissionExportProcessor(
            build_remapper(run_config, directory),
            principal_column=args.principal_column,
            type_column=args.type_column,
        )
        stats = processor.process(args.input_file, args.output_file, args.sheet_name)

    logger.info("Processing completed successfully!")
    logger.info(f"Final success rate: {stats.success_rate:.1f}%")


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(description="SharePoint principal remapper")
    subparsers = parser.add_subparsers(dest='command', help='Command')

    def add_run_options(command_parser):
        command_parser.add_argument('--mapping-file', help='User mapping CSV (source,target)')
        command_parser.add_argument('--source-version', help='Source SharePoint version, e.g. SP2013')
        command_parser.add_argument('--mapping-only', action='store_true',
                                    help='Do not query Active Directory')

    remap_parser = subparsers.add_parser('remap', help='Remap one or more principals')
    remap_parser.add_argument('principals', nargs='+', help='Principal, e.g. i:0#.w|DOMAIN\\user')
    remap_parser.add_argument('--type', choices=[t.value for t in AccountType], help='Account type')
    add_run_options(remap_parser)

    domain_parser = subparsers.add_parser('resolve-domain', help='Resolve friendly domain names')
    domain_parser.add_argument('domains', nargs='*', help='Friendly (NetBIOS) domain names')

    export_parser = subparsers.add_parser('export', help='Remap a permission export (CSV or Excel)')
    export_parser.add_argument('input_file', help='Input CSV/Excel file path')
    export_parser.add_argument('output_file', help='Output CSV/Excel file path')
    export_parser.add_argument('--sheet-name', help='Excel sheet name (optional)')
    export_parser.add_argument('--principal-column', default='Principal', help='Column holding the principal')
    export_parser.add_argument('--type-column', default='PrincipalType', help='Column holding the principal type')
    add_run_options(export_parser)

    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)
    config = Config()

    if args.command == 'export' and not Path(args.input_file).exists():
        logger.error(f"Input file not found: {args.input_file}")
        sys.exit(1)

    handlers = {
        'remap': handle_remap,
        'resolve-domain': handle_resolve_domain,
        'export': handle_export,
    }

    try:
        handlers[args.command](args, config)
    except (PrincipalResolutionError, FileNotFoundError, ValueError) as e:
        logger.error(f"Processing failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
