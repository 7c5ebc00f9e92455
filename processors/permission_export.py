# =============================================================================
# processors/permission_export.py - Remap principals of a permission export
# =============================================================================

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from principals.errors import (
    DirectoryQueryError, DirectoryUnavailableError, InvalidDomainError, UnresolvedPrincipalError,
)
from principals.models import AccountType, ProcessingStats, ResolutionResult, ResolutionSource
from principals.remapper import PrincipalRemapper
from utils.csv_utils import CSVHandler

EXCEL_EXTENSIONS = {'.xlsx', '.xls'}

# SharePoint PrincipalType values
PRINCIPAL_TYPES = {
    '1': AccountType.USER,
    'user': AccountType.USER,
    '4': AccountType.GROUP,
    'securitygroup': AccountType.GROUP,
    'group': AccountType.GROUP,
}
SHAREPOINT_GROUP_TYPES = {'8', 'sharepointgroup'}

OUTPUT_COLUMNS = ['target_principal', 'resolution_source', 'found']


class PermissionExportProcessor:
    """
    Remaps every principal of a role-assignment export (CSV or Excel).
    Used when page specific permissions are carried over to the target site:
    each row keeps its original columns and gains the target principal and
    how it was resolved.
    """

    def __init__(self, remapper: PrincipalRemapper, principal_column: str = 'Principal',
                 type_column: str = 'PrincipalType', max_retries: int = 3,
                 backoff_seconds: float = 1.0, sleep: Callable[[float], None] = time.sleep):
        self.remapper = remapper
        self.principal_column = principal_column
        self.type_column = type_column
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep
        self.logger = logging.getLogger(self.__class__.__name__)

    def load_data(self, input_file: str, sheet_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Load the export; Excel sheets are read with pandas, CSV with CSVHandler"""
        if Path(input_file).suffix.lower() in EXCEL_EXTENSIONS:
            frame = pd.read_excel(input_file, sheet_name=sheet_name or 0, dtype=str)
            frame.columns = frame.columns.str.strip()
            frame = frame.dropna(how='all').fillna('')
            rows = frame.to_dict('records')
        else:
            rows, _ = CSVHandler.read_csv(input_file)

        if rows and self.principal_column not in rows[0]:
            raise ValueError(f"Column '{self.principal_column}' not found in {input_file}")
        self.logger.info(f"Loaded {len(rows)} permission rows from {input_file}")
        return rows

    def process(self, input_file: str, output_file: str,
                sheet_name: Optional[str] = None) -> ProcessingStats:
        """Main processing workflow"""
        self.logger.info(f"Starting {self.__class__.__name__} processing workflow")
        rows = self.load_data(input_file, sheet_name)
        processed = self.process_rows(rows)
        self.export(processed, output_file)
        stats = self.calculate_stats(processed)
        self.log_statistics(stats)
        return stats

    def process_rows(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self.remap_row(row) for row in rows]

    def remap_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        principal = str(row.get(self.principal_column) or '').strip()
        principal_type = str(row.get(self.type_column) or '').strip().lower().replace(' ', '')
        output = dict(row)

        if not principal:
            self.logger.warning("Skipping row with empty principal")
            output.update(target_principal='', resolution_source='skipped', found=False)
            return output

        if principal_type in SHAREPOINT_GROUP_TYPES:
            # site groups are recreated by name on the target, nothing to resolve
            output.update(target_principal=principal, resolution_source='skipped', found=True)
            return output

        try:
            result = self._remap_with_retry(principal, PRINCIPAL_TYPES.get(principal_type))
        except (DirectoryQueryError, InvalidDomainError) as e:
            self.logger.error(f"Could not remap {principal}: {e}")
            output.update(target_principal=principal, resolution_source='error', found=False)
            return output

        if not result.found and self.remapper.config.fail_on_unresolved:
            raise UnresolvedPrincipalError(principal)

        output.update(
            target_principal=result.resolved_upn,
            resolution_source=result.source.value,
            found=result.found,
        )
        return output

    def _remap_with_retry(self, principal: str,
                          account_type: Optional[AccountType]) -> ResolutionResult:
        attempt = 0
        while True:
            try:
                return self.remapper.remap_principal(principal, account_type)
            except DirectoryUnavailableError as e:
                self.logger.warning(f"Directory unavailable ({e}), switching to mapping-only mode")
                self.remapper.use_mapping_only()
            except DirectoryQueryError as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                self.logger.warning(f"Directory query for {principal} failed ({e}), retry {attempt} in {delay:.1f}s")
                self.sleep(delay)

    def export(self, rows: List[Dict[str, Any]], output_file: str) -> None:
        """Write processed rows next to their original columns"""
        if not rows:
            self.logger.warning("No data to write")
            return
        fieldnames = [c for c in rows[0].keys() if c not in OUTPUT_COLUMNS] + OUTPUT_COLUMNS
        if Path(output_file).suffix.lower() in EXCEL_EXTENSIONS:
            pd.DataFrame(rows, columns=fieldnames).to_excel(output_file, index=False)
            self.logger.info(f"Successfully wrote {len(rows)} records to {output_file}")
        else:
            CSVHandler.write_csv(rows, output_file, fieldnames)

    def calculate_stats(self, rows: List[Dict[str, Any]]) -> ProcessingStats:
        """Calculate processing statistics"""
        stats = ProcessingStats()
        for row in rows:
            source = row.get('resolution_source')
            if source == 'skipped':
                continue
            stats.total_records += 1
            if source == 'error':
                stats.errors += 1
                stats.failed_principals.append(str(row.get(self.principal_column)))
                continue

            resolution = ResolutionSource(source)
            stats.source_counts[resolution] = stats.source_counts.get(resolution, 0) + 1
            if resolution is ResolutionSource.MAPPING_OVERRIDE:
                stats.mapped_overrides += 1
            elif resolution is ResolutionSource.DIRECTORY_LOOKUP:
                stats.directory_lookups += 1
            elif row.get('found'):
                # built-in principals are kept as-is and count as resolved
                stats.builtin_principals += 1
            else:
                stats.unresolved += 1
                stats.failed_principals.append(str(row.get(self.principal_column)))
        return stats

    def log_statistics(self, stats: ProcessingStats) -> None:
        """Log processing statistics"""
        source_counts = {source.value: count for source, count in stats.source_counts.items()}
        self.logger.info(f"Resolution summary: {source_counts}, errors: {stats.errors}")
        self.logger.info(f"Success rate: {stats.success_rate:.1f}% ({stats.resolved}/{stats.total_records})")
        if stats.failed_principals:
            self.logger.warning(f"Unresolved principals: {stats.failed_principals[:10]}")
