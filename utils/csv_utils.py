# =============================================================================
# utils/csv_utils.py - CSV utilities
# =============================================================================

import csv
from typing import List, Dict, Any, Optional, Tuple
import logging


class CSVHandler:
    """Utilities for reading and writing CSV files"""

    @staticmethod
    def read_rows(file_path: str, encoding: str = 'utf-8-sig',
                  delimiter: str = ',') -> List[Tuple[int, List[str]]]:
        """Read a headerless CSV file and return (line number, fields) pairs"""
        logger = logging.getLogger(__name__)

        try:
            with open(file_path, 'r', newline='', encoding=encoding) as file:
                reader = csv.reader(file, delimiter=delimiter)
                rows = [(reader.line_num, row) for row in reader]

            logger.debug(f"Read {len(rows)} raw rows from {file_path}")
            return rows

        except FileNotFoundError:
            logger.error(f"Input file {file_path} not found")
            raise
        except (OSError, csv.Error) as e:
            logger.error(f"Error reading CSV {file_path}: {e}")
            raise

    @staticmethod
    def read_csv(file_path: str, encoding: str = 'utf-8-sig',
                 delimiter: str = ',') -> Tuple[List[Dict[str, Any]], List[str]]:
        """Read CSV file with a header row and return (records, headers)"""
        logger = logging.getLogger(__name__)

        try:
            with open(file_path, 'r', newline='', encoding=encoding) as file:
                dict_reader = csv.DictReader(file, delimiter=delimiter)
                data = list(dict_reader)
                headers = list(dict_reader.fieldnames or [])

            logger.info(f"CSV Headers: {headers[:10]}")
            logger.info(f"Successfully read {len(data)} records from {file_path}")
            return data, headers

        except FileNotFoundError:
            logger.error(f"Input file {file_path} not found")
            raise
        except (OSError, csv.Error) as e:
            logger.error(f"Error reading CSV: {e}")
            raise

    @staticmethod
    def write_csv(data: List[Dict[str, Any]], output_path: str,
                  fieldnames: Optional[List[str]] = None) -> None:
        """Write data to CSV file"""
        logger = logging.getLogger(__name__)

        if not data:
            logger.warning("No data to write")
            return

        if fieldnames is None:
            fieldnames = list(data[0].keys())

        try:
            with open(output_path, 'w', newline='', encoding='utf-8') as file:
                writer = csv.DictWriter(file, fieldnames=fieldnames, extrasaction='ignore')
                writer.writeheader()
                writer.writerows(data)

            logger.info(f"Successfully wrote {len(data)} records to {output_path}")

        except OSError as e:
            logger.error(f"Error writing CSV: {e}")
            raise
