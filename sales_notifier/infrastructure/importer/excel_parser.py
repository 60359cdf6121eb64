"""
Excel Parser - Outlet/Product Name Import
==========================================

Reads a list of outlet or product names from an Excel or CSV sheet and
auto-detects the column holding them.
Supports .xlsx, .xls, and .csv formats.
"""

import logging
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

# Common column name variations for auto-detection, most specific first
NAME_PATTERNS: Dict[str, List[str]] = {
    "outlets": ["nama_outlet", "outlet", "toko", "store", "nama", "name"],
    "products": ["nama_produk", "produk", "product", "item", "barang", "nama", "name"],
}

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xls")


class ExcelParser:
    """
    Spreadsheet parser for reference-data imports.

    Usage:
        parser = ExcelParser()
        names = parser.parse_names("outlets.xlsx", "outlets")
        # Returns: ["Toko Makmur", "Warung Bu Sri", ...]
    """

    def __init__(self):
        self.detected_column: Optional[str] = None

    def parse_names(
        self,
        file: Union[str, Path, BinaryIO],
        kind: str,
        filename: Optional[str] = None,
        sheet_name: Optional[str] = None,
    ) -> List[str]:
        """
        Parse a sheet and return the names found in it, in file order.

        Args:
            file: Path, or an open binary file (then ``filename`` gives the format)
            kind: "outlets" or "products"
            filename: Original file name, used for the extension
            sheet_name: Optional sheet name for Excel files

        Returns:
            Unique, non-blank names
        """
        if kind not in NAME_PATTERNS:
            raise ValueError(f"Unknown import kind: {kind}. Use 'outlets' or 'products'")

        df = self._read(file, filename, sheet_name)
        df.columns = [str(col).strip().lower().replace(" ", "_") for col in df.columns]

        column = self._find_column(df.columns, NAME_PATTERNS[kind])
        self.detected_column = column
        logger.info(f"Detected {kind} name column: {column}")

        if not column:
            raise ValueError(
                f"Could not detect the name column. Please ensure your file has a "
                f"column named like one of: {', '.join(NAME_PATTERNS[kind])}"
            )

        names: List[str] = []
        seen = set()
        for value in df[column].tolist():
            name = str(value).strip()
            # Skip empty rows
            if not name or name.lower() == "nan" or name.lower() in seen:
                continue
            seen.add(name.lower())
            names.append(name)

        logger.info(f"Parsed {len(names)} {kind} from {filename or file}")
        return names

    def _read(self, file, filename: Optional[str], sheet_name: Optional[str]) -> pd.DataFrame:
        if isinstance(file, (str, Path)):
            path = Path(file)
            if not path.exists():
                raise FileNotFoundError(f"File not found: {file}")
            filename = filename or path.name

        ext = Path(filename or "").suffix.lower()
        if ext not in SUPPORTED_EXTENSIONS:
            raise ValueError(f"Unsupported file format: {ext or 'unknown'}. Use .xlsx, .xls, or .csv")

        try:
            if ext == ".csv":
                return pd.read_csv(file, dtype=str)
            return pd.read_excel(file, sheet_name=sheet_name or 0, dtype=str)
        except Exception as e:
            logger.error(f"Failed to read file: {e}")
            raise ValueError(f"Could not read {filename}: {e}") from e

    def _find_column(self, columns, patterns: List[str]) -> Optional[str]:
        """Exact match first, then the first column containing a pattern."""
        for pattern in patterns:
            if pattern in columns:
                return pattern
        for pattern in patterns:
            for col in columns:
                if pattern in col:
                    return col
        return None

