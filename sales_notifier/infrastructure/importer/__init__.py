from .excel_parser import ExcelParser, NAME_PATTERNS
