"""Confidence vocabulary shared by the extractors and the data quality checks.

Extractors tag every value they find with one of the extraction levels below.
The validation thresholds are expressed in the same scale so that, for
example, a value found only by a fallback pattern is exactly what the low
confidence checks flag.
"""

# Extraction
AI_RESULT = 0.9
EXPLICIT_PATTERN = 0.9
TOTAL_KEYWORD = 0.9
KEYWORD_MATCH = 0.8
ADDRESS_MATCH = 0.8
STREET_MATCH = 0.7
PARTY_NAME = 0.7
COUNTRY_GUESS = 0.7
TABLE_ROW = 0.6
FALLBACK_MATCH = 0.5
DEFAULT_CURRENCY = 0.5

SPREADSHEET_CELL = 0.7
SPREADSHEET_HEADER = 0.8
SPREADSHEET_TYPED = 0.9

# Validation
MIN_IDENTIFIER = 0.5
MIN_DATE = 0.6
SCORE_LOW = 0.5
SCORE_MEDIUM = 0.7
MIN_LINE = 0.4
