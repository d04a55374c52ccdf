# chapter_portal/utils/addressing.py
# A1 addressing for the spreadsheet service.
# Data-row index 0 is sheet row 2 (row 1 holds the header).

HEADER_ROWS = 1


def column_letter(index: int) -> str:
    """Zero-based column index to letters: 0 -> A, 25 -> Z, 26 -> AA, 702 -> AAA."""
    if index < 0:
        raise ValueError(f"column index must be >= 0, got {index}")
    n = index + 1
    label = ""
    while n:
        n, remainder = divmod(n - 1, 26)
        label = chr(65 + remainder) + label
    return label


def column_index(letters: str) -> int:
    """Inverse of column_letter."""
    n = 0
    for ch in letters.upper():
        if not "A" <= ch <= "Z":
            raise ValueError(f"not a column label: {letters!r}")
        n = n * 26 + (ord(ch) - 64)
    return n - 1


def sheet_row(data_index: int) -> int:
    """Zero-based data-row index to the one-based sheet row number."""
    if data_index < 0:
        raise ValueError(f"row index must be >= 0, got {data_index}")
    return data_index + HEADER_ROWS + 1


def structural_index(data_index: int) -> int:
    """Zero-based data-row index to the zero-based grid index used by row deletes."""
    return data_index + HEADER_ROWS


def quote_title(title: str) -> str:
    escaped = (title or "").replace("'", "''")
    return f"'{escaped}'"


def a1_range(title: str, range_spec: str = "") -> str:
    if not range_spec:
        return quote_title(title)
    return f"{quote_title(title)}!{range_spec}"


def cell_range(title: str, data_index: int, col: int, width: int = 1, height: int = 1) -> str:
    """Rectangle starting at (data_index, col), e.g. 'Rush Index'!H4 or 'Sigma'!A2:C3."""
    top = sheet_row(data_index)
    start = f"{column_letter(col)}{top}"
    if width == 1 and height == 1:
        return a1_range(title, start)
    end = f"{column_letter(col + width - 1)}{top + height - 1}"
    return a1_range(title, f"{start}:{end}")
