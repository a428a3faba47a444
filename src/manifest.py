"""
Bulk resolution of manifest rows.

A manifest is already split into cells (CSV/Excel parsing is done by the
caller); each row's make / device / storage cells are joined into one raw
descriptor and resolved with DeviceResolver.match_device_string in a plain
sequential loop. Rows are independent of each other.

Review status per row:
    - auto:    resolved (high or medium) -> can be priced without review
    - storage: make+model known, storage variant must be picked
    - manual:  no usable match, a human must choose the device
"""

import io
from typing import Callable, Dict, Optional

import pandas as pd

from log_setup import get_logger
from models import CONFIDENCE_HIGH, CONFIDENCE_LOW, CONFIDENCE_MEDIUM, MatchResult
from resolver import DeviceResolver

logger = get_logger("manifest")

REVIEW_AUTO = "auto"
REVIEW_STORAGE = "storage"
REVIEW_MANUAL = "manual"

RESULT_COLUMNS = [
    'raw_input', 'quantity', 'device_id', 'device_name', 'storage',
    'match_confidence', 'needs_storage_selection', 'needs_manual_selection',
    'storage_options', 'method', 'review_status',
]


def _cell(value) -> str:
    if value is None:
        return ''
    if not isinstance(value, str) and pd.isna(value):
        return ''
    return str(value).strip()


def build_raw_input(device, make=None, storage=None) -> str:
    """
    Join manifest cells into one descriptor: "<make> <device> <storage>".

    Examples:
        ('iPhone 11', 'Apple', '64GB') -> 'Apple iPhone 11 64GB'
        ('IPH1164G', None, None)       -> 'IPH1164G'
        ('', None, None)               -> ''
    """
    parts = [_cell(make), _cell(device), _cell(storage)]
    if not parts[1]:
        return ''
    return ' '.join(p for p in parts if p)


def parse_quantity(value) -> int:
    """Positive integer quantity; anything else counts as 1."""
    text = _cell(value)
    try:
        quantity = int(float(text))
    except (ValueError, OverflowError):
        return 1
    return quantity if quantity > 0 else 1


def review_status(result: MatchResult) -> str:
    if result.is_resolved:
        return REVIEW_AUTO
    if result.needs_storage_selection:
        return REVIEW_STORAGE
    return REVIEW_MANUAL


def resolve_manifest(
    df_input: pd.DataFrame,
    resolver: DeviceResolver,
    device_col: str,
    make_col: Optional[str] = None,
    storage_col: Optional[str] = None,
    quantity_col: Optional[str] = None,
    category: Optional[str] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> pd.DataFrame:
    """
    Resolve every manifest row against the device library.

    Rows with an empty device cell are skipped. Backing-store errors are not
    caught per row: a failing library or alias store fails the whole import.

    Args:
        df_input: manifest rows (one device line per row)
        resolver: configured DeviceResolver
        device_col: column holding the free-text device descriptor
        make_col / storage_col: optional columns joined into the descriptor
        quantity_col: optional quantity column (defaults to 1 per row)
        category: restrict matching to one library category
        progress_callback: optional callable(current, total)

    Returns:
        DataFrame with RESULT_COLUMNS, one row per non-empty manifest row.
    """
    df = df_input.copy()
    df.columns = [str(c).strip() for c in df.columns]
    device_col = device_col.strip()
    make_col = make_col.strip() if make_col else make_col
    storage_col = storage_col.strip() if storage_col else storage_col
    quantity_col = quantity_col.strip() if quantity_col else quantity_col
    total = len(df)

    rows = []
    for position, row in enumerate(df.to_dict('records'), start=1):
        raw_input = build_raw_input(
            row.get(device_col),
            row.get(make_col) if make_col else None,
            row.get(storage_col) if storage_col else None,
        )
        if raw_input:
            result = resolver.match_device_string(raw_input, category)
            record = {k: v for k, v in result.to_dict().items() if k in RESULT_COLUMNS}
            record.update({
                'raw_input': raw_input,
                'quantity': parse_quantity(row.get(quantity_col)) if quantity_col else 1,
                'storage_options': ', '.join(result.storage_options or []),
                'review_status': review_status(result),
            })
            rows.append(record)

        if progress_callback and (position % 50 == 0 or position == total):
            progress_callback(position, total)

    df_results = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    metrics = compute_coverage_metrics(df_results)
    logger.info(
        "Resolved manifest: %d rows, %d auto, %d storage, %d manual",
        metrics['total_rows'], metrics['auto_count'],
        metrics['storage_count'], metrics['manual_count'],
    )
    return df_results


# ---------------------------------------------------------------------------
# Coverage metrics
# ---------------------------------------------------------------------------

def compute_coverage_metrics(df_results: pd.DataFrame) -> Dict[str, object]:
    """
    Summary numbers for a resolved manifest.

    Returns a dict with:
        total_rows / total_devices (quantity-weighted)
        auto_count / auto_rate, storage_count / storage_rate,
        manual_count / manual_rate
        confidence_breakdown: {high, medium, low} -> row count
        method_breakdown: method -> row count
    """
    total = len(df_results)
    if total == 0:
        return {'total_rows': 0, 'total_devices': 0,
                'auto_count': 0, 'auto_rate': 0.0,
                'storage_count': 0, 'storage_rate': 0.0,
                'manual_count': 0, 'manual_rate': 0.0,
                'confidence_breakdown': {CONFIDENCE_HIGH: 0, CONFIDENCE_MEDIUM: 0, CONFIDENCE_LOW: 0},
                'method_breakdown': {}}

    status_counts = df_results['review_status'].value_counts()
    auto = int(status_counts.get(REVIEW_AUTO, 0))
    storage = int(status_counts.get(REVIEW_STORAGE, 0))
    manual = int(status_counts.get(REVIEW_MANUAL, 0))

    confidence_counts = df_results['match_confidence'].value_counts()
    confidence_breakdown = {
        level: int(confidence_counts.get(level, 0))
        for level in (CONFIDENCE_HIGH, CONFIDENCE_MEDIUM, CONFIDENCE_LOW)
    }
    method_breakdown = {k: int(v) for k, v in df_results['method'].value_counts().items()}

    return {
        'total_rows': total,
        'total_devices': int(df_results['quantity'].sum()),
        'auto_count': auto,
        'auto_rate': round(auto / total * 100, 1),
        'storage_count': storage,
        'storage_rate': round(storage / total * 100, 1),
        'manual_count': manual,
        'manual_rate': round(manual / total * 100, 1),
        'confidence_breakdown': confidence_breakdown,
        'method_breakdown': method_breakdown,
    }


# ---------------------------------------------------------------------------
# Excel export
# ---------------------------------------------------------------------------

def export_results_excel(df_results: pd.DataFrame) -> bytes:
    """
    Write a resolved manifest to an .xlsx workbook.

    Sheets: "Resolved" (auto rows), "Needs Review" (storage + manual rows)
    and "Summary" (coverage metrics).
    """
    metrics = compute_coverage_metrics(df_results)
    summary_rows = [
        {'metric': key, 'value': value}
        for key, value in metrics.items()
        if not isinstance(value, dict)
    ]
    for level, count in metrics['confidence_breakdown'].items():
        summary_rows.append({'metric': f'confidence_{level}', 'value': count})
    for method, count in metrics['method_breakdown'].items():
        summary_rows.append({'metric': f'method_{method}', 'value': count})

    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        resolved = df_results[df_results['review_status'] == REVIEW_AUTO]
        review = df_results[df_results['review_status'] != REVIEW_AUTO]
        resolved.to_excel(writer, sheet_name='Resolved', index=False)
        review.to_excel(writer, sheet_name='Needs Review', index=False)
        pd.DataFrame(summary_rows, columns=['metric', 'value']).to_excel(
            writer, sheet_name='Summary', index=False
        )
    return output.getvalue()
