"""Data analytics API for receipt reports.

This module provides a high-level interface for filtering receipts by month range, report
type and reimbursed member, and for summarising them (totals, category summaries, monthly
trends).
"""
import datetime
import enum
import logging
from typing import List, Optional

import pandas as pd

from ..core.receipt import Receipt

FRAME_COLUMNS: List[str] = [
    'id',
    'date',
    'month',
    'title',
    'vendor',
    'amount',
    'category',
    'is_reimbursement',
    'reimbursed_by',
    'created_at',
]

SUMMARY_COLUMNS: List[str] = ['category', 'amount', 'count']
TREND_COLUMNS: List[str] = ['month', 'amount']

ALL: str = 'all'


class ReportType(enum.StrEnum):
    All = 'all'
    Normal = 'normal'
    Reimbursement = 'reimbursement'


def _normalize_month(date: str) -> str:
    return (date or '')[:7].replace('/', '-')


def to_frame(receipts: List[Receipt]) -> pd.DataFrame:
    """Build a DataFrame with one row per receipt, in the given order.

    The ``month`` column holds the 'YYYY-MM' prefix of the date ('' when undated).

    Args:
        receipts (List[Receipt]): Receipts to convert.

    Returns:
        pd.DataFrame: Frame with :data:`FRAME_COLUMNS`.
    """
    if not receipts:
        return pd.DataFrame(columns=FRAME_COLUMNS)

    df = pd.DataFrame([{
        'id': r.id,
        'date': r.date,
        'month': _normalize_month(r.date),
        'title': r.title,
        'vendor': r.vendor,
        'amount': r.amount,
        'category': r.category,
        'is_reimbursement': r.is_reimbursement,
        'reimbursed_by': r.reimbursed_by,
        'created_at': r.created_at,
    } for r in receipts], columns=FRAME_COLUMNS)
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0).astype('int64')
    df['is_reimbursement'] = df['is_reimbursement'].astype(bool)
    return df


def available_months(receipts: List[Receipt]) -> List[str]:
    """Return the distinct 'YYYY-MM' months of the receipts, newest first."""
    df = to_frame(receipts)
    if df.empty:
        return []
    months = df.loc[df['month'].str.fullmatch(r'\d{4}-\d{2}'), 'month']
    return sorted(months.unique().tolist(), reverse=True)


def target_months(month: str, range_months: int = 1) -> List[str]:
    """Return ``month`` and the ``range_months - 1`` months before it.

    Args:
        month (str): The last month of the range as 'YYYY-MM'.
        range_months (int): Number of months in the range.

    Returns:
        List[str]: Months as 'YYYY-MM', newest first. Empty for '' and 'all'.
    """
    if not month or month == ALL:
        return []
    try:
        end = pd.Period(month, freq='M')
    except ValueError:
        logging.warning(f'Invalid month "{month}".')
        return []
    return [str(end - i) for i in range(max(int(range_months), 1))]


def filter_receipts(
        receipts: List[Receipt],
        month: str,
        range_months: int = 1,
        report_type: str = ReportType.All,
        member: str = ALL,
) -> List[Receipt]:
    """Select the receipts of a report.

    Args:
        receipts (List[Receipt]): Receipts to filter.
        month (str): Last month of the range ('YYYY-MM'). '' selects nothing, 'all'
            selects every dated receipt.
        range_months (int): Number of months in the range, counting back from ``month``.
        report_type (str): One of :class:`ReportType`.
        member (str): Reimbursed member name, or 'all'.

    Returns:
        List[Receipt]: The matching receipts, in their original order.
    """
    if not month:
        return []

    df = to_frame(receipts)
    if df.empty:
        return []

    mask = df['date'] != ''
    if month != ALL:
        mask &= df['month'].isin(target_months(month, range_months))

    report_type = ReportType(report_type)
    if report_type == ReportType.Normal:
        mask &= ~df['is_reimbursement']
    elif report_type == ReportType.Reimbursement:
        mask &= df['is_reimbursement']

    if member and member != ALL:
        mask &= df['reimbursed_by'] == member

    return [receipts[i] for i in df.index[mask.to_numpy(dtype=bool)]]


def total_amount(receipts: List[Receipt]) -> int:
    """Sum of the receipt amounts."""
    df = to_frame(receipts)
    if df.empty:
        return 0
    return int(df['amount'].sum())


def category_summary(receipts: List[Receipt]) -> pd.DataFrame:
    """Total amount and receipt count per category, largest amount first.

    Returns:
        pd.DataFrame: Frame with :data:`SUMMARY_COLUMNS`.
    """
    df = to_frame(receipts)
    if df.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    summary = (
        df.groupby('category', sort=False)
        .agg(amount=('amount', 'sum'), count=('id', 'count'))
        .reset_index()
    )
    summary = summary[summary['count'] > 0]
    return summary.sort_values(by='amount', ascending=False, kind='stable').reset_index(drop=True)[SUMMARY_COLUMNS]


def monthly_trend(receipts: List[Receipt], year: Optional[int] = None) -> pd.DataFrame:
    """Total amount per month of a calendar year.

    Args:
        receipts (List[Receipt]): Receipts to aggregate.
        year (Optional[int]): The calendar year. Defaults to the current year.

    Returns:
        pd.DataFrame: Twelve rows with :data:`TREND_COLUMNS`, months as 'YYYY-MM'.
    """
    year = year or datetime.date.today().year
    months = [f'{year}-{m:02d}' for m in range(1, 13)]

    df = to_frame(receipts)
    if df.empty:
        totals = pd.Series(0, index=months, dtype='int64')
    else:
        totals = df.groupby('month')['amount'].sum().reindex(months, fill_value=0).astype('int64')

    return pd.DataFrame({'month': months, 'amount': totals.values}, columns=TREND_COLUMNS)
