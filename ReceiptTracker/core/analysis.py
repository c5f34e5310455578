"""Receipt file analysis and draft handling.

Loads receipt files as data URIs, asks the remote image-understanding endpoint for field
suggestions, and builds the final :class:`~ReceiptTracker.core.receipt.Receipt` from an
edited draft.
"""
import dataclasses
import hashlib
import logging
import mimetypes
import pathlib
from typing import Any, Dict, List, Optional, Tuple

from . import service
from .receipt import (
    AssetType,
    DEFAULT_CATEGORIES,
    PLACEHOLDER_VENDOR,
    PaymentMethod,
    Receipt,
    decode_data_uri,
    encode_data_uri,
    generate_receipt_id,
    now_iso,
    today_str,
)
from ..settings import lib
from ..status import status

PDF_MIME_TYPE: str = 'application/pdf'


def asset_type_for(mime_type: str) -> str:
    """Return the asset type of a file with the given mime type."""
    if not mime_type:
        return AssetType.NoAsset.value
    return AssetType.Pdf.value if mime_type == PDF_MIME_TYPE else AssetType.Image.value


def load_file(path: str) -> Tuple[str, str]:
    """Read an image or PDF file as a base64 data URI.

    Args:
        path: Path to the file.

    Returns:
        Tuple[str, str]: The data URI and the file's mime type.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is neither an image nor a PDF.
    """
    p = pathlib.Path(path)
    if not p.is_file():
        raise FileNotFoundError(f'File not found: {p}')

    mime_type, _ = mimetypes.guess_type(p.name)
    if not mime_type or not (mime_type.startswith('image/') or mime_type == PDF_MIME_TYPE):
        raise ValueError(f'Unsupported file type "{mime_type}": {p.name}')

    data = p.read_bytes()
    logging.debug(f'Loaded {len(data)} bytes from {p.name} ({mime_type}).')
    return encode_data_uri(data, mime_type), mime_type


def file_hash(data_uri: str) -> str:
    """SHA-256 hex digest of a data URI's decoded payload, or '' if there is none."""
    if not data_uri:
        return ''
    try:
        _, data = decode_data_uri(data_uri)
    except ValueError:
        return ''
    return hashlib.sha256(data).hexdigest()


@dataclasses.dataclass
class ReceiptSuggestion:
    """Editable receipt draft, pre-filled from an analysis result."""
    date: str = ''
    vendor: str = ''
    amount: int = 0
    category: str = ''
    payment_method: str = PaymentMethod.Cash.value
    description: str = ''
    title: str = ''
    is_reimbursement: bool = False
    reimbursed_by: str = ''
    asset_type: str = AssetType.Image.value

    @classmethod
    def from_dict(cls, data: Dict[str, Any], categories: Optional[List[str]] = None) -> 'ReceiptSuggestion':
        """Normalise an ``/analyze`` result.

        Args:
            data: The analysis result (date, vendor, amount, category, paymentMethod, description).
            categories: Allowed categories. A suggested category outside the list is dropped.
        """
        # Reuse the record normalisation for amount and string coercion
        normalized = Receipt.from_dict({**data, 'id': '-'})

        category = normalized.category
        if categories is not None and category not in categories:
            logging.debug(f'Suggested category "{category}" is not allowed, dropping it.')
            category = ''

        payment_method = normalized.payment_method
        if payment_method not in {m.value for m in PaymentMethod}:
            payment_method = PaymentMethod.Cash.value

        return cls(
            date=normalized.date,
            vendor=normalized.vendor,
            amount=normalized.amount,
            category=category,
            payment_method=payment_method,
            description=normalized.description,
            title=normalized.title,
        )


def analyze_receipt(
        data_uri: str,
        mime_type: str,
        categories: Optional[List[str]] = None,
        language: Optional[str] = None,
        remote: Optional[service.RemoteStoreAPI] = None,
) -> ReceiptSuggestion:
    """Ask the remote for a field suggestion for a receipt file.

    Args:
        data_uri: The receipt file as a data URI.
        mime_type: The file's mime type.
        categories: Allowed categories. Defaults to the built-in list.
        language: Language of the generated description. Defaults to ``analysis.language``.
        remote: Remote client. Defaults to the module-level client.

    Returns:
        ReceiptSuggestion: The suggested draft, with the asset type set from the mime type.

    Raises:
        status.AnalysisFailedException: If the remote could not analyze the file.
    """
    remote = remote or service.remote
    categories = categories or list(DEFAULT_CATEGORIES)
    language = language or lib.settings.language

    if ',' not in data_uri:
        raise status.AnalysisFailedException('The file is not a data URI.')
    base64_data = data_uri.split(',', 1)[1]

    try:
        result = remote.analyze(base64_data, mime_type, categories, language)
    except status.BaseStatusException as ex:
        raise status.AnalysisFailedException(str(ex)) from ex

    suggestion = ReceiptSuggestion.from_dict(result, categories)
    suggestion.asset_type = asset_type_for(mime_type)
    return suggestion


def build_receipt(
        draft: ReceiptSuggestion,
        file_uri: str = '',
        evidence_uri: str = '',
        mime_type: str = '',
        categories: Optional[List[str]] = None,
) -> Receipt:
    """Build the final record from an edited draft.

    Empty fields fall back to defaults: a placeholder vendor, today's date, amount 0
    and the first category.

    Args:
        draft: The edited draft.
        file_uri: The main receipt file as a data URI, or ''.
        evidence_uri: The evidence file as a data URI, or ''.
        mime_type: The main file's mime type.
        categories: Current categories. Defaults to the built-in list.

    Returns:
        Receipt: An unsynced record with a deterministic id.
    """
    categories = categories or list(DEFAULT_CATEGORIES)

    vendor = draft.vendor or PLACEHOLDER_VENDOR
    date = draft.date or today_str()
    amount = draft.amount or 0

    return Receipt(
        id=generate_receipt_id(date, vendor, amount, file_uri),
        title=draft.title,
        date=date,
        vendor=vendor,
        amount=amount,
        category=draft.category or categories[0],
        payment_method=draft.payment_method or PaymentMethod.Cash.value,
        description=draft.description,
        image_url=file_uri,
        evidence_url=evidence_uri,
        mime_type=mime_type,
        file_hash=file_hash(file_uri),
        created_at=now_iso(),
        synced=False,
        is_reimbursement=draft.is_reimbursement,
        reimbursed_by=draft.reimbursed_by if draft.is_reimbursement else '',
        asset_type=draft.asset_type if file_uri else AssetType.NoAsset.value,
    )


def find_similar(receipts: List[Receipt], date: str, vendor: str, amount: int) -> List[Receipt]:
    """Return receipts with the same date, vendor and amount, to warn before saving a duplicate."""
    return [r for r in receipts if r.date == date and r.vendor == vendor and r.amount == amount]
