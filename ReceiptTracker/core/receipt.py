"""Receipt record model.

Defines the typed :class:`Receipt` record with its camelCase wire mapping,
normalisation rules shared by every entry point, the deterministic receipt id
and the canonical list ordering.
"""
import base64
import binascii
import dataclasses
import datetime
import enum
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

DEFAULT_PROFILE: str = 'business'
DEFAULT_MIME_TYPE: str = 'image/jpeg'
PLACEHOLDER_VENDOR: str = '不明な支払先'

DEFAULT_CATEGORIES: List[str] = [
    '接待交際費',
    '旅費交通費',
    '消耗品費',
    '通信費',
    '福利厚生費',
    '会議費',
    '仕入高',
    '地代家賃',
    'その他',
]

ID_PREFIX: str = 'RC'
ID_SLICE: Tuple[int, int] = (100, 200)

_BASE36_DIGITS: str = '0123456789abcdefghijklmnopqrstuvwxyz'


class PaymentMethod(enum.StrEnum):
    """Payment methods as stored on the remote."""
    Cash = '現金'
    Credit = 'クレジットカード'
    CashOnDelivery = '代金引換'
    Electronic = '電子マネー'
    CorporateCard = '法人カード'


class AssetType(enum.StrEnum):
    """Kind of file attached to a receipt."""
    Image = 'image'
    Pdf = 'pdf'
    NoAsset = 'none'


# Python attribute -> wire (JSON) field name
WIRE_FIELDS: Dict[str, str] = {
    'id': 'id',
    'title': 'title',
    'date': 'date',
    'vendor': 'vendor',
    'amount': 'amount',
    'category': 'category',
    'payment_method': 'paymentMethod',
    'description': 'description',
    'image_url': 'imageUrl',
    'evidence_url': 'evidenceUrl',
    'reference_url': 'referenceUrl',
    'mime_type': 'mimeType',
    'file_hash': 'fileHash',
    'profile': 'profile',
    'created_at': 'createdAt',
    'synced': 'synced',
    'is_reimbursement': 'isReimbursement',
    'reimbursed_by': 'reimbursedBy',
    'asset_type': 'assetType',
}


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string with millisecond precision."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def today_str() -> str:
    """Return today's local date as 'YYYY-MM-DD'."""
    return datetime.date.today().isoformat()


def _to_str(value: Any) -> str:
    if value is None:
        return ''
    return str(value)


def _to_amount(value: Any) -> int:
    """Coerce a wire amount to a non-negative whole number."""
    if value is None or value == '' or isinstance(value, bool):
        return 0
    try:
        amount = int(round(float(value)))
    except (TypeError, ValueError):
        logging.debug(f'Could not parse amount "{value}", using 0.')
        return 0
    return max(amount, 0)


def _to_bool(value: Any) -> bool:
    """Coerce the remote's 0/1 and string flags to bool."""
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes')
    return bool(value)


def _to_asset_type(value: Any) -> str:
    try:
        return AssetType(value).value
    except ValueError:
        return AssetType.Image.value


@dataclasses.dataclass
class Receipt:
    """One business expense record.

    Instances are normalised on construction: strings are never None, the
    amount is a non-negative int and ``reimbursed_by`` is empty unless
    ``is_reimbursement`` is set.
    """
    id: str
    date: str = ''
    vendor: str = ''
    amount: int = 0
    title: str = ''
    category: str = ''
    payment_method: str = PaymentMethod.Cash.value
    description: str = ''
    image_url: str = ''
    evidence_url: str = ''
    reference_url: str = ''
    mime_type: str = DEFAULT_MIME_TYPE
    file_hash: str = ''
    profile: str = DEFAULT_PROFILE
    created_at: str = ''
    synced: bool = False
    is_reimbursement: bool = False
    reimbursed_by: str = ''
    asset_type: str = AssetType.Image.value

    def __post_init__(self) -> None:
        for field in ('id', 'title', 'date', 'vendor', 'category', 'description', 'image_url',
                      'evidence_url', 'reference_url', 'file_hash', 'created_at', 'reimbursed_by'):
            setattr(self, field, _to_str(getattr(self, field)))

        self.amount = _to_amount(self.amount)
        self.payment_method = _to_str(self.payment_method) or PaymentMethod.Cash.value
        self.mime_type = _to_str(self.mime_type) or DEFAULT_MIME_TYPE
        self.profile = DEFAULT_PROFILE
        self.synced = _to_bool(self.synced)
        self.is_reimbursement = _to_bool(self.is_reimbursement)
        self.asset_type = _to_asset_type(self.asset_type)

        if not self.is_reimbursement:
            self.reimbursed_by = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Receipt':
        """Create a normalised receipt from a wire (camelCase) dictionary.

        Unknown keys are ignored.

        Raises:
            ValueError: If the record has no id.
        """
        kwargs: Dict[str, Any] = {}
        for attr, wire in WIRE_FIELDS.items():
            if wire in data:
                kwargs[attr] = data[wire]
            elif attr in data:
                kwargs[attr] = data[attr]

        if not kwargs.get('id'):
            raise ValueError(f'Receipt record has no id: {data!r}')
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to a wire (camelCase) dictionary."""
        return {wire: getattr(self, attr) for attr, wire in WIRE_FIELDS.items()}

    def copy(self, **changes: Any) -> 'Receipt':
        """Return a normalised copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    @property
    def sort_key(self) -> Tuple[str, str]:
        return self.date, self.created_at

    @property
    def month(self) -> str:
        """The 'YYYY-MM' prefix of the receipt date, or '' if undated."""
        return self.date[:7] if len(self.date) >= 7 else ''


def sort_receipts(receipts: Iterable[Receipt]) -> List[Receipt]:
    """Return receipts ordered by date descending, then creation time descending."""
    return sorted(receipts, key=lambda r: r.sort_key, reverse=True)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _base36(value: int) -> str:
    if value == 0:
        return '0'
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return ''.join(reversed(digits))


def _format_amount(amount: Any) -> str:
    if isinstance(amount, float) and amount.is_integer():
        return str(int(amount))
    return str(amount)


def string_hash(value: str) -> int:
    """32-bit rolling hash ``h = h * 31 + c`` over the UTF-16 code units of ``value``.

    Returns:
        int: Signed 32-bit result.
    """
    h = 0
    data = value.encode('utf-16-le')
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = _to_int32((h << 5) - h + code_unit)
    return h


def generate_receipt_id(date: str, vendor: str, amount: Any, data_uri: str = '') -> str:
    """Build the deterministic receipt id.

    The id depends only on the date, vendor, amount and characters 100..200 of
    the attached file's data URI, so uploading the same receipt twice produces
    the same id.

    Args:
        date: Receipt date as 'YYYY-MM-DD'.
        vendor: Vendor name.
        amount: Receipt amount.
        data_uri: The attached file as a data URI, or '' when there is none.

    Returns:
        str: An id of the form ``RC-<BASE36>-<YYYYMMDD>``.
    """
    start, end = ID_SLICE
    source = f'{date}-{vendor}-{_format_amount(amount)}-{(data_uri or "")[start:end]}'
    h = string_hash(source)
    return f'{ID_PREFIX}-{_base36(abs(h)).upper()}-{date.replace("-", "")}'


def decode_data_uri(uri: str) -> Tuple[Optional[str], bytes]:
    """Split a base64 data URI into its mime type and decoded payload.

    Raises:
        ValueError: If ``uri`` is not a base64 data URI.
    """
    if not uri.startswith('data:') or ',' not in uri:
        raise ValueError('Not a data URI.')

    header, payload = uri[5:].split(',', 1)
    parts = header.split(';')
    if 'base64' not in parts[1:]:
        raise ValueError('Only base64 data URIs are supported.')

    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as ex:
        raise ValueError(f'Invalid base64 payload: {ex}') from ex
    return (parts[0] or None), data


def encode_data_uri(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a base64 data URI."""
    return f'data:{mime_type};base64,{base64.b64encode(data).decode("ascii")}'


def is_data_uri(value: str) -> bool:
    return bool(value) and value.startswith('data:')
