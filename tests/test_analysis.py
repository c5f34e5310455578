"""Tests for ReceiptTracker.core.analysis.

Run:
    python -m unittest tests.test_analysis
"""
import hashlib
import tempfile
import pathlib
import unittest
from unittest.mock import patch

from ReceiptTracker.core import analysis
from ReceiptTracker.core.analysis import (
    ReceiptSuggestion,
    analyze_receipt,
    asset_type_for,
    build_receipt,
    file_hash,
    find_similar,
    load_file,
)
from ReceiptTracker.core.receipt import (
    DEFAULT_CATEGORIES,
    PLACEHOLDER_VENDOR,
    encode_data_uri,
    generate_receipt_id,
)
from ReceiptTracker.status import status
from tests.base import BaseTestCase, FakeRemote, make_receipt


class LoadFileTest(unittest.TestCase):

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dir = pathlib.Path(self._tmp.name)

    def test_image(self):
        path = self.dir / 'receipt.png'
        path.write_bytes(b'\x89PNG data')
        uri, mime = load_file(str(path))
        self.assertEqual(mime, 'image/png')
        self.assertEqual(uri, encode_data_uri(b'\x89PNG data', 'image/png'))

    def test_pdf(self):
        path = self.dir / 'invoice.pdf'
        path.write_bytes(b'%PDF-1.4')
        _, mime = load_file(str(path))
        self.assertEqual(mime, 'application/pdf')
        self.assertEqual(asset_type_for(mime), 'pdf')

    def test_unsupported_type(self):
        path = self.dir / 'notes.txt'
        path.write_text('hello', encoding='utf-8')
        with self.assertRaises(ValueError):
            load_file(str(path))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_file(str(self.dir / 'missing.png'))


class HelpersTest(unittest.TestCase):

    def test_asset_type_for(self):
        self.assertEqual(asset_type_for('image/jpeg'), 'image')
        self.assertEqual(asset_type_for('application/pdf'), 'pdf')
        self.assertEqual(asset_type_for(''), 'none')

    def test_file_hash(self):
        uri = encode_data_uri(b'abc', 'image/png')
        self.assertEqual(file_hash(uri), hashlib.sha256(b'abc').hexdigest())
        self.assertEqual(file_hash(''), '')
        self.assertEqual(file_hash('https://x.test/a.png'), '')

    def test_find_similar(self):
        receipts = [
            make_receipt('a', vendor='Shop', amount=500),
            make_receipt('b', vendor='Shop', amount=600),
            make_receipt('c', vendor='Shop', amount=500, date='2024-05-02'),
        ]
        self.assertEqual([r.id for r in find_similar(receipts, '2024-05-01', 'Shop', 500)], ['a'])


class ReceiptSuggestionTest(unittest.TestCase):

    def test_from_dict(self):
        s = ReceiptSuggestion.from_dict({
            'date': '2024-05-01',
            'vendor': 'Cafe',
            'amount': '1,200',
            'category': '会議費',
            'paymentMethod': 'クレジットカード',
            'description': 'Meeting',
        }, categories=list(DEFAULT_CATEGORIES))
        self.assertEqual(s.vendor, 'Cafe')
        self.assertEqual(s.category, '会議費')
        self.assertEqual(s.payment_method, 'クレジットカード')
        # Unparseable amounts become 0
        self.assertEqual(s.amount, 0)

    def test_disallowed_category_is_dropped(self):
        s = ReceiptSuggestion.from_dict({'category': 'Spaceships'}, categories=['会議費'])
        self.assertEqual(s.category, '')

    def test_unknown_payment_method_becomes_cash(self):
        s = ReceiptSuggestion.from_dict({'paymentMethod': 'Bitcoin'})
        self.assertEqual(s.payment_method, '現金')


class AnalyzeReceiptTest(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.remote = FakeRemote()
        self.uri = encode_data_uri(b'receipt bytes', 'application/pdf')

    def test_suggestion(self):
        self.remote.analysis = {'date': '2024-05-01', 'vendor': 'Cafe', 'amount': 880, 'category': '会議費'}
        with patch.object(self.remote, 'analyze', wraps=self.remote.analyze) as analyze:
            s = analyze_receipt(self.uri, 'application/pdf', categories=['会議費'], remote=self.remote)

        base64_data, mime_type, categories, language = analyze.call_args.args
        self.assertEqual(base64_data, self.uri.split(',', 1)[1])
        self.assertEqual(mime_type, 'application/pdf')
        self.assertEqual(categories, ['会議費'])
        self.assertEqual(language, 'ja')

        self.assertEqual(s.amount, 880)
        self.assertEqual(s.asset_type, 'pdf')

    def test_failure(self):
        self.remote.fail.add('analyze')
        with self.assertRaises(status.AnalysisFailedException):
            analyze_receipt(self.uri, 'application/pdf', remote=self.remote)

    def test_not_a_data_uri(self):
        with self.assertRaises(status.AnalysisFailedException):
            analyze_receipt('plain text', 'image/png', remote=self.remote)

    def test_uses_module_client_by_default(self):
        self.remote.analysis = {'vendor': 'Cafe'}
        with patch.object(analysis.service, 'remote', self.remote):
            self.assertEqual(analyze_receipt(self.uri, 'application/pdf').vendor, 'Cafe')


class BuildReceiptTest(unittest.TestCase):

    def test_defaults(self):
        r = build_receipt(ReceiptSuggestion())
        self.assertEqual(r.vendor, PLACEHOLDER_VENDOR)
        self.assertEqual(r.amount, 0)
        self.assertEqual(r.category, DEFAULT_CATEGORIES[0])
        self.assertEqual(r.asset_type, 'none')
        self.assertFalse(r.synced)
        self.assertTrue(r.date)
        self.assertTrue(r.created_at)

    def test_id_is_deterministic(self):
        uri = encode_data_uri(bytes(range(256)), 'image/jpeg')
        draft = ReceiptSuggestion(date='2024-05-01', vendor='Cafe', amount=880, category='会議費')
        r = build_receipt(draft, file_uri=uri, mime_type='image/jpeg')
        self.assertEqual(r.id, generate_receipt_id('2024-05-01', 'Cafe', 880, uri))
        self.assertEqual(r.id, build_receipt(draft, file_uri=uri, mime_type='image/jpeg').id)
        self.assertEqual(r.image_url, uri)
        self.assertEqual(r.file_hash, hashlib.sha256(bytes(range(256))).hexdigest())
        self.assertEqual(r.asset_type, 'image')

    def test_member_requires_reimbursement(self):
        draft = ReceiptSuggestion(vendor='Cafe', reimbursed_by='Sato')
        self.assertEqual(build_receipt(draft).reimbursed_by, '')

        draft.is_reimbursement = True
        self.assertEqual(build_receipt(draft).reimbursed_by, 'Sato')

    def test_first_category_of_current_list(self):
        r = build_receipt(ReceiptSuggestion(), categories=['会議費', 'その他'])
        self.assertEqual(r.category, '会議費')
