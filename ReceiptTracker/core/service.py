"""HTTP client for the remote receipt store, with asynchronous operations.

The remote worker exposes a multi-route JSON API::

    POST   /              upsert a receipt (blob upload + metadata row)
    GET    /list          all receipts, newest first
    DELETE /delete?id=    delete a receipt and its blobs
    GET    /config        shared config mapping
    POST   /config        set one config key
    GET    /view/<id>     raw blob bytes
    POST   /analyze       image-understanding suggestion for a receipt file

Every failure is raised as a :class:`~ReceiptTracker.status.status.BaseStatusException`
subclass. Use :func:`start_asynchronous` to run a blocking call in a worker thread while
the Qt event loop keeps running.
"""

import dataclasses
import logging
import urllib.parse
from typing import Any, Callable, Dict, List, Optional

import requests
from PySide6 import QtCore

from .receipt import Receipt
from ..settings import lib
from ..status import status

TOTAL_TIMEOUT: int = 180

BLOB_ROUTE: str = '/view/'


@dataclasses.dataclass
class UpsertResult:
    """Outcome of a receipt push.

    Attributes:
        success: Whether the remote accepted the record.
        url: Remote URL of the main file, if the remote returned one.
        evidence_url: Remote URL of the evidence file, if the remote returned one.
    """
    success: bool
    url: Optional[str] = None
    evidence_url: Optional[str] = None


class AsyncWorker(QtCore.QThread):
    """
    Generic worker thread for a single blocking call.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the raised exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args
        self.kwargs = kwargs

    def run(self) -> None:
        try:
            result = self.func(*self.args, **self.kwargs)
        except Exception as ex:
            self.errorOccurred.emit(ex)
            return
        self.resultReady.emit(result)


def start_asynchronous(func: Callable[..., Any], *args: Any, total_timeout: int = TOTAL_TIMEOUT,
                       **kwargs: Any) -> Any:
    """
    Generic asynchronous operation wrapper.

    Runs ``func`` in an :class:`AsyncWorker` and spins a nested event loop until it
    finishes or ``total_timeout`` seconds pass. Timers and queued signals keep being
    dispatched while waiting.

    Args:
        func: The blocking function to run.
        *args, **kwargs: Arguments passed to func.
        total_timeout (int): Total operation timeout in seconds.

    Returns:
        The result of the function on success.

    Raises:
        status.ServiceUnavailableException: If the operation times out.
        status.BaseStatusException: Status errors raised by ``func`` are re-raised as-is.
        status.UnknownException: For any other error raised by ``func``.
    """
    worker: AsyncWorker = AsyncWorker(func, *args, **kwargs)

    result: Dict[str, Any] = {'data': None, 'error': None, 'done': False}
    loop: QtCore.QEventLoop = QtCore.QEventLoop()

    def on_result(data: Any) -> None:
        result.update({'data': data, 'done': True})
        loop.quit()

    def on_error(err: Exception) -> None:
        result.update({'error': err, 'done': True})
        loop.quit()

    worker.resultReady.connect(on_result, QtCore.Qt.QueuedConnection)
    worker.errorOccurred.connect(on_error, QtCore.Qt.QueuedConnection)

    timer: QtCore.QTimer = QtCore.QTimer()
    timer.setSingleShot(True)
    timer.setInterval(total_timeout * 1000)
    timer.timeout.connect(loop.quit)

    worker.start()
    timer.start()
    if not result['done']:
        loop.exec()
    timer.stop()

    if not result['done']:
        worker.terminate()
        worker.wait()
        raise status.ServiceUnavailableException(f'Operation timed out after {total_timeout} seconds.')
    worker.wait()

    if result['error']:
        err = result['error']
        # Propagate known status exceptions directly
        if isinstance(err, status.BaseStatusException):
            raise err
        raise status.UnknownException(str(err)) from err
    return result['data']


class RemoteStoreAPI:
    """Blocking client for the remote receipt store.

    Args:
        base_url: Optional fixed base URL. Defaults to the configured ``remote.url``
            (or the ``SYNC_API_URL`` environment variable).
        timeout: Optional per-request timeout in seconds. Defaults to ``remote.timeout``.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None) -> None:
        self._base_url = lib.normalize_api_url(base_url) if base_url else None
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        """The configured base URL.

        Raises:
            status.ApiUrlNotConfiguredException: If no URL is configured.
        """
        url = self._base_url or lib.settings.api_url
        if not url:
            raise status.ApiUrlNotConfiguredException
        return url

    @property
    def timeout(self) -> int:
        return self._timeout or lib.settings.timeout

    def is_configured(self) -> bool:
        return bool(self._base_url or lib.settings.api_url)

    def _request(self, method: str, route: str, **kwargs: Any) -> requests.Response:
        """Send a request and raise on transport errors or non-2xx answers."""
        url = f'{self.base_url}{route}'
        logging.debug(f'{method} {url}')
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as ex:
            raise status.ServiceUnavailableException(f'{method} {route}: {ex}') from ex

        if not response.ok:
            raise status.RemoteRequestFailedException(
                f'{method} {route} answered {response.status_code}.',
                status_code=response.status_code
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as ex:
            raise status.RemoteResponseInvalidException(f'Invalid JSON from {response.url}: {ex}') from ex

    def upsert(self, receipt: Receipt) -> UpsertResult:
        """Push a receipt. Data URI attachments are uploaded as blobs by the remote.

        Returns:
            UpsertResult: success flag and the remote URLs of the stored files.
        """
        response = self._request('POST', '/', json=receipt.to_dict())
        data = self._json(response)
        if not isinstance(data, dict):
            raise status.RemoteResponseInvalidException('Upsert response is not an object.')
        logging.debug(f'Upserted receipt {receipt.id}.')
        return UpsertResult(
            success=bool(data.get('success', True)),
            url=data.get('url') or None,
            evidence_url=data.get('evidenceUrl') or None,
        )

    def list_receipts(self) -> List[Receipt]:
        """Fetch the full remote snapshot, every record marked synced."""
        data = self._json(self._request('GET', '/list'))
        if not isinstance(data, list):
            raise status.RemoteResponseInvalidException('List response is not an array.')

        receipts = []
        for record in data:
            try:
                receipts.append(Receipt.from_dict({**record, 'synced': True}))
            except (ValueError, TypeError) as ex:
                logging.warning(f'Skipping unreadable remote receipt: {ex}')
        logging.debug(f'Fetched {len(receipts)} remote receipts.')
        return receipts

    def delete(self, receipt_id: str) -> bool:
        """Delete a receipt and its blobs from the remote."""
        self._request('DELETE', '/delete', params={'id': receipt_id})
        logging.debug(f'Deleted remote receipt {receipt_id}.')
        return True

    def get_config(self) -> Dict[str, Any]:
        """Fetch the shared config mapping."""
        data = self._json(self._request('GET', '/config'))
        if not isinstance(data, dict):
            raise status.RemoteResponseInvalidException('Config response is not an object.')
        return data

    def set_config(self, key: str, value: Any) -> bool:
        """Store one shared config value."""
        self._request('POST', '/config', json={'key': key, 'value': value})
        return True

    def read_blob(self, blob_id: str) -> bytes:
        """Return the raw bytes of a stored file."""
        return self._request('GET', f'{BLOB_ROUTE}{urllib.parse.quote(blob_id, safe="")}').content

    @staticmethod
    def blob_id_from_url(url: str) -> Optional[str]:
        """Extract the blob id from a ``.../view/<id>`` URL, or None for other URLs."""
        if not url:
            return None
        path = urllib.parse.urlparse(url).path
        if BLOB_ROUTE not in path:
            return None
        blob_id = path.split(BLOB_ROUTE, 1)[1].strip('/')
        return urllib.parse.unquote(blob_id) or None

    def analyze(self, base64_data: str, mime_type: str, categories: List[str], language: str) -> Dict[str, Any]:
        """Ask the remote to suggest receipt fields for a file.

        Args:
            base64_data: The file content, base64 encoded (no data URI header).
            mime_type: The file's mime type.
            categories: Allowed categories.
            language: Language code for the generated description.
        """
        payload = {
            'base64Data': base64_data,
            'mimeType': mime_type,
            'categories': categories,
            'language': language,
        }
        data = self._json(self._request('POST', '/analyze', json=payload))
        if not isinstance(data, dict):
            raise status.RemoteResponseInvalidException('Analysis response is not an object.')
        return data


remote: RemoteStoreAPI = RemoteStoreAPI()
