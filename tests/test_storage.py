import pytest
import requests

from despachante.errors import UploadError
from despachante.services.storage_service import (
    LocalBlobStorage, SupabaseBlobStorage, UploadDestination, init_storage,
)


class FakeBucket:
    def __init__(self):
        self.removed = []

    def create_signed_upload_url(self, path):
        return {'signed_url': f'https://storage.example/upload/{path}?token=t', 'path': path}

    def create_signed_url(self, path, expires_in):
        return {'signedURL': f'https://storage.example/sign/{path}?ttl={expires_in}'}

    def remove(self, paths):
        self.removed.extend(paths)


class FakeSupabase:
    def __init__(self):
        self.bucket = FakeBucket()
        self.storage = self
        self.bucket_names = []

    def from_(self, name):
        self.bucket_names.append(name)
        return self.bucket


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f'{self.status_code} Error')


def test_local_upload_and_delete(tmp_path):
    storage = LocalBlobStorage(str(tmp_path))
    destination = storage.request_upload_destination()
    assert destination.storage_id.startswith('contracts/')

    storage_id = storage.upload(destination, b'%PDF-1.4 test', 'application/pdf')
    assert storage.exists(storage_id)
    with open(storage.path_for(storage_id), 'rb') as f:
        assert f.read() == b'%PDF-1.4 test'

    storage.delete(storage_id)
    assert not storage.exists(storage_id)
    # Deleting twice is harmless
    storage.delete(storage_id)


def test_local_rejects_paths_outside_root(tmp_path):
    storage = LocalBlobStorage(str(tmp_path / 'blobs'))
    with pytest.raises(ValueError):
        storage.path_for('../escape.pdf')


def test_local_upload_error_is_wrapped(tmp_path):
    storage = LocalBlobStorage(str(tmp_path))
    (tmp_path / 'contracts').write_text('not a directory')
    destination = UploadDestination(url='file://x', storage_id='contracts/a.pdf')
    with pytest.raises(UploadError):
        storage.upload(destination, b'data', 'application/pdf')


def test_supabase_upload_puts_blob_to_signed_url(monkeypatch):
    client = FakeSupabase()
    storage = SupabaseBlobStorage(client, bucket='contratos')
    sent = {}

    def fake_put(url, data, headers, timeout):
        sent.update(url=url, data=data, headers=headers)
        return FakeResponse(200)

    monkeypatch.setattr(requests, 'put', fake_put)

    destination = storage.request_upload_destination()
    storage_id = storage.upload(destination, b'%PDF', 'application/pdf')

    assert storage_id == destination.storage_id
    assert sent['url'].startswith('https://storage.example/upload/contracts/')
    assert sent['headers']['Content-Type'] == 'application/pdf'
    assert client.bucket_names == ['contratos']


def test_supabase_upload_http_error(monkeypatch):
    storage = SupabaseBlobStorage(FakeSupabase())
    monkeypatch.setattr(requests, 'put', lambda *a, **kw: FakeResponse(503))

    with pytest.raises(UploadError) as exc:
        storage.upload(storage.request_upload_destination(), b'%PDF', 'application/pdf')
    assert '503' in exc.value.message


def test_supabase_signed_download_and_delete(app_ctx):
    client = FakeSupabase()
    storage = SupabaseBlobStorage(client, signed_url_ttl=60)

    assert storage.get_download_url('contracts/a.pdf') == 'https://storage.example/sign/contracts/a.pdf?ttl=60'
    assert storage.get_download_url(None) is None

    storage.delete('contracts/a.pdf')
    assert client.bucket.removed == ['contracts/a.pdf']


def test_init_storage_picks_backend(app):
    app.supabase = FakeSupabase()
    app.config['STORAGE_BACKEND'] = None
    assert isinstance(init_storage(app), SupabaseBlobStorage)

    app.config['STORAGE_BACKEND'] = 'local'
    assert isinstance(init_storage(app), LocalBlobStorage)

    app.supabase = None
    app.config['STORAGE_BACKEND'] = 'supabase'
    with pytest.raises(RuntimeError):
        init_storage(app)
