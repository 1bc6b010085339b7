import os
import uuid
from dataclasses import dataclass

import requests
from flask import current_app, url_for

from despachante.errors import UploadError


@dataclass
class UploadDestination:
    url: str
    storage_id: str


class SupabaseBlobStorage:
    """Blob storage backed by a Supabase Storage bucket. storage_id is the object path."""

    def __init__(self, client, bucket='contracts', signed_url_ttl=3600, timeout=60):
        self.client = client
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl
        self.timeout = timeout

    def _bucket(self):
        return self.client.storage.from_(self.bucket)

    def request_upload_destination(self, folder='contracts'):
        path = f"{folder}/{uuid.uuid4().hex}.pdf"
        try:
            signed = self._bucket().create_signed_upload_url(path)
        except Exception as e:
            raise UploadError(f"não foi possível obter URL de envio: {e}") from e

        url = signed.get('signed_url') or signed.get('signedUrl') or signed.get('signedURL')
        if not url:
            raise UploadError("resposta do storage sem URL de envio")
        return UploadDestination(url=url, storage_id=signed.get('path') or path)

    def upload(self, destination, blob, content_type):
        try:
            response = requests.put(
                destination.url,
                data=blob,
                headers={'Content-Type': content_type, 'x-upsert': 'false'},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise UploadError(str(e)) from e
        return destination.storage_id

    def get_download_url(self, storage_id):
        if not storage_id:
            return None
        try:
            signed = self._bucket().create_signed_url(storage_id, self.signed_url_ttl)
        except Exception as e:
            current_app.logger.error(f"Supabase signed URL error for {storage_id}: {e}")
            return None
        return signed.get('signedURL') or signed.get('signedUrl') or signed.get('signed_url')

    def delete(self, storage_id):
        if storage_id:
            self._bucket().remove([storage_id])


class LocalBlobStorage:
    """Filesystem fallback used when Supabase is not configured."""

    def __init__(self, root):
        self.root = root
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, storage_id):
        path = os.path.abspath(os.path.join(self.root, storage_id))
        if not path.startswith(os.path.abspath(self.root) + os.sep):
            raise ValueError(f"Invalid storage id: {storage_id}")
        return path

    def request_upload_destination(self, folder='contracts'):
        storage_id = f"{folder}/{uuid.uuid4().hex}.pdf"
        return UploadDestination(url=f"file://{self.path_for(storage_id)}", storage_id=storage_id)

    def upload(self, destination, blob, content_type):
        path = self.path_for(destination.storage_id)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'wb') as f:
                f.write(blob)
        except OSError as e:
            raise UploadError(str(e)) from e
        return destination.storage_id

    def exists(self, storage_id):
        return bool(storage_id) and os.path.exists(self.path_for(storage_id))

    def get_download_url(self, storage_id):
        if not self.exists(storage_id):
            return None
        return url_for('storage.download_blob', storage_id=storage_id)

    def delete(self, storage_id):
        if self.exists(storage_id):
            os.remove(self.path_for(storage_id))


def init_storage(app):
    backend = app.config.get('STORAGE_BACKEND')
    supabase = getattr(app, 'supabase', None)

    if backend == 'supabase' or (backend is None and supabase is not None):
        if supabase is None:
            raise RuntimeError("STORAGE_BACKEND=supabase but Supabase is not configured")
        return SupabaseBlobStorage(supabase, bucket=app.config.get('SUPABASE_BUCKET', 'contracts'))

    return LocalBlobStorage(app.config['UPLOAD_FOLDER'])


def get_storage():
    return current_app.blob_storage
