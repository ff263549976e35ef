import mimetypes
import os
import re
from datetime import timedelta
from typing import Tuple

from google.cloud import storage

from app.config import config
from app.errors import StorageError
from app import logger

log = logger.get_logger(__name__)

_storage = None
def _client():
    global _storage
    if _storage is None:
        _storage = storage.Client()
    return _storage

def _signing_creds():
    import google.auth
    from google.auth import impersonated_credentials
    # Base creds from runtime (Cloud Run SA token)
    base_creds, _ = google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
    # If we already have a signer (e.g., SA key file), use it
    if getattr(base_creds, "signer", None):
        return base_creds
    # Otherwise impersonate a service account that CAN sign
    target_sa = os.getenv("GCS_SIGNING_SERVICE_ACCOUNT")
    if not target_sa:
        try:
            from google.auth.compute_engine import metadata
            target_sa = metadata.get_service_account_email()
        except Exception as e:
            log.debug(f"no service account from metadata server: {e}")
    if not target_sa:
        raise StorageError("Cannot sign URLs: set GCS_SIGNING_SERVICE_ACCOUNT to the service account email.")
    return impersonated_credentials.Credentials(
        source_credentials=base_creds,
        target_principal=target_sa,
        target_scopes=[
            "https://www.googleapis.com/auth/devstorage.read_write",
            "https://www.googleapis.com/auth/cloud-platform",
        ],
        lifetime=3600,
    )

def _bucket():
    if not config.gcs_bucket:
        raise StorageError("GCS_BUCKET not configured")
    return _client().bucket(config.gcs_bucket)

def signed_url_for(blob, *, filename: str, content_type: str) -> str:
    return blob.generate_signed_url(
        version="v4",
        expiration=timedelta(seconds=config.signed_url_ttl),
        method="GET",
        response_disposition=f'inline; filename="{filename}"',
        response_type=content_type,
        credentials=_signing_creds(),
    )

def upload_to_gcs(
    local_path: str,
    *,
    object_name: str,
    content_type: str | None = None,
    make_signed_url: bool = True,
) -> dict:
    """
    Upload a local file to gs://<bucket>/<object_name>.
    Returns bucket/object/gs_uri and (optionally) a v4 signed GET url.
    """
    content_type = content_type or mimetypes.guess_type(local_path)[0] or "application/octet-stream"
    blob = _bucket().blob(object_name)
    blob.cache_control = "no-cache"
    blob.upload_from_filename(local_path, content_type=content_type)

    info = {
        "bucket": config.gcs_bucket,
        "object": object_name,
        "gs_uri": f"gs://{config.gcs_bucket}/{object_name}",
        "content_type": content_type,
    }
    if make_signed_url:
        info["signed_url"] = signed_url_for(
            blob, filename=os.path.basename(object_name), content_type=content_type
        )
        info["expires_in"] = config.signed_url_ttl
    return info

def sign_object(object_name: str, *, content_type: str) -> str:
    blob = _bucket().blob(object_name)
    return signed_url_for(blob, filename=os.path.basename(object_name), content_type=content_type)

def upload_bytes_to_gcs(data: bytes, *, object_name: str, content_type: str) -> dict:
    blob = _bucket().blob(object_name)
    blob.cache_control = "no-cache"
    blob.upload_from_string(data, content_type=content_type)
    return {
        "bucket": config.gcs_bucket,
        "object": object_name,
        "gs_uri": f"gs://{config.gcs_bucket}/{object_name}",
        "content_type": content_type,
    }

_GS_RE = re.compile(r"^gs://([^/]+)/(.+)$")

def parse_gs_uri(gs_uri: str) -> Tuple[str, str]:
    """
    Parse 'gs://bucket/key' -> (bucket, key)
    """
    m = _GS_RE.match(gs_uri)
    if not m:
        raise ValueError(f"Invalid gs:// URI: {gs_uri}")
    return m.group(1), m.group(2)

def download_gcs_object_to_file(gs_uri: str, dest_path: str) -> None:
    """
    Download a GCS object specified as 'gs://bucket/key' to a local file path.
    Creates parent directories as needed.
    """
    bucket_name, object_name = parse_gs_uri(gs_uri)
    blob = _client().bucket(bucket_name).blob(object_name)
    os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)
    blob.download_to_filename(dest_path)
