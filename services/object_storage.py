"""
Object Storage Service - FABQUOTE
Stockage des fichiers CAO et documents (blob store opaque).

Le service ne connaît rien du domaine: il émet des handles d'upload, stocke
des octets sous une clé et restitue les octets d'une clé.

Backends :
- LocalObjectStorage : système de fichiers ({root}/{base_path}/{id})
- NextcloudObjectStorage : WebDAV Nextcloud via httpx

Clés : "{base_path}/{id}" (ex: uploads/5f0c...). Les URLs d'upload
"/api/objects/upload/{id}" et de téléchargement "/uploads/{id}" ou
"/objects/{clé}" se résolvent toutes vers cette clé.
"""

import logging
import os
import re
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from core.config import Settings
from core.errors import ObjectNotFoundError, UpstreamStorageError, ValidationError

logger = logging.getLogger(__name__)

# ============================================================
# CONSTANTES
# ============================================================

UPLOAD_URL_PREFIX = "/api/objects/upload/"
DOWNLOAD_URL_PREFIX = "/uploads/"
OBJECTS_URL_PREFIX = "/objects/"

OBJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass(frozen=True)
class UploadHandle:
    upload_url: str
    object_path: str


# ============================================================
# SERVICE (base commune)
# ============================================================

class ObjectStorageService:
    """
    Interface commune des backends.

    Workflow :
    1. mint_upload_handle() -> (uploadURL, objectPath) remis au client
    2. put(object_id, data) -> clé de stockage, une fois les octets reçus
    3. get(path) -> octets, au téléchargement
    """

    def __init__(self, base_path: str = "uploads"):
        self.base_path = base_path.strip("/") or "uploads"

    # ----------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def validate_object_id(object_id: str) -> str:
        if not object_id or not OBJECT_ID_PATTERN.match(object_id):
            raise ValidationError.for_field("id", "Invalid object id")
        return object_id

    @staticmethod
    def validate_path(path: str) -> str:
        """Refuse les chemins absolus ou remontant l'arborescence."""
        clean = (path or "").strip().lstrip("/")
        parts = clean.split("/")
        if not clean or any(part in ("", ".", "..") for part in parts) or "\\" in clean:
            raise ValidationError.for_field("path", "Invalid object path")
        return clean

    def object_path_for(self, object_id: str) -> str:
        return f"{self.base_path}/{self.validate_object_id(object_id)}"

    def resolve_reference(self, reference: str) -> str:
        """
        Convertit une référence client (URL d'upload, URL de téléchargement ou
        clé brute) en clé de stockage.
        """
        ref = (reference or "").strip()
        ref = ref.split("?", 1)[0]
        if ref.startswith(UPLOAD_URL_PREFIX):
            return self.object_path_for(ref[len(UPLOAD_URL_PREFIX):])
        if ref.startswith(DOWNLOAD_URL_PREFIX):
            return self.object_path_for(ref[len(DOWNLOAD_URL_PREFIX):])
        if ref.startswith(OBJECTS_URL_PREFIX):
            return self.validate_path(ref[len(OBJECTS_URL_PREFIX):])
        return self.validate_path(ref)

    def mint_upload_handle(self) -> UploadHandle:
        object_id = self.generate_id()
        return UploadHandle(
            upload_url=f"{UPLOAD_URL_PREFIX}{object_id}",
            object_path=self.object_path_for(object_id),
        )

    # ----------------------------------------------------------
    # Opérations
    # ----------------------------------------------------------

    def put(self, object_id: str, data: bytes) -> str:
        """Stocke les octets sous {base_path}/{object_id}, retourne la clé."""
        path = self.object_path_for(object_id)
        self._write(path, data)
        logger.info("Objet stocké: %s (%d bytes)", path, len(data))
        return path

    def get(self, path: str) -> bytes:
        return self._read(self.validate_path(path))

    def exists(self, path: str) -> bool:
        return self._exists(self.validate_path(path))

    def _write(self, path: str, data: bytes) -> None:
        raise NotImplementedError

    def _read(self, path: str) -> bytes:
        raise NotImplementedError

    def _exists(self, path: str) -> bool:
        raise NotImplementedError


# ============================================================
# BACKEND LOCAL
# ============================================================

class LocalObjectStorage(ObjectStorageService):
    """Stockage sur disque, écriture atomique (fichier temporaire + rename)."""

    def __init__(self, root: str, base_path: str = "uploads"):
        super().__init__(base_path)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _full_path(self, path: str) -> Path:
        return self.root / path

    def _write(self, path: str, data: bytes) -> None:
        target = self._full_path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.replace(tmp_name, target)
        except OSError as exc:
            logger.error("Écriture objet %s impossible: %s", path, exc)
            raise UpstreamStorageError("Upload failed") from exc

    def _read(self, path: str) -> bytes:
        target = self._full_path(path)
        if not target.is_file():
            raise ObjectNotFoundError()
        try:
            return target.read_bytes()
        except OSError as exc:
            logger.error("Lecture objet %s impossible: %s", path, exc)
            raise UpstreamStorageError() from exc

    def _exists(self, path: str) -> bool:
        return self._full_path(path).is_file()


# ============================================================
# BACKEND NEXTCLOUD (WebDAV)
# ============================================================

class NextcloudObjectStorage(ObjectStorageService):
    """Stockage Nextcloud: {url}/remote.php/dav/files/{user}/{clé}."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        base_path: str = "uploads",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__(base_path)
        missing = [name for name, value in (
            ("NEXTCLOUD_URL", base_url),
            ("NEXTCLOUD_USER", username),
            ("NEXTCLOUD_PASS", password),
        ) if not value]
        if missing:
            raise UpstreamStorageError(f"Nextcloud credentials missing: {', '.join(missing)}")

        self.base_url = base_url.rstrip("/")
        self.username = username
        self.client = httpx.Client(
            auth=(username, password),
            timeout=timeout,
            transport=transport,
        )

    def _dav_url(self, path: str) -> str:
        return f"{self.base_url}/remote.php/dav/files/{self.username}/{path}"

    def _write(self, path: str, data: bytes) -> None:
        headers = {"Content-Type": "application/octet-stream"}
        try:
            response = self.client.put(self._dav_url(path), content=data, headers=headers)
            if response.status_code == 409:
                # Dossier parent absent: on le crée puis on réessaie une fois
                parent = path.rsplit("/", 1)[0]
                self.client.request("MKCOL", self._dav_url(parent))
                response = self.client.put(self._dav_url(path), content=data, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Upload Nextcloud échoué pour %s: %s", path, exc)
            raise UpstreamStorageError("Upload failed") from exc

    def _read(self, path: str) -> bytes:
        try:
            response = self.client.get(self._dav_url(path))
        except httpx.HTTPError as exc:
            logger.error("Téléchargement Nextcloud échoué pour %s: %s", path, exc)
            raise UpstreamStorageError() from exc
        if response.status_code == 404:
            raise ObjectNotFoundError()
        if response.is_error:
            logger.error("Nextcloud a répondu %d pour %s", response.status_code, path)
            raise UpstreamStorageError()
        return response.content

    def _exists(self, path: str) -> bool:
        try:
            response = self.client.head(self._dav_url(path))
        except httpx.HTTPError as exc:
            logger.error("Vérification Nextcloud échouée pour %s: %s", path, exc)
            raise UpstreamStorageError() from exc
        if response.status_code == 404:
            return False
        if response.is_error:
            raise UpstreamStorageError()
        return True

    def close(self) -> None:
        self.client.close()


# ============================================================
# FACTORY
# ============================================================

def build_object_storage(settings: Settings) -> ObjectStorageService:
    """Instancie le backend configuré (STORAGE_BACKEND=local|nextcloud)."""
    backend = settings.storage_backend.lower()
    if backend == "nextcloud":
        return NextcloudObjectStorage(
            base_url=settings.nextcloud_url,
            username=settings.nextcloud_user,
            password=settings.nextcloud_pass,
            base_path=settings.storage_base_path,
            timeout=settings.storage_timeout_seconds,
        )
    if backend == "local":
        return LocalObjectStorage(settings.local_storage_dir, base_path=settings.storage_base_path)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.storage_backend}")


_object_storage: Optional[ObjectStorageService] = None


def get_object_storage_service(settings: Settings) -> ObjectStorageService:
    """Retourne l'instance singleton du backend de stockage."""
    global _object_storage
    if _object_storage is None:
        _object_storage = build_object_storage(settings)
        logger.info("ObjectStorageService créé (backend: %s)", settings.storage_backend)
    return _object_storage
