"""
Report template resolution.

A template identifier is resolved by an ordered list of sources. Each
source declares the identifier prefixes it owns; the first matching
source loads the template. Identifiers no source claims are treated as
bundled template names.

Supported identifiers:

    storage://bucket/path.html   Supabase Storage object
    drive://<file id>            Google Drive file
    http(s)://...                Remote URL
    default | name | name.html   Bundled template (name.pdf for forms)

Templates are classified as markup (HTML-like text) or prebuilt
documents (PDF forms) by file extension and response content type.

Only the bundled default markup template is cached, for the lifetime of
the process. It is never invalidated; restart the service to pick up
changes to the bundled file.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple, Union

import httpx

from reporter.app.core.config import BUNDLED_TEMPLATE_DIR
from reporter.app.core.errors import ConfigurationError, ReporterError

logger = logging.getLogger("reporter.templates")

DEFAULT_TEMPLATE_KEYWORD = "default"
DEFAULT_TEMPLATE_NAME = "default-checklist-template.html"

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._\-/]")


class TemplateResolutionError(ConfigurationError):
    """Raised when a template cannot be loaded from its source."""


class TemplateKind(str, Enum):
    MARKUP = "markup"
    PREBUILT_DOCUMENT = "prebuilt-document"


@dataclass(frozen=True)
class TemplateResource:
    """A loaded, classified template owned by a single render."""

    identifier: str
    kind: TemplateKind
    content: Union[str, bytes]

    @property
    def is_markup(self) -> bool:
        return self.kind is TemplateKind.MARKUP


def classify(name: str, content_type: Optional[str] = None) -> TemplateKind:
    if "pdf" in (content_type or "").lower() or name.lower().endswith(".pdf"):
        return TemplateKind.PREBUILT_DOCUMENT
    return TemplateKind.MARKUP


def _decode(identifier: str, data: bytes, kind: TemplateKind) -> TemplateResource:
    if kind is TemplateKind.PREBUILT_DOCUMENT:
        return TemplateResource(identifier=identifier, kind=kind, content=bytes(data))
    return TemplateResource(
        identifier=identifier,
        kind=kind,
        content=data.decode("utf-8", errors="replace"),
    )


# ---------------------------------------------------------------------------
# Default template cache
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def load_default_template() -> str:
    """
    Return the bundled default markup template.

    Read once per process. Concurrent first calls may both read the
    file; they produce identical content.
    """
    return (BUNDLED_TEMPLATE_DIR / DEFAULT_TEMPLATE_NAME).read_text(encoding="utf-8")


def list_bundled_templates(template_dir: Path = BUNDLED_TEMPLATE_DIR) -> List[str]:
    if not template_dir.is_dir():
        return []
    return sorted(
        path.name
        for path in template_dir.iterdir()
        if path.is_file() and path.suffix.lower() in (".html", ".pdf")
    )


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


class ObjectStorage(Protocol):
    def download_object(self, bucket: str, path: str) -> Tuple[bytes, Optional[str]]:
        ...


class DriveFiles(Protocol):
    def download_file(self, file_id: str) -> Tuple[bytes, Optional[str]]:
        ...


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class TemplateSource:
    """Base class for prefix-addressed template sources."""

    prefixes: Tuple[str, ...] = ()

    def matches(self, identifier: str) -> bool:
        return identifier.startswith(self.prefixes)

    def load(self, identifier: str) -> TemplateResource:
        raise NotImplementedError


class StorageTemplateSource(TemplateSource):
    prefixes = ("storage://",)

    def __init__(self, storage: ObjectStorage) -> None:
        self.storage = storage

    def load(self, identifier: str) -> TemplateResource:
        bucket, _, path = identifier[len("storage://"):].partition("/")
        if not bucket or not path:
            raise ConfigurationError(
                f"Invalid storage template reference ({identifier}). "
                "Expected format storage://bucket/file-name"
            )
        try:
            data, content_type = self.storage.download_object(bucket, path)
        except ReporterError as exc:
            raise TemplateResolutionError(
                f"Unable to download template {identifier} from storage ({exc})."
            ) from exc
        return _decode(identifier, data, classify(path, content_type))


class DriveTemplateSource(TemplateSource):
    prefixes = ("drive://",)

    def __init__(self, drive: DriveFiles) -> None:
        self.drive = drive

    def load(self, identifier: str) -> TemplateResource:
        file_id = identifier[len("drive://"):].strip("/")
        if not file_id:
            raise ConfigurationError(
                f"Invalid Drive template reference ({identifier}). "
                "Expected format drive://file-id"
            )
        try:
            data, content_type = self.drive.download_file(file_id)
        except ReporterError as exc:
            raise TemplateResolutionError(
                f"Unable to download template {identifier} from Google Drive ({exc})."
            ) from exc
        return _decode(identifier, data, classify(file_id, content_type))


class HttpTemplateSource(TemplateSource):
    prefixes = ("http://", "https://")

    def __init__(self, http_client: httpx.Client) -> None:
        self.client = http_client

    def load(self, identifier: str) -> TemplateResource:
        try:
            response = self.client.get(identifier, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise TemplateResolutionError(
                f"Unable to fetch template from {identifier} ({exc})."
            ) from exc

        if response.status_code >= 400:
            raise TemplateResolutionError(
                f"Unable to fetch template from {identifier} "
                f"({response.status_code})."
            )

        content_type = response.headers.get("content-type", "")
        path = httpx.URL(identifier).path
        return _decode(identifier, response.content, classify(path, content_type))


class BundledTemplateSource(TemplateSource):
    """
    Templates shipped with the service.

    Missing files fall back to the default template instead of failing.
    """

    def __init__(self, template_dir: Path = BUNDLED_TEMPLATE_DIR) -> None:
        self.template_dir = Path(template_dir).resolve()

    def matches(self, identifier: str) -> bool:
        return True

    @staticmethod
    def file_name_for(identifier: str) -> str:
        if identifier.lower().endswith((".html", ".pdf")):
            return identifier
        if identifier == DEFAULT_TEMPLATE_KEYWORD:
            return DEFAULT_TEMPLATE_NAME
        return f"{identifier}.html"

    def _safe_path(self, file_name: str) -> Optional[Path]:
        candidate = (self.template_dir / file_name).resolve()
        try:
            candidate.relative_to(self.template_dir)
        except ValueError:
            return None
        return candidate

    def load(self, identifier: str) -> TemplateResource:
        file_name = self.file_name_for(identifier)
        path = self._safe_path(file_name)

        if path is not None and path.is_file():
            if classify(file_name) is TemplateKind.PREBUILT_DOCUMENT:
                return TemplateResource(
                    identifier=file_name,
                    kind=TemplateKind.PREBUILT_DOCUMENT,
                    content=path.read_bytes(),
                )
            if path == (BUNDLED_TEMPLATE_DIR / DEFAULT_TEMPLATE_NAME).resolve():
                content = load_default_template()
            else:
                content = path.read_text(encoding="utf-8")
            return TemplateResource(
                identifier=file_name,
                kind=TemplateKind.MARKUP,
                content=content,
            )

        logger.warning(
            "bundled_template_missing",
            extra={"template_id": identifier, "file_name": file_name},
        )
        return TemplateResource(
            identifier=DEFAULT_TEMPLATE_NAME,
            kind=TemplateKind.MARKUP,
            content=load_default_template(),
        )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class TemplateResolver:
    """
    Resolve identifiers against an ordered list of sources.

    Adding a new template origin means appending a TemplateSource; the
    pipeline itself does not change.
    """

    def __init__(
        self,
        sources: Sequence[TemplateSource],
        fallback: Optional[BundledTemplateSource] = None,
        default_identifier: str = DEFAULT_TEMPLATE_KEYWORD,
    ) -> None:
        self.sources = list(sources)
        self.fallback = fallback or BundledTemplateSource()
        self.default_identifier = default_identifier

    def sanitize(self, identifier: str) -> str:
        trimmed = identifier.strip()
        if any(source.matches(trimmed) for source in self.sources):
            return trimmed
        return _UNSAFE_NAME_CHARS.sub("", trimmed)

    def resolve(self, identifier: Optional[str] = None) -> TemplateResource:
        raw = (identifier or "").strip() or (self.default_identifier or "").strip()
        template_id = self.sanitize(raw) or DEFAULT_TEMPLATE_KEYWORD

        for source in self.sources:
            if source.matches(template_id):
                resource = source.load(template_id)
                break
        else:
            resource = self.fallback.load(template_id)

        logger.info(
            "template_resolved",
            extra={
                "template_id": resource.identifier,
                "template_kind": resource.kind.value,
            },
        )
        return resource
