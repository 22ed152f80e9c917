"""
Checklist report coordinator.

Drives one report request through its stages:

    FETCH_SOURCE -> RESOLVE_TEMPLATE -> BUILD_MODEL -> RENDER
        -> PUBLISH -> PERSIST_REFERENCE

Terminal states:
- DONE: the artifact is published and its reference saved on the
  report row.
- DONE_WITH_WARNING: rendering succeeded but publishing failed. The
  report row is left exactly as it was and the caller receives the
  failure text in ``warning``.
- FAILED: any other error. Stages after the failing one never run, so
  nothing is written.

The coordinator never rolls back data written before it was invoked.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from reporter.app.coordinator.naming import default_file_name, sanitize_file_name
from reporter.app.core.config import Settings
from reporter.app.core.errors import NotFoundError, PublishError, ReporterError
from reporter.app.registry.sources import (
    BundledTemplateSource,
    DriveTemplateSource,
    HttpTemplateSource,
    StorageTemplateSource,
    TemplateResolver,
    load_default_template,
)
from reporter.app.schemas.requests import (
    GenerateChecklistReportRequest,
    GenerateChecklistReportResponse,
)
from reporter.app.services.drive_api import GoogleDriveClient
from reporter.app.services.google_auth import ServiceAccountTokenProvider
from reporter.app.services.markup import compile_markup
from reporter.app.services.normalizer import build_template_model
from reporter.app.services.pdf_render import render_form_template, render_segments
from reporter.app.services.publisher import ArtifactPublisher
from reporter.app.services.store import SupabaseClient

logger = logging.getLogger("reporter.coordinator")

DEFAULT_URL_COLUMN = "checklist_report_url"


class ReportStage(str, Enum):
    FETCH_SOURCE = "fetch_source"
    RESOLVE_TEMPLATE = "resolve_template"
    BUILD_MODEL = "build_model"
    RENDER = "render"
    PUBLISH = "publish"
    PERSIST_REFERENCE = "persist_reference"


class ReportStatus(str, Enum):
    DONE = "done"
    DONE_WITH_WARNING = "done_with_warning"
    FAILED = "failed"


@dataclass(frozen=True)
class ReportOutcome:
    status: ReportStatus
    http_status: int
    payload: Dict[str, Any]
    stage: Optional[ReportStage] = None
    stages_completed: tuple = field(default_factory=tuple)


class ChecklistReportCoordinator:
    """
    Report pipeline controller.

    Collaborators are injected; ``from_settings`` wires the production
    ones.
    """

    def __init__(
        self,
        settings: Settings,
        store: SupabaseClient,
        resolver: TemplateResolver,
        publisher: ArtifactPublisher,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.store = store
        self.resolver = resolver
        self.publisher = publisher
        self.clock = clock

    # ------------------------------------------------------------------
    # Composition root
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.Client,
        token_provider: Optional[ServiceAccountTokenProvider] = None,
    ) -> "ChecklistReportCoordinator":
        store = SupabaseClient(settings, http_client)
        tokens = token_provider or ServiceAccountTokenProvider(settings, http_client)
        drive = GoogleDriveClient(settings, http_client, tokens)

        resolver = TemplateResolver(
            sources=[
                StorageTemplateSource(store),
                DriveTemplateSource(drive),
                HttpTemplateSource(http_client),
            ],
            fallback=BundledTemplateSource(settings.template_dir),
            default_identifier=settings.checklist_template_id,
        )

        return cls(
            settings=settings,
            store=store,
            resolver=resolver,
            publisher=ArtifactPublisher(settings, drive),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _columns(self, request: GenerateChecklistReportRequest):
        url_column = (
            request.report_url_column
            or self.settings.driver_report_url_column
            or DEFAULT_URL_COLUMN
        )
        if request.report_file_id_column is not None:
            file_id_column = request.report_file_id_column.strip()
        else:
            file_id_column = self.settings.driver_report_file_id_column
        return url_column, (file_id_column or None)

    def _share(self, request: GenerateChecklistReportRequest) -> bool:
        if request.share_publicly is not None:
            return request.share_publicly
        return self.settings.google_drive_share_with_anyone

    @staticmethod
    def _failure(exc: ReporterError, stage: ReportStage, completed: list) -> ReportOutcome:
        return ReportOutcome(
            status=ReportStatus.FAILED,
            http_status=exc.status_code,
            payload={"success": False, "error": str(exc)},
            stage=stage,
            stages_completed=tuple(completed),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(
        self,
        request: GenerateChecklistReportRequest,
        trace_id: Optional[str] = None,
    ) -> ReportOutcome:
        report_id = request.report_id
        log_context = {"report_id": str(report_id), "trace_id": trace_id}
        completed = []
        stage = ReportStage.FETCH_SOURCE

        try:
            record = self.store.fetch_report(report_id)
            if record is None:
                raise NotFoundError(
                    f"Report {report_id} does not exist in {self.settings.report_table}."
                )
            completed.append(stage)

            stage = ReportStage.RESOLVE_TEMPLATE
            template = self.resolver.resolve(request.template_id)
            completed.append(stage)

            stage = ReportStage.BUILD_MODEL
            now = self.clock()
            model = build_template_model(record, request.template_data, report_id, now=now)
            completed.append(stage)

            stage = ReportStage.RENDER
            markup = template.content if template.is_markup else load_default_template()
            segments = compile_markup(markup, model)
            if template.is_markup:
                document = render_segments(segments)
            else:
                document = render_form_template(template.content, model, segments)
            completed.append(stage)

            stage = ReportStage.PUBLISH
            file_name = sanitize_file_name(
                request.file_name or default_file_name(model, report_id, now=now)
            )
            try:
                upload = self.publisher.publish(
                    document,
                    file_name,
                    folder_id=request.drive_folder_id,
                    make_public=self._share(request),
                )
            except PublishError as exc:
                logger.warning(
                    "report_publish_failed",
                    extra={**log_context, "stage": stage.value, "error": str(exc)},
                )
                response = GenerateChecklistReportResponse(
                    reportId=report_id,
                    templateId=template.identifier,
                    warning=str(exc),
                )
                return ReportOutcome(
                    status=ReportStatus.DONE_WITH_WARNING,
                    http_status=200,
                    payload=response.model_dump(),
                    stage=stage,
                    stages_completed=tuple(completed),
                )
            completed.append(stage)

            stage = ReportStage.PERSIST_REFERENCE
            file_url = upload.preferred_link(bool(request.prefer_download_link))
            url_column, file_id_column = self._columns(request)
            values = {url_column: file_url}
            if file_id_column:
                values[file_id_column] = upload.file_id
            self.store.update_report(report_id, values)
            completed.append(stage)

        except ReporterError as exc:
            logger.error(
                "report_generation_failed",
                extra={
                    **log_context,
                    "stage": stage.value,
                    "status_code": exc.status_code,
                    "error": str(exc),
                },
            )
            return self._failure(exc, stage, completed)

        logger.info(
            "report_generated",
            extra={**log_context, "template_id": template.identifier, "file_id": upload.file_id},
        )
        response = GenerateChecklistReportResponse(
            reportId=report_id,
            fileId=upload.file_id,
            fileUrl=file_url,
            templateId=template.identifier,
        )
        return ReportOutcome(
            status=ReportStatus.DONE,
            http_status=200,
            payload=response.model_dump(exclude={"warning"}),
            stages_completed=tuple(completed),
        )
