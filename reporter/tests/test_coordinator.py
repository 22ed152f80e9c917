from datetime import datetime

import httpx
import pytest

from reporter.app.coordinator.coordinator import (
    ChecklistReportCoordinator,
    ReportStage,
    ReportStatus,
)
from reporter.app.core.errors import ConfigurationError
from reporter.app.registry.sources import HttpTemplateSource, StorageTemplateSource, TemplateResolver
from reporter.app.schemas.requests import GenerateChecklistReportRequest
from reporter.app.services.drive_api import UploadError, UploadResult
from reporter.app.services.google_auth import CredentialExchangeError
from reporter.tests.fixtures.fakes import FakePublisher, InMemoryStore, make_settings
from reporter.tests.fixtures.pdf_factory import extract_text, field_values, form_pdf

NOW = datetime(2024, 5, 17, 14, 30)

REPORT = {
    "id": 42,
    "driver_name": "Jan Kowalski",
    "vehicle_registration": "KR 9000",
    "checklist_date": "2024-05-17",
    "checklist_state": {"tires": True, "lights": False},
    "notes": "Left mirror cracked",
}


def _coordinator(store=None, publisher=None, http_client=None, **settings):
    store = store if store is not None else InMemoryStore(reports={42: dict(REPORT)})
    sources = [StorageTemplateSource(store)]
    if http_client is not None:
        sources.append(HttpTemplateSource(http_client))
    resolver = TemplateResolver(sources)
    return ChecklistReportCoordinator(
        settings=make_settings(**settings),
        store=store,
        resolver=resolver,
        publisher=publisher or FakePublisher(),
        clock=lambda: NOW,
    )


def _request(**fields):
    fields.setdefault("report_id", 42)
    return GenerateChecklistReportRequest.model_validate(fields)


def test_successful_generation_publishes_and_saves_reference():
    store = InMemoryStore(reports={42: dict(REPORT)})
    publisher = FakePublisher()

    outcome = _coordinator(store, publisher).generate(_request())

    assert outcome.status is ReportStatus.DONE
    assert outcome.http_status == 200
    assert outcome.payload == {
        "success": True,
        "reportId": 42,
        "fileId": "file-123",
        "fileUrl": "https://drive.google.com/file/d/file-123/view?usp=drivesdk",
        "templateId": "default-checklist-template.html",
    }
    assert outcome.stages_completed == tuple(ReportStage)

    call = publisher.calls[0]
    assert call["file_name"] == "checklist-jan-kowalski-17052024-42.pdf"
    assert call["folder_id"] is None
    assert call["make_public"] is True
    assert "Jan Kowalski" in extract_text(call["data"])

    assert store.updates == [
        (
            42,
            {
                "checklist_report_url": "https://drive.google.com/file/d/file-123/view?usp=drivesdk",
                "checklist_report_file_id": "file-123",
            },
        )
    ]


def test_request_options_reach_publisher_and_update():
    store = InMemoryStore(reports={42: dict(REPORT)})
    publisher = FakePublisher()

    outcome = _coordinator(store, publisher).generate(
        _request(
            file_name="weekly/report:1",
            drive_folder_id="custom-folder",
            share_publicly=False,
            prefer_download_link=True,
            report_url_column="pdf_url",
            report_file_id_column="",
        )
    )

    call = publisher.calls[0]
    assert call["file_name"] == "weekly-report-1.pdf"
    assert call["folder_id"] == "custom-folder"
    assert call["make_public"] is False
    download = "https://drive.google.com/uc?id=file-123&export=download"
    assert outcome.payload["fileUrl"] == download
    assert store.updates == [(42, {"pdf_url": download})]


def test_file_id_column_disabled_by_configuration():
    store = InMemoryStore(reports={42: dict(REPORT)})

    _coordinator(store, driver_report_file_id_column="").generate(_request())

    assert list(store.updates[0][1]) == ["checklist_report_url"]


def test_share_default_follows_configuration():
    publisher = FakePublisher()

    _coordinator(publisher=publisher, google_drive_share_with_anyone=False).generate(_request())

    assert publisher.calls[0]["make_public"] is False


def test_template_data_overrides_stored_values():
    publisher = FakePublisher()

    _coordinator(publisher=publisher).generate(
        _request(data={"driverName": "Override Driver", "notes": "From portal"})
    )

    text = extract_text(publisher.calls[0]["data"])
    assert "Override Driver" in text
    assert "From portal" in text


def test_publish_failure_completes_with_warning_and_no_update():
    store = InMemoryStore(reports={42: dict(REPORT)})
    publisher = FakePublisher(error=UploadError("Google Drive returned error 500: backendError"))

    outcome = _coordinator(store, publisher).generate(_request())

    assert outcome.status is ReportStatus.DONE_WITH_WARNING
    assert outcome.http_status == 200
    assert outcome.payload == {
        "success": True,
        "reportId": 42,
        "fileId": None,
        "fileUrl": None,
        "templateId": "default-checklist-template.html",
        "warning": "Google Drive returned error 500: backendError",
    }
    assert outcome.stage is ReportStage.PUBLISH
    assert store.updates == []
    assert store.reports[42] == REPORT


def test_credential_failure_is_also_a_warning():
    publisher = FakePublisher(error=CredentialExchangeError("Google token exchange failed (400): invalid_grant"))

    outcome = _coordinator(publisher=publisher).generate(_request())

    assert outcome.status is ReportStatus.DONE_WITH_WARNING
    assert "invalid_grant" in outcome.payload["warning"]


def test_missing_google_configuration_fails_request():
    store = InMemoryStore(reports={42: dict(REPORT)})
    publisher = FakePublisher(error=ConfigurationError("Missing Google service account configuration."))

    outcome = _coordinator(store, publisher).generate(_request())

    assert outcome.status is ReportStatus.FAILED
    assert outcome.http_status == 500
    assert outcome.payload == {"success": False, "error": "Missing Google service account configuration."}
    assert store.updates == []


def test_unknown_report_is_not_found():
    publisher = FakePublisher()

    outcome = _coordinator(publisher=publisher).generate(_request(report_id=7))

    assert outcome.status is ReportStatus.FAILED
    assert outcome.http_status == 404
    assert outcome.stage is ReportStage.FETCH_SOURCE
    assert outcome.stages_completed == ()
    assert "7" in outcome.payload["error"]
    assert publisher.calls == []


def test_template_failure_stops_before_render():
    store = InMemoryStore(reports={42: dict(REPORT)})
    publisher = FakePublisher()

    outcome = _coordinator(store, publisher).generate(
        _request(checklist_template_id="storage://templates/missing.html")
    )

    assert outcome.status is ReportStatus.FAILED
    assert outcome.http_status == 500
    assert outcome.stage is ReportStage.RESOLVE_TEMPLATE
    assert outcome.stages_completed == (ReportStage.FETCH_SOURCE,)
    assert publisher.calls == []
    assert store.updates == []


def test_markup_template_from_storage():
    markup = "<h1>Custom {{ driver_name }}</h1><p>{{ vehicle_registration }}</p>"
    store = InMemoryStore(
        reports={42: dict(REPORT)},
        objects={("templates", "custom.html"): (markup.encode(), "text/html")},
    )
    publisher = FakePublisher()

    outcome = _coordinator(store, publisher).generate(
        _request(checklist_template_id="storage://templates/custom.html")
    )

    assert outcome.payload["templateId"] == "storage://templates/custom.html"
    text = extract_text(publisher.calls[0]["data"])
    assert "Custom Jan Kowalski" in text
    assert "KR 9000" in text


def test_prebuilt_form_template_is_filled():
    store = InMemoryStore(
        reports={42: dict(REPORT)},
        objects={("templates", "form.pdf"): (form_pdf(["driver", "vehicle"]), "application/pdf")},
    )
    publisher = FakePublisher()

    outcome = _coordinator(store, publisher).generate(
        _request(checklist_template_id="storage://templates/form.pdf")
    )

    assert outcome.status is ReportStatus.DONE
    values = field_values(publisher.calls[0]["data"])
    assert values == {"driver": "Jan Kowalski", "vehicle": "KR 9000"}


def test_persist_failure_is_reported_after_publish():
    store = InMemoryStore(reports={42: dict(REPORT)}, fail_updates=True)
    publisher = FakePublisher()

    outcome = _coordinator(store, publisher).generate(_request())

    assert outcome.status is ReportStatus.FAILED
    assert outcome.http_status == 500
    assert outcome.stage is ReportStage.PERSIST_REFERENCE
    assert len(publisher.calls) == 1


def test_repeated_generation_publishes_again():
    store = InMemoryStore(reports={42: dict(REPORT)})
    publisher = FakePublisher(result=UploadResult(file_id="again", web_view_link="https://view/again"))
    coordinator = _coordinator(store, publisher)

    coordinator.generate(_request())
    coordinator.generate(_request())

    assert len(publisher.calls) == 2
    assert store.reports[42]["checklist_report_url"] == "https://view/again"


@pytest.mark.parametrize("report_id", [42, "42"])
def test_report_id_is_passed_through(report_id):
    store = InMemoryStore(reports={report_id: dict(REPORT)})

    outcome = _coordinator(store).generate(_request(report_id=report_id))

    assert outcome.payload["reportId"] == report_id


def test_remote_template_cannot_execute_code():
    payload = "<p>{{ cycler.__init__.__globals__.os.popen('echo hacked-$((6*7))').read() }}</p>"
    http = httpx.Client(
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, text=payload, headers={"content-type": "text/html"})
        )
    )
    store = InMemoryStore(reports={42: dict(REPORT)})
    publisher = FakePublisher()

    outcome = _coordinator(store, publisher, http_client=http).generate(
        _request(checklist_template_id="https://templates.example.com/t.html")
    )

    assert outcome.status is ReportStatus.FAILED
    assert outcome.stage is ReportStage.RENDER
    assert "hacked-42" not in outcome.payload["error"]
    assert publisher.calls == []
    assert store.updates == []
