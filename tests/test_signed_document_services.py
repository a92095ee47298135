from io import BytesIO
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from pypdf import PdfReader

from app.models.signing import DocumentStatus, DocumentVersion
from app.schemas.signing import FieldPayload, PageRect, RecipientPayload, SignRequest
from app.services.common import SessionContext
from app.services.coordinates import PageSize
from app.services.session_reconciler import SaveRequest, SessionReconciler
from app.services.signed_document import (
    SignedDocuments,
    content_disposition,
    field_pdf_box,
    load_version_bytes,
    render_fields,
)
from app.services.signing_document import Documents

OWNER = SessionContext(owner_id="owner-1")


def _text_field(field_id, value, page=1, **extra):
    return {
        "id": field_id,
        "type": "text",
        "x": 72,
        "y": 100,
        "width": 200,
        "height": 24,
        "pageNumber": page,
        "value": value,
        **extra,
    }


class TestLoadVersionBytes:
    def test_database_bytes(self):
        assert load_version_bytes(DocumentVersion(pdf_data=b"%PDF-db")) == b"%PDF-db"

    def test_file_fallback(self, tmp_path):
        path = tmp_path / "v1.pdf"
        path.write_bytes(b"%PDF-disk")
        version = DocumentVersion(pdf_data=None, file_path=str(path))
        assert load_version_bytes(version) == b"%PDF-disk"

    def test_object_storage_fallback(self):
        version = DocumentVersion(pdf_data=None, storage_key="documents/x/v1/a.pdf")
        with patch("app.services.signed_document.object_storage") as storage:
            storage.fetch.return_value = b"%PDF-s3"
            assert load_version_bytes(version) == b"%PDF-s3"
        storage.fetch.assert_called_once_with("documents/x/v1/a.pdf")

    def test_nothing_available(self):
        with pytest.raises(HTTPException) as exc:
            load_version_bytes(DocumentVersion(pdf_data=None))
        assert exc.value.status_code == 404

    def test_unreadable_shape(self):
        version = DocumentVersion()
        version.pdf_data = 12345
        with pytest.raises(HTTPException) as exc:
            load_version_bytes(version)
        assert exc.value.status_code == 500
        assert exc.value.detail == "Invalid PDF data format"


class TestFieldPdfBox:
    def test_without_page_rect_uses_points(self):
        field = FieldPayload.model_validate(_text_field("a", "v"))
        box = field_pdf_box(field, PageSize(612, 792))
        assert (box.x, box.y) == pytest.approx((72, 792 - 124))

    def test_container_coordinates_with_page_rect(self):
        field = FieldPayload.model_validate(
            _text_field(
                "a",
                "v",
                x=82,
                y=1100,
                pageRect={"left": 10, "top": 1000, "width": 306, "height": 396},
            )
        )
        box = field_pdf_box(field, PageSize(612, 792))
        # page-local (72, 100) at half scale
        assert box.x == pytest.approx(144)
        assert box.y == pytest.approx(792 - (100 + 24) * 2)
        assert box.width == pytest.approx(400)


class TestRenderFields:
    def test_values_drawn_on_target_page(self, make_pdf):
        pdf = make_pdf(pages=[(612, 792, 0), (612, 792, 0)])
        writer = render_fields(pdf, [_text_field("a", "Hello Page Two", page=2)])
        assert len(writer.pages) == 2
        assert "Hello Page Two" in writer.pages[1].extract_text()
        assert "Hello Page Two" not in writer.pages[0].extract_text()

    def test_missing_page_and_malformed_fields_skipped(self, make_pdf):
        fields = [
            _text_field("a", "Ghost", page=5),
            {"id": "b", "type": "text"},
            _text_field("c", "Kept"),
        ]
        writer = render_fields(make_pdf(), fields)
        text = writer.pages[0].extract_text()
        assert "Kept" in text
        assert "Ghost" not in text

    def test_rotated_page(self, make_pdf):
        pdf = make_pdf(pages=[(612, 792, 90)])
        writer = render_fields(pdf, [_text_field("a", "Sideways")])
        assert writer.pages[0].rotation == 90
        assert "Sideways" in writer.pages[0].extract_text()

    def test_fields_without_values_leave_page_untouched(self, make_pdf):
        pdf = make_pdf()
        writer = render_fields(pdf, [_text_field("a", None)])
        original = PdfReader(BytesIO(pdf)).pages[0].extract_text()
        assert writer.pages[0].extract_text() == original


class TestContentDisposition:
    def test_ascii_name(self):
        assert content_disposition("NDA-signed.pdf") == (
            "attachment; filename=\"NDA-signed.pdf\"; filename*=UTF-8''NDA-signed.pdf"
        )

    def test_accents_are_folded_in_fallback(self):
        value = content_disposition("Café-signed.pdf")
        assert 'filename="Cafe-signed.pdf"' in value
        assert value.endswith("filename*=UTF-8''Caf%C3%A9-signed.pdf")

    def test_header_is_latin1_safe(self):
        value = content_disposition("契約書 ✍-signed.pdf")
        value.encode("latin-1")
        assert 'filename="___ _-signed.pdf"' in value


def _completed_document(db_session, make_pdf):
    response = SessionReconciler.save(
        db_session,
        OWNER,
        SaveRequest(
            pdf_bytes=make_pdf(),
            document_name="Services Agreement",
            fields=[
                FieldPayload(
                    id="name-1",
                    type="text",
                    x=72,
                    y=100,
                    width=200,
                    height=24,
                    page_number=1,
                    recipient_id="r1",
                    page_rect=PageRect(left=0, top=0, width=612, height=792),
                ),
                FieldPayload(
                    id="agree-1",
                    type="checkbox",
                    x=72,
                    y=140,
                    width=20,
                    height=20,
                    page_number=1,
                    recipient_id="r1",
                ),
            ],
            recipients=[RecipientPayload(id="r1", name="Grace Hopper", email="grace@example.com")],
        ),
    )
    document_id = str(response.document_id)
    token = Documents.send(db_session, OWNER, document_id).signing_token
    Documents.sign(
        db_session,
        document_id,
        "r1",
        token,
        SignRequest(fields=[{"id": "name-1", "value": "G. Hopper"}, {"id": "agree-1", "value": "true"}]),
        "192.0.2.10",
    )
    return document_id


class TestSignedDocuments:
    def test_incomplete_document_rejected(self, db_session, make_pdf):
        response = SessionReconciler.save(
            db_session,
            OWNER,
            SaveRequest(pdf_bytes=make_pdf(), document_name="Draft"),
        )
        with pytest.raises(HTTPException) as exc:
            SignedDocuments.build(db_session, OWNER, str(response.document_id))
        assert exc.value.status_code == 400
        assert exc.value.detail["code"] == "document_not_completed"

    def test_builds_signed_copy_with_certificate(self, db_session, make_pdf):
        document_id = _completed_document(db_session, make_pdf)
        artifact = SignedDocuments.build(db_session, OWNER, document_id)

        assert artifact.file_name == "Services Agreement-signed.pdf"
        reader = PdfReader(BytesIO(artifact.content))
        assert len(reader.pages) == 2
        first = reader.pages[0].extract_text()
        assert "G. Hopper" in first
        assert "X" in first
        certificate = reader.pages[1].extract_text()
        assert "Certificate of Completion" in certificate
        assert "Grace Hopper" in certificate
        assert "192.0.2.10" in certificate

    def test_other_owner_forbidden(self, db_session, make_pdf):
        document_id = _completed_document(db_session, make_pdf)
        with pytest.raises(HTTPException) as exc:
            SignedDocuments.build(db_session, SessionContext(owner_id="other"), document_id)
        assert exc.value.status_code == 403

    def test_status_is_completed(self, db_session, make_pdf):
        document_id = _completed_document(db_session, make_pdf)
        document = Documents.get_owned(db_session, OWNER, document_id)
        assert document.status == DocumentStatus.completed
