import json
from io import BytesIO

from pypdf import PdfReader

FIELDS = [
    {
        "id": "sig-name",
        "type": "text",
        "x": 72,
        "y": 100,
        "width": 200,
        "height": 24,
        "pageNumber": 1,
        "recipientId": "r1",
        "pageRect": {"left": 0, "top": 0, "width": 612, "height": 792},
    }
]
RECIPIENTS = [{"id": "r1", "name": "Katherine Johnson", "email": "kj@example.com"}]


def _save(client, headers, pdf, **form):
    data = {
        "documentName": "NDA",
        "fields": json.dumps(FIELDS),
        "recipients": json.dumps(RECIPIENTS),
    }
    data.update(form)
    return client.post(
        "/documents/save-with-fields",
        files={"file": ("nda.pdf", pdf, "application/pdf")},
        data=data,
        headers=headers,
    )


def _complete(client, headers, pdf, **form):
    document_id = _save(client, headers, pdf, **form).json()["documentId"]
    sent = client.post(f"/documents/{document_id}/send", headers=headers)
    assert sent.status_code == 200
    token = sent.json()["signingToken"]
    signed = client.post(
        f"/documents/{document_id}/recipients/r1/sign",
        params={"token": token},
        json={"fields": [{"id": "sig-name", "value": "K. Johnson"}]},
        headers={"X-Forwarded-For": "198.51.100.7"},
    )
    assert signed.status_code == 200
    assert signed.json()["status"] == "completed"
    return document_id


class TestSaveWithFields:
    def test_initial_save(self, client, owner_headers, make_pdf):
        resp = _save(client, owner_headers, make_pdf())
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["version"] == 1
        assert data["fileName"] == "nda.pdf"
        assert data["message"] == "Document saved successfully"
        assert data["fileUrl"].startswith("/api/documents/file?path=")

    def test_repeat_save_is_noop(self, client, owner_headers, make_pdf):
        pdf = make_pdf()
        document_id = _save(client, owner_headers, pdf).json()["documentId"]
        resp = _save(client, owner_headers, pdf, documentId=document_id)
        assert resp.status_code == 200
        assert resp.json()["message"] == "No relevant changes detected. Session maintained."

    def test_save_after_send_forks(self, client, owner_headers, make_pdf):
        document_id = _save(client, owner_headers, make_pdf()).json()["documentId"]
        client.post(f"/documents/{document_id}/send", headers=owner_headers)
        resp = _save(
            client, owner_headers, make_pdf(label="v2"), documentId=document_id
        )
        data = resp.json()
        assert data["version"] == 2
        assert data["fileName"] == f"{document_id}_v2.pdf"
        versions = client.get(
            f"/documents/{document_id}/versions", headers=owner_headers
        ).json()
        assert [v["version"] for v in versions] == [2, 1]

    def test_missing_identity_is_unauthorized(self, client, make_pdf):
        resp = _save(client, {}, make_pdf())
        assert resp.status_code == 401
        assert resp.json()["message"] == "Unauthorized"

    def test_malformed_fields_json(self, client, owner_headers, make_pdf):
        resp = _save(client, owner_headers, make_pdf(), fields="{not json")
        assert resp.status_code == 400

    def test_invalid_field_shape(self, client, owner_headers, make_pdf):
        resp = _save(client, owner_headers, make_pdf(), fields=json.dumps([{"id": "a"}]))
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_fields"

    def test_other_owner_forbidden(self, client, owner_headers, make_pdf):
        pdf = make_pdf()
        document_id = _save(client, owner_headers, pdf).json()["documentId"]
        resp = _save(client, {"X-User-Id": "intruder"}, pdf, documentId=document_id)
        assert resp.status_code == 403

    def test_stale_expected_version(self, client, owner_headers, make_pdf):
        pdf = make_pdf()
        document_id = _save(client, owner_headers, pdf).json()["documentId"]
        resp = _save(
            client, owner_headers, pdf, documentId=document_id, expectedVersion="2"
        )
        assert resp.status_code == 409

    def test_versioned_prefix(self, client, owner_headers, make_pdf):
        resp = client.post(
            "/api/v1/documents/save-with-fields",
            files={"file": ("nda.pdf", make_pdf(), "application/pdf")},
            data={"documentName": "NDA"},
            headers=owner_headers,
        )
        assert resp.status_code == 200


class TestDownloadSigned:
    def test_download_completed_document(self, client, owner_headers, make_pdf):
        document_id = _complete(client, owner_headers, make_pdf())
        resp = client.get(
            "/documents/download-signed",
            params={"documentId": document_id},
            headers=owner_headers,
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.headers["content-disposition"] == (
            "attachment; filename=\"NDA-signed.pdf\"; filename*=UTF-8''NDA-signed.pdf"
        )
        assert int(resp.headers["content-length"]) == len(resp.content)

        reader = PdfReader(BytesIO(resp.content))
        assert len(reader.pages) == 2
        assert "K. Johnson" in reader.pages[0].extract_text()
        certificate = reader.pages[1].extract_text()
        assert "Certificate of Completion" in certificate
        assert "Katherine Johnson" in certificate
        assert "198.51.100.7" in certificate

    def test_non_ascii_document_name(self, client, owner_headers, make_pdf):
        document_id = _complete(client, owner_headers, make_pdf(), documentName="Договор")
        resp = client.get(
            "/documents/download-signed",
            params={"documentId": document_id},
            headers=owner_headers,
        )
        assert resp.status_code == 200
        disposition = resp.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="_______-signed.pdf"')
        assert disposition.endswith(
            "filename*=UTF-8''%D0%94%D0%BE%D0%B3%D0%BE%D0%B2%D0%BE%D1%80-signed.pdf"
        )
        assert PdfReader(BytesIO(resp.content)).pages

    def test_not_completed(self, client, owner_headers, make_pdf):
        document_id = _save(client, owner_headers, make_pdf()).json()["documentId"]
        resp = client.get(
            "/documents/download-signed",
            params={"documentId": document_id},
            headers=owner_headers,
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "document_not_completed"
        assert body["message"] == "Document is not completed yet"

    def test_unknown_document(self, client, owner_headers):
        resp = client.get(
            "/documents/download-signed",
            params={"documentId": "5b1f8a55-1d7e-4c33-9d47-7f1b3f0d3a11"},
            headers=owner_headers,
        )
        assert resp.status_code == 404

    def test_other_owner(self, client, owner_headers, make_pdf):
        document_id = _complete(client, owner_headers, make_pdf())
        resp = client.get(
            "/documents/download-signed",
            params={"documentId": document_id},
            headers={"X-User-Id": "intruder"},
        )
        assert resp.status_code == 403


class TestDocumentQueries:
    def test_get_and_list(self, client, owner_headers, make_pdf):
        document_id = _save(client, owner_headers, make_pdf()).json()["documentId"]
        resp = client.get(f"/documents/{document_id}", headers=owner_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["documentName"] == "NDA"
        assert data["status"] == "draft"
        assert data["recipients"][0]["fieldCount"] == 1

        listing = client.get("/documents", headers=owner_headers).json()
        assert listing["count"] == 1
        assert listing["items"][0]["id"] == document_id

    def test_sign_with_bad_token(self, client, owner_headers, make_pdf):
        document_id = _save(client, owner_headers, make_pdf()).json()["documentId"]
        client.post(f"/documents/{document_id}/send", headers=owner_headers)
        resp = client.post(
            f"/documents/{document_id}/recipients/r1/sign",
            params={"token": "forged"},
            json={"fields": []},
        )
        assert resp.status_code == 403


class TestPageSnap:
    def test_snap_to_page_edge(self, client):
        resp = client.post(
            "/builder/page-snap",
            json={
                "x": 50,
                "y": 980,
                "height": 40,
                "pageNumber": 1,
                "pages": [{"top": 0, "height": 1000}, {"top": 1020, "height": 1000}],
            },
        )
        assert resp.status_code == 200
        assert resp.json() == {"x": 50.0, "y": 959.0, "pageNumber": 1, "snapped": True}

    def test_no_page_keeps_previous(self, client):
        resp = client.post(
            "/builder/page-snap",
            json={
                "x": 50,
                "y": 5000,
                "height": 40,
                "pageNumber": 2,
                "previousX": 10,
                "previousY": 20,
                "pages": [None, {"top": 1020, "height": 1000}],
            },
        )
        assert resp.json() == {"x": 10.0, "y": 20.0, "pageNumber": 2, "snapped": False}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
