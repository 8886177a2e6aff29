import io
from uuid import uuid4

import pytest
from httpx import AsyncClient
from openpyxl import Workbook, load_workbook

from registry.core.academic_calendar import GRADE_ORDER, current_academic_year

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ACTOR = {"X-Changed-By": "secretary"}


def _payload(**overrides) -> dict:
    data = {
        "idNumber": "123456789",
        "lastName": "Cohen",
        "firstName": "David",
        "grade": GRADE_ORDER[0],
        "stream": "1",
        "gender": "male",
        "track": "Physics",
        "status": "studying",
        "cycle": str(current_academic_year()),
    }
    data.update(overrides)
    return data


def _workbook_bytes(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "message": "Backend is running", "authEnabled": False}


@pytest.mark.asyncio
async def test_auth_config_when_disabled(client: AsyncClient) -> None:
    response = await client.get("/api/v1/auth/config")
    assert response.status_code == 200
    assert response.json() == {"enabled": False}


@pytest.mark.asyncio
async def test_create_and_get_student(client: AsyncClient) -> None:
    response = await client.post("/api/v1/students", json=_payload(), headers=ACTOR)
    assert response.status_code == 201
    data = response.json()
    assert data["idNumber"] == "123456789"
    assert data["lastName"] == "Cohen"
    assert data["grade"] == GRADE_ORDER[0]
    assert "createdAt" in data and "updatedAt" in data

    fetched = await client.get(f"/api/v1/students/{data['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == data["id"]

    history = await client.get(f"/api/v1/students/{data['id']}/history")
    assert history.status_code == 200
    events = history.json()
    assert sorted(e["changeType"] for e in events) == ["created", "start_studies"]
    assert all(e["changedBy"] == "secretary" for e in events)


@pytest.mark.asyncio
async def test_blank_grade_is_returned_as_null(client: AsyncClient) -> None:
    ended_cycle = str(current_academic_year() - len(GRADE_ORDER))
    response = await client.post(
        "/api/v1/students", json=_payload(grade="   ", cycle=ended_cycle, status="completed")
    )

    assert response.status_code == 201
    assert response.json()["grade"] is None
    fetched = await client.get(f"/api/v1/students/{response.json()['id']}")
    assert fetched.json()["grade"] is None


@pytest.mark.asyncio
async def test_create_duplicate_returns_409(client: AsyncClient) -> None:
    assert (await client.post("/api/v1/students", json=_payload())).status_code == 201

    response = await client.post("/api/v1/students", json=_payload(firstName="Other"))

    assert response.status_code == 409
    assert "123456789" in response.json()["detail"]


@pytest.mark.asyncio
async def test_create_invalid_state_returns_422(client: AsyncClient) -> None:
    response = await client.post("/api/v1/students", json=_payload(gender="robot"))
    assert response.status_code == 422
    assert "Invalid gender" in response.json()["detail"]

    response = await client.post("/api/v1/students", json=_payload(grade=None))
    assert response.status_code == 422

    body = _payload()
    del body["lastName"]
    assert (await client.post("/api/v1/students", json=body)).status_code == 422


@pytest.mark.asyncio
async def test_unknown_student_returns_404(client: AsyncClient) -> None:
    missing = uuid4()
    assert (await client.get(f"/api/v1/students/{missing}")).status_code == 404
    assert (await client.put(f"/api/v1/students/{missing}", json=_payload())).status_code == 404
    assert (await client.delete(f"/api/v1/students/{missing}")).status_code == 404
    assert (await client.get(f"/api/v1/students/{missing}/history")).status_code == 404
    response = await client.post(f"/api/v1/students/{missing}/location", json={"location": "Room 1"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_location_and_history(client: AsyncClient) -> None:
    student_id = (await client.post("/api/v1/students", json=_payload())).json()["id"]

    response = await client.put(
        f"/api/v1/students/{student_id}",
        json=_payload(track="Biology"),
        params={"location": "front office"},
        headers=ACTOR,
    )
    assert response.status_code == 200
    assert response.json()["track"] == "Biology"

    response = await client.post(
        f"/api/v1/students/{student_id}/location", json={"location": "Room 12"}, headers=ACTOR
    )
    assert response.status_code == 204

    events = (await client.get(f"/api/v1/students/{student_id}/history")).json()
    assert len(events) == 4
    field_update = next(e for e in events if e["changeType"] == "field_update")
    assert field_update["fieldName"] == "Track"
    assert field_update["oldValue"] == "Physics"
    assert field_update["newValue"] == "Biology"
    assert field_update["location"] == "front office"
    location_change = next(e for e in events if e["changeType"] == "location_change")
    assert location_change["location"] == "Room 12"
    assert location_change["changedBy"] == "secretary"


@pytest.mark.asyncio
async def test_delete_student(client: AsyncClient) -> None:
    student_id = (await client.post("/api/v1/students", json=_payload())).json()["id"]

    response = await client.delete(f"/api/v1/students/{student_id}", headers=ACTOR)

    assert response.status_code == 200
    assert response.json() == {"id": student_id, "message": "Student deleted successfully"}
    assert (await client.get(f"/api/v1/students/{student_id}")).status_code == 404
    assert (await client.get(f"/api/v1/students/{student_id}/history")).status_code == 404


@pytest.mark.asyncio
async def test_list_students_with_filters(client: AsyncClient) -> None:
    await client.post("/api/v1/students", json=_payload(idNumber="1", lastName="Aharon"))
    await client.post("/api/v1/students", json=_payload(idNumber="2", lastName="Ben", gender="female"))
    await client.post("/api/v1/students", json=_payload(idNumber="3", lastName="Cohen", status="discontinued"))

    response = await client.get("/api/v1/students", params={"pageSize": 2})
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["totalPages"] == 2
    assert [s["idNumber"] for s in data["items"]] == ["1", "2"]

    data = (await client.get("/api/v1/students", params={"status": "discontinued"})).json()
    assert [s["idNumber"] for s in data["items"]] == ["3"]
    data = (await client.get("/api/v1/students", params={"gender": "female"})).json()
    assert [s["idNumber"] for s in data["items"]] == ["2"]


@pytest.mark.asyncio
async def test_import_rows(client: AsyncClient) -> None:
    await client.post("/api/v1/students", json=_payload(idNumber="1", track="Physics"))

    response = await client.post(
        "/api/v1/students/import",
        json={
            "sourceLabel": "api roster",
            "rows": [
                {"idNumber": "1", "lastName": "Cohen", "firstName": "David", "grade": GRADE_ORDER[0],
                 "stream": "1", "gender": "male", "track": "Biology"},
                {"idNumber": "2", "lastName": "Levi", "firstName": "Sara", "grade": "ט",
                 "stream": "2", "gender": "נקבה", "track": "Math"},
                {"idNumber": "3", "lastName": "Mizrahi", "firstName": "Dana", "grade": "ט",
                 "stream": "2", "gender": "?", "track": "Math"},
                {"idNumber": "", "lastName": "Blank", "firstName": "Row"},
            ],
        },
        headers=ACTOR,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 3
    assert data["created"] == 1
    assert data["updated"] == 1
    assert data["skipped"] == 0
    assert data["rowErrors"][0]["rowIndex"] == 3
    assert data["rowErrors"][0]["idNumber"] == "3"
    assert data["errors"][0].startswith("Row 3 (ID 3):")


@pytest.mark.asyncio
async def test_import_requires_rows(client: AsyncClient) -> None:
    response = await client.post("/api/v1/students/import", json={"rows": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_import_excel(client: AsyncClient) -> None:
    content = _workbook_bytes(
        [
            ["ת.ז", "שם משפחה", "שם פרטי", "שכבה", "מקבילה", "מין", "מגמה"],
            [111222333, "כהן", "דוד", "ט'", 1, "זכר", "מדעי המחשב"],
            [None, None, None, None, None, None, None],
            [444555666, "לוי", "שרה", 'י"א', 3, "נקבה", "מתמטיקה"],
            [777888999, "ישראלי", "יוסי", "ט'", 2, "לא ידוע", "פיזיקה"],
        ]
    )

    response = await client.post(
        "/api/v1/students/import-excel",
        files={"file": ("roster.xlsx", content, XLSX)},
        headers=ACTOR,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 3
    assert data["created"] == 2
    assert len(data["rowErrors"]) == 1
    assert data["rowErrors"][0]["rowIndex"] == 5
    assert data["rowErrors"][0]["idNumber"] == "777888999"
    assert "Invalid gender" in data["rowErrors"][0]["message"]

    listed = (await client.get("/api/v1/students", params={"search": "111222333"})).json()
    assert listed["items"][0]["gender"] == "male"
    assert listed["items"][0]["stream"] == "1"


@pytest.mark.asyncio
async def test_import_excel_rejects_bad_uploads(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/students/import-excel", files={"file": ("roster.csv", b"a,b,c", "text/csv")}
    )
    assert response.status_code == 400

    response = await client.post(
        "/api/v1/students/import-excel", files={"file": ("roster.xlsx", b"not a workbook", XLSX)}
    )
    assert response.status_code == 400

    headers_only = _workbook_bytes([["id_number", "last_name", "first_name"]])
    response = await client.post(
        "/api/v1/students/import-excel", files={"file": ("roster.xlsx", headers_only, XLSX)}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Excel file has no data rows"


@pytest.mark.asyncio
async def test_download_template(client: AsyncClient) -> None:
    response = await client.get("/api/v1/students/import-excel/template")

    assert response.status_code == 200
    assert response.headers["content-type"] == XLSX
    wb = load_workbook(io.BytesIO(response.content))
    assert wb.sheetnames == ["Students", "Grades"]
    assert [c.value for c in wb["Students"][1]] == [
        "id_number", "last_name", "first_name", "grade", "stream", "gender", "track"
    ]
    assert [row[0] for row in wb["Grades"].iter_rows(min_row=2, values_only=True)] == list(GRADE_ORDER)


@pytest.mark.asyncio
async def test_sync_grades_endpoint(client: AsyncClient) -> None:
    await client.post("/api/v1/students", json=_payload())

    response = await client.post("/api/v1/students/sync-grades", headers=ACTOR)

    assert response.status_code == 200
    data = response.json()
    assert data["academicYear"] == current_academic_year()
    assert data["examined"] == 1
    assert data["updated"] == 0
