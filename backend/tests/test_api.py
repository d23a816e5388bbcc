# tests/test_api.py
from datetime import datetime, timedelta, timezone
from http import HTTPStatus


def _create_meeting(client, title="Physics 101", **overrides) -> dict:
    start = datetime.now(timezone.utc)
    payload = {"title": title, "scheduled_start": start.isoformat()}
    payload.update(overrides)
    response = client.post("/api/v1/meetings", json=payload)
    assert response.status_code == HTTPStatus.CREATED
    return response.json()


def _start(client, meeting_id) -> dict:
    response = client.post(f"/api/v1/meetings/{meeting_id}/start")
    assert response.status_code == HTTPStatus.OK
    return response.json()


def test_health_endpoints(client):
    """
    Both health routes respond; the detailed one exposes the live counters.
    """
    root = client.get("/")
    assert root.status_code == HTTPStatus.OK
    assert root.json()["status"] == "online"

    health = client.get("/api/v1/health")
    assert health.status_code == HTTPStatus.OK
    data = health.json()
    assert data["status"] == "healthy"
    assert isinstance(data["telemetry"], dict)


def test_meeting_lifecycle(client):
    meeting = _create_meeting(client)
    assert meeting["status"] == "scheduled"
    assert meeting["started_at"] is None

    started = _start(client, meeting["id"])
    assert started["status"] == "live"

    ended = client.post(f"/api/v1/meetings/{meeting['id']}/end")
    assert ended.status_code == HTTPStatus.OK
    assert ended.json()["status"] == "ended"
    assert ended.json()["closed_sessions"] == 0

    again = client.post(f"/api/v1/meetings/{meeting['id']}/end")
    assert again.status_code == HTTPStatus.BAD_REQUEST

    restart = client.post(f"/api/v1/meetings/{meeting['id']}/start")
    assert restart.status_code == HTTPStatus.BAD_REQUEST


def test_create_meeting_rejects_inverted_schedule(client):
    start = datetime.now(timezone.utc)
    response = client.post(
        "/api/v1/meetings",
        json={
            "title": "Backwards",
            "scheduled_start": start.isoformat(),
            "scheduled_end": (start - timedelta(minutes=30)).isoformat(),
        },
    )

    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


def test_unknown_meeting_returns_404(client):
    for path in (
        "/api/v1/meetings/999999",
        "/api/v1/attendance/meetings/999999",
        "/api/v1/emotions/meetings/999999/engagement",
        "/api/v1/emotions/meetings/999999/alerts",
    ):
        assert client.get(path).status_code == HTTPStatus.NOT_FOUND

    assert client.post("/api/v1/meetings/999999/start").status_code == HTTPStatus.NOT_FOUND


def test_live_join_and_leave_over_websocket(client):
    """
    A student joins and leaves over the live channel; the attendance report
    and CSV export reflect the closed session.
    """
    meeting = _create_meeting(client, title="Chemistry")
    _start(client, meeting["id"])
    presence = {"meetingId": meeting["id"], "studentId": 501, "studentName": "Grace"}

    with client.websocket_connect("/api/v1/live/ws?user_id=501") as ws:
        assert ws.receive_json()["event"] == "connected"

        ws.send_json({"event": "join-meeting", "data": presence})
        joined = ws.receive_json()
        assert joined["event"] == "student-joined"
        assert joined["data"]["studentName"] == "Grace"
        recorded = ws.receive_json()
        assert recorded["event"] == "attendance-recorded"
        assert recorded["data"]["type"] == "join"

        ws.send_json({"event": "leave-meeting", "data": presence})
        assert ws.receive_json()["event"] == "student-left"
        assert ws.receive_json()["data"]["type"] == "leave"

    report = client.get(f"/api/v1/attendance/meetings/{meeting['id']}")
    assert report.status_code == HTTPStatus.OK
    data = report.json()
    assert data["meeting"]["title"] == "Chemistry"
    assert data["statistics"]["totalStudents"] == 1
    attendance = data["attendances"][0]
    assert attendance["studentId"] == 501
    assert attendance["isCurrentlyPresent"] is False
    assert attendance["sessionCount"] == 1
    assert len(attendance["sessions"]) == 1

    export = client.get(f"/api/v1/attendance/meetings/{meeting['id']}/export")
    assert export.status_code == HTTPStatus.OK
    assert export.headers["content-type"].startswith("text/csv")
    lines = export.text.strip().split("\n")
    assert lines[0].startswith('"Student ID","Student Name","Status"')
    assert '"501","Grace"' in lines[1]

    student = client.get("/api/v1/attendance/students/501")
    assert student.status_code == HTTPStatus.OK
    assert student.json()["statistics"]["totalMeetings"] >= 1

    notes = client.put(f"/api/v1/attendance/{attendance['id']}/notes", json={"notes": "Left early"})
    assert notes.status_code == HTTPStatus.OK
    assert notes.json()["notes"] == "Left early"


def test_ending_meeting_closes_open_sessions(client):
    meeting = _create_meeting(client, title="Biology")
    _start(client, meeting["id"])

    with client.websocket_connect("/api/v1/live/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "join-meeting", "data": {"meetingId": meeting["id"], "studentId": 602}})
        ws.receive_json()
        ws.receive_json()

        ended = client.post(f"/api/v1/meetings/{meeting['id']}/end")
        assert ended.status_code == HTTPStatus.OK
        assert ended.json()["closed_sessions"] == 1

        left = ws.receive_json()
        assert left["event"] == "student-left"
        assert left["data"]["studentId"] == 602

        ws.send_json({"event": "join-meeting", "data": {"meetingId": meeting["id"], "studentId": 602}})
        refused = ws.receive_json()
        assert refused["event"] == "attendance-error"
        assert refused["data"]["message"] == "Meeting has already ended"

    report = client.get(f"/api/v1/attendance/meetings/{meeting['id']}").json()
    assert report["statistics"]["currentlyPresent"] == 0


def test_emotion_endpoints(client):
    meeting = _create_meeting(client, title="History")
    _start(client, meeting["id"])
    emotions = {"happy": 0.1, "sad": 0.0, "angry": 0.0, "surprised": 0.0, "fearful": 0.0, "disgusted": 0.0, "neutral": 0.9}

    with client.websocket_connect("/api/v1/live/ws") as ws:
        ws.receive_json()
        ws.send_json(
            {
                "event": "emotion-update",
                "data": {
                    "meetingId": meeting["id"],
                    "studentId": 701,
                    "studentName": "Alan",
                    "emotions": emotions,
                    "faceDetected": True,
                    "confidence": 0.9,
                },
            }
        )
        assert ws.receive_json()["event"] == "student-emotion-live"

    engagement = client.get(f"/api/v1/emotions/meetings/{meeting['id']}/engagement").json()
    assert engagement["totalStudents"] == 1
    assert engagement["engaged"] == 1
    assert engagement["avgEngagement"] == 90

    alerts = client.get(f"/api/v1/emotions/meetings/{meeting['id']}/alerts").json()
    assert alerts["alerts"] == []

    summary = client.get(f"/api/v1/emotions/meetings/{meeting['id']}/summary").json()
    assert summary["totalRecords"] == 1

    timeline = client.get(f"/api/v1/emotions/meetings/{meeting['id']}/students/701/timeline").json()
    assert [p["dominantEmotion"] for p in timeline["points"]] == ["neutral"]


def test_websocket_rejects_malformed_json(client):
    with client.websocket_connect("/api/v1/live/ws") as ws:
        ws.receive_json()
        ws.send_text("{not json")
        error = ws.receive_json()
        assert error["event"] == "error"
        assert error["data"]["message"] == "Invalid JSON payload"


def test_websocket_rejects_binary_frame_and_keeps_serving(client):
    with client.websocket_connect("/api/v1/live/ws") as ws:
        ws.receive_json()
        ws.send_bytes(b'{"event": "ping"}')
        error = ws.receive_json()
        assert error["event"] == "error"
        assert error["data"]["message"] == "Invalid JSON payload"

        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"
