"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from backend import api
from src.core.boards import BoardConfigStore

NOW = "2026-01-10T00:00:00Z"


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(api, "board_store", BoardConfigStore(path=tmp_path / "boards.json"))
    return TestClient(api.app)


def record(record_id, **fields):
    payload = {"id": record_id, "title": f"Record {record_id}", "state": "Active", "created_date": "2026-01-01T00:00:00Z"}
    payload.update(fields)
    return payload


def test_root_and_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert "/api/timeline" in client.get("/").json()["endpoints"]


class TestTimelineEndpoint:
    def test_snapshot_from_flat_records(self, client):
        res = client.post(
            "/api/timeline",
            json={
                "records": [record(1), record(2, parent_id=1, predecessors=[1]), record(5, parent_id=99999)],
                "now": NOW,
            },
        )

        assert res.status_code == 200
        data = res.json()
        assert len(data["rows"]) == 3
        assert data["edges"] == [{"id": 1, "source": 1, "target": 2, "kind": "finish-to-start"}]
        assert [d["kind"] for d in data["diagnostics"]] == ["missing_parent"]
        assert data["generated_at"] == "2026-01-10T00:00:00+00:00"

    def test_same_request_same_response(self, client):
        body = {"records": [record(1), record(2, assignee="Ada")], "group_by": "assignee", "now": NOW}

        assert client.post("/api/timeline", json=body).json() == client.post("/api/timeline", json=body).json()

    def test_ancestors_are_backfilled(self, client):
        res = client.post(
            "/api/timeline",
            json={"records": [record(2, parent_id=1)], "ancestors": [record(1)], "now": NOW},
        )

        rows = {row["row_id"]["id"]: row for row in res.json()["rows"]}
        assert rows[1]["backfilled"] is True
        assert rows[2]["parent_row_id"]["id"] == 1

    def test_unknown_group_by_rejected(self, client):
        res = client.post("/api/timeline", json={"records": [], "group_by": "priority"})

        assert res.status_code == 422

    def test_invalid_record_rejected(self, client):
        res = client.post("/api/timeline", json={"records": [{"title": "no id"}], "now": NOW})

        assert res.status_code == 422

    def test_invalid_now_rejected(self, client):
        res = client.post("/api/timeline", json={"records": [], "now": "soon"})

        assert res.status_code == 422


class TestIterationEndpoint:
    ITERATIONS = [
        {"path": "Proj\\Sprint 2", "start_date": "2026-01-15", "end_date": "2026-01-28"},
        {"path": "Proj\\Sprint 1", "start_date": "2026-01-01", "end_date": "2026-01-14"},
    ]

    def test_resolves_against_sorted_calendar(self, client):
        res = client.post(
            "/api/iterations/resolve",
            json={"expression": "@CurrentIteration-1", "iterations": self.ITERATIONS, "now": "2026-01-20T00:00:00Z"},
        )

        assert res.json() == {"expression": "@CurrentIteration-1", "path": "Proj\\Sprint 1"}

    def test_out_of_range_is_null(self, client):
        res = client.post(
            "/api/iterations/resolve",
            json={"expression": "@CurrentIteration+1", "iterations": self.ITERATIONS, "now": "2026-01-20T00:00:00Z"},
        )

        assert res.json()["path"] is None


class TestBoardEndpoints:
    def test_board_lifecycle(self, client):
        created = client.post(
            "/api/boards",
            json={"name": "Team", "zoom_level": "month", "filter_criteria": {"states": ["Active"]}},
        ).json()
        board_id = created["id"]

        assert client.get(f"/api/boards/{board_id}").json()["zoom_level"] == "month"

        updated = client.put(f"/api/boards/{board_id}", json={"name": "Team B"}).json()
        assert updated["name"] == "Team B"
        assert updated["filter_criteria"]["states"] == ["Active"]

        copy = client.post(f"/api/boards/{board_id}/duplicate", json={"name": "Copy"}).json()
        assert copy["id"] != board_id

        exported = client.get(f"/api/boards/{board_id}/export").json()
        imported = client.post("/api/boards/import", json=exported).json()
        assert imported["name"] == "Team B (Imported)"

        assert len(client.get("/api/boards").json()["boards"]) == 3

        assert client.delete(f"/api/boards/{board_id}").status_code == 200
        assert client.get(f"/api/boards/{board_id}").status_code == 404

    def test_current_board(self, client):
        board_id = client.post("/api/boards", json={"name": "Mine"}).json()["id"]

        client.put("/api/boards/current", json={"board_id": board_id})

        assert client.get("/api/boards/current").json() == {"current_board_id": board_id}
        assert client.get("/api/boards").json()["current_board_id"] == board_id

    def test_current_board_must_exist(self, client):
        assert client.put("/api/boards/current", json={"board_id": "missing"}).status_code == 404

    def test_missing_board_returns_404(self, client):
        assert client.get("/api/boards/missing").status_code == 404
        assert client.put("/api/boards/missing", json={"name": "x"}).status_code == 404
        assert client.delete("/api/boards/missing").status_code == 404
        assert client.post("/api/boards/missing/duplicate", json={"name": "x"}).status_code == 404
        assert client.get("/api/boards/missing/export").status_code == 404

    def test_validation_errors(self, client):
        assert client.post("/api/boards", json={"zoom_level": "week"}).status_code == 422
        assert client.post("/api/boards", json={"name": "x", "zoom_level": "decade"}).status_code == 422
        assert client.post("/api/boards", json={"name": "x", "group_by": "priority"}).status_code == 422
        assert client.post("/api/boards/import", json=[1, 2]).status_code == 422

    def test_bad_update_is_rejected_and_store_stays_readable(self, client):
        board_id = client.post("/api/boards", json={"name": "B"}).json()["id"]

        assert client.put(f"/api/boards/{board_id}", json={"column_widths": "abc"}).status_code == 422
        assert client.put(f"/api/boards/{board_id}", json={"expanded_row_ids": ["x"]}).status_code == 422
        assert client.put(f"/api/boards/{board_id}", json={"zoom_level": None}).status_code == 422

        listing = client.get("/api/boards")
        assert listing.status_code == 200
        assert listing.json()["boards"][0]["column_widths"] is None

    def test_partial_update_keeps_other_fields(self, client):
        board_id = client.post(
            "/api/boards", json={"name": "B", "group_by": "state", "column_widths": {"title": 300}}
        ).json()["id"]

        updated = client.put(f"/api/boards/{board_id}", json={"expanded_row_ids": [4, 2]}).json()

        assert updated["group_by"] == "state"
        assert updated["column_widths"] == {"title": 300}
        assert updated["expanded_row_ids"] == [4, 2]


class TestFilteredTimeline:
    ITERATIONS = [
        {"path": "Proj\\Sprint 1", "start_date": "2026-01-01", "end_date": "2026-01-14"},
        {"path": "Proj\\Sprint 2", "start_date": "2026-01-15", "end_date": "2026-01-28"},
    ]
    RECORDS = [
        record(1, iteration_path="Proj\\Sprint 1"),
        record(2, iteration_path="Proj\\Sprint 2"),
        record(3, iteration_path="Proj\\Sprint 1", parent_id=2),
    ]

    def test_previous_iteration_filter_narrows_rows(self, client):
        res = client.post(
            "/api/timeline",
            json={
                "records": self.RECORDS,
                "iterations": self.ITERATIONS,
                "filter_criteria": {"iteration_path_prefix_or_macro": "@CurrentIteration-1"},
                "now": "2026-01-20T00:00:00Z",
            },
        )

        rows = {row["row_id"]["id"]: row for row in res.json()["rows"]}
        assert rows[1]["backfilled"] is False
        assert rows[3]["backfilled"] is False
        # Filtered-out parent comes back as a back-filled row
        assert rows[2]["backfilled"] is True

    def test_unresolvable_filter_macro_yields_no_rows(self, client):
        res = client.post(
            "/api/timeline",
            json={
                "records": self.RECORDS,
                "iterations": self.ITERATIONS,
                "filter_criteria": {"iteration_path_prefix_or_macro": "@CurrentIteration+3"},
                "now": "2026-01-20T00:00:00Z",
            },
        )

        assert res.status_code == 200
        assert res.json()["rows"] == []

    def test_saved_board_supplies_filters_and_grouping(self, client):
        board_id = client.post(
            "/api/boards",
            json={
                "name": "Last sprint",
                "group_by": "iteration",
                "zoom_level": "day",
                "filter_criteria": {"iteration_path_prefix_or_macro": "@CurrentIteration-1"},
            },
        ).json()["id"]

        data = client.post(
            "/api/timeline",
            json={
                "records": [self.RECORDS[0], self.RECORDS[1]],
                "iterations": self.ITERATIONS,
                "board_id": board_id,
                "now": "2026-01-20T00:00:00Z",
            },
        ).json()

        assert data["group_by"] == "iteration"
        assert data["zoom"]["unit"] == "day"
        labels = [row["label"] for row in data["rows"]]
        assert labels == ["Proj\\Sprint 1", "Record 1"]

    def test_request_overrides_board_grouping(self, client):
        board_id = client.post("/api/boards", json={"name": "B", "group_by": "state"}).json()["id"]

        data = client.post(
            "/api/timeline",
            json={"records": [record(1)], "board_id": board_id, "group_by": "none", "now": NOW},
        ).json()

        assert data["group_by"] == "none"

    def test_unknown_board_is_404(self, client):
        res = client.post("/api/timeline", json={"records": [], "board_id": "missing", "now": NOW})

        assert res.status_code == 404


class TestIterationQueries:
    def test_query_macros_substituted(self, client):
        res = client.post(
            "/api/iterations/resolve",
            json={
                "query": "[System.IterationPath] = @CurrentIteration",
                "iterations": [{"path": "Proj\\Sprint 1", "is_current": True}],
            },
        )

        assert res.json()["query"] == "[System.IterationPath] = 'Proj\\Sprint 1'"

    def test_calendar_from_iteration_tree(self, client):
        tree = {
            "name": "Proj",
            "children": [
                {
                    "name": "Sprint 1",
                    "structureType": 2,
                    "attributes": {"startDate": "2026-01-01T00:00:00Z", "finishDate": "2026-01-14T00:00:00Z"},
                },
                {
                    "name": "Sprint 2",
                    "structureType": 2,
                    "attributes": {"startDate": "2026-01-15T00:00:00Z", "finishDate": "2026-01-28T00:00:00Z"},
                },
            ],
        }

        res = client.post(
            "/api/iterations/resolve",
            json={"expression": "@CurrentIteration-1", "iteration_tree": tree, "now": "2026-01-20T00:00:00Z"},
        )

        assert res.json()["path"] == "Proj\\Sprint 1"
