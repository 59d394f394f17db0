"""Tests for the experiments router."""

import pytest

API_KEY = {"X-API-Key": "test-api-key-12345"}

VARIANT = {
    "name": "topical-heavy",
    "description": "More weight on research interests",
    "trafficPercent": 50,
    "weights": {"recency": 0.1, "network": 0.2, "topical": 0.6, "popularity": 0.1},
}


class TestAuth:
    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/experiments/results"),
            ("post", "/experiments/variants"),
            ("post", "/experiments/variants/abc/deactivate"),
        ],
    )
    def test_requires_api_key(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid or missing API key"}


class TestVariants:
    def test_create_and_list(self, client):
        created = client.post("/experiments/variants", headers=API_KEY, json=VARIANT)
        assert created.status_code == 201
        variant_id = created.json()["id"]

        response = client.get("/experiments/results", headers=API_KEY)

        assert response.status_code == 200
        (variant,) = response.json()["variants"]
        assert variant["id"] == variant_id
        assert variant["name"] == "topical-heavy"
        assert variant["totalAssignments"] == 0
        assert variant["weights"]["topical"] == 0.6
        assert variant["performanceScore"] == pytest.approx(30.0)

    def test_results_for_one_variant(self, client):
        variant_id = client.post("/experiments/variants", headers=API_KEY, json=VARIANT).json()["id"]
        client.post("/experiments/variants", headers=API_KEY, json={**VARIANT, "name": "other"})

        response = client.get(f"/experiments/results?variantId={variant_id}", headers=API_KEY)

        assert [v["id"] for v in response.json()["variants"]] == [variant_id]

    def test_results_for_unknown_variant(self, client):
        response = client.get("/experiments/results?variantId=nope", headers=API_KEY)
        assert response.status_code == 404

    def test_rejects_weights_not_summing_to_one(self, client):
        body = {**VARIANT, "weights": {"recency": 0.5, "network": 0.5, "topical": 0.5, "popularity": 0.5}}
        response = client.post("/experiments/variants", headers=API_KEY, json=body)
        assert response.status_code == 422

    def test_rejects_traffic_over_100(self, client):
        response = client.post("/experiments/variants", headers=API_KEY, json={**VARIANT, "trafficPercent": 120})
        assert response.status_code == 422

    def test_deactivate(self, client):
        variant_id = client.post("/experiments/variants", headers=API_KEY, json=VARIANT).json()["id"]

        response = client.post(f"/experiments/variants/{variant_id}/deactivate", headers=API_KEY)

        assert response.status_code == 204
        assert client.get("/experiments/results", headers=API_KEY).json()["variants"] == []

    def test_deactivate_unknown(self, client):
        response = client.post("/experiments/variants/nope/deactivate", headers=API_KEY)
        assert response.status_code == 404


class TestFeedbackReachesVariant:
    def test_outcome_counted(self, client, auth_headers):
        variant_id = client.post(
            "/experiments/variants", headers=API_KEY, json={**VARIANT, "trafficPercent": 100}
        ).json()["id"]

        client.post(
            "/recommendations/feedback",
            headers=auth_headers("u1"),
            json={"itemType": "post", "itemId": "p1", "feedback": "positive", "variantId": variant_id},
        )

        (variant,) = client.get("/experiments/results", headers=API_KEY).json()["variants"]
        assert variant["totalShown"] == 1
        assert variant["totalClicked"] == 1
        assert variant["totalPositiveFeedback"] == 1
        assert variant["acceptanceRate"] == 1.0
