from __future__ import annotations

import base64
import json

from fastapi.testclient import TestClient
from pytest import approx

from cammeasure.service import create_measurement_app
from cammeasure.strategies import PlaceholderStrategy
from cammeasure.synthetic import SyntheticSceneConfig, generate_synthetic_scene


def _payload(scene: str = "square", calibrated: bool = True) -> dict[str, object]:
    frame = generate_synthetic_scene(
        SyntheticSceneConfig(scene=scene, width=200, height=200, object_size=50)
    ).frame
    return {
        "width": frame.width,
        "height": frame.height,
        "pixels_b64": base64.b64encode(frame.as_array().tobytes()).decode("ascii"),
        "calibration": {"pixels_per_mm": 5.0, "is_calibrated": calibrated},
    }


def test_health_endpoint() -> None:
    client = TestClient(create_measurement_app())
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_detect_square_returns_calibrated_object() -> None:
    client = TestClient(create_measurement_app())
    response = client.post("/api/v1/detect", json=_payload())

    assert response.status_code == 200
    body = response.json()
    assert len(body["objects"]) == 1
    obj = body["objects"][0]
    assert obj["dimensions"]["unit"] == "mm"
    assert obj["dimensions"]["width"] == approx(10.0, abs=0.6)
    assert obj["strategy"] == "geometric"
    assert body["telemetry"]["outcome"] == "detected"


def test_detect_flat_frame_with_placeholder_fallback() -> None:
    client = TestClient(create_measurement_app(fallbacks=[PlaceholderStrategy()]))
    response = client.post("/api/v1/detect", json=_payload(scene="flat"))

    assert response.status_code == 200
    body = response.json()
    assert body["objects"][0]["strategy"] == "placeholder"
    assert body["telemetry"]["fallback_reason"] == "no_edges"


def test_detect_rejects_bad_base64() -> None:
    client = TestClient(create_measurement_app())
    payload = _payload()
    payload["pixels_b64"] = "not base64!"

    response = client.post("/api/v1/detect", json=payload)

    assert response.status_code == 422


def test_detect_rejects_pixel_length_mismatch() -> None:
    client = TestClient(create_measurement_app())
    payload = _payload()
    payload["width"] = 199

    response = client.post("/api/v1/detect", json=payload)

    assert response.status_code == 422
    assert "width*height*4" in response.json()["detail"]


def test_detect_rejects_non_positive_scale() -> None:
    client = TestClient(create_measurement_app())
    payload = _payload()
    payload["calibration"] = {"pixels_per_mm": 0, "is_calibrated": True}

    response = client.post("/api/v1/detect", json=payload)

    assert response.status_code == 422


def test_detect_rejects_infinite_scale() -> None:
    client = TestClient(create_measurement_app())
    payload = _payload()
    payload["calibration"] = {"pixels_per_mm": "SCALE", "is_calibrated": True}
    body = json.dumps(payload).replace('"SCALE"', "1e999")

    response = client.post(
        "/api/v1/detect",
        content=body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 422


def test_last_telemetry_tracks_latest_run() -> None:
    client = TestClient(create_measurement_app())

    assert client.get("/api/v1/telemetry/last").status_code == 404

    client.post("/api/v1/detect", json=_payload(scene="flat"))
    response = client.get("/api/v1/telemetry/last")

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "no_object"
    assert body["states"][0] == "idle"
    assert body["states"][-1] == "done"
