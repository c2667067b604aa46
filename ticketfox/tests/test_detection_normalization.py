"""Tests for the detection normalization pipeline."""

from ticketfox.receipt.detection_normalization import (
    Detection,
    DetectionNormalizationContext,
    clip_to_image,
    normalize_detections,
)


def test_normalize_detections_noop_passthrough() -> None:
    detections = [
        Detection("A", 0.1, 10.0, 0.5, 20.0, 1.5),
        Detection("B", 0.2, 20.0, 1.5, 30.0, 2.5),
    ]

    out = normalize_detections(detections, image_width=1000, image_height=2000, operations=())

    assert out == detections
    assert out is not detections


def test_default_operations_drop_noise() -> None:
    detections = [
        Detection("PAN BARRA", 0.95, 10, 10, 200, 40),
        Detection("borroso", 0.4, 10, 50, 200, 80),
        Detection(".", 0.99, 210, 10, 215, 40),
    ]

    out = normalize_detections(detections, image_width=1000, image_height=2000)

    assert [det.text for det in out] == ["PAN BARRA"]


def test_boxes_are_clipped_to_the_image() -> None:
    context = DetectionNormalizationContext(image_width=1000, image_height=2000)
    detections = [
        Detection("TOTAL", 0.9, -5, 1990, 300, 2030),
        Detection("FUERA", 0.9, 1010, 10, 1100, 40),
    ]

    out = clip_to_image(detections, context)

    assert out == [Detection("TOTAL", 0.9, 0.0, 1990, 300, 2000)]


def test_custom_operations_run_in_order() -> None:
    def upper(detections, context):
        return [Detection(d.text.upper(), d.confidence, d.left, d.top, d.right, d.bottom) for d in detections]

    def tag(detections, context):
        return [Detection(f"{d.text}!", d.confidence, d.left, d.top, d.right, d.bottom) for d in detections]

    out = normalize_detections(
        [Detection("pan", 0.9, 0, 0, 10, 10)], image_width=100, image_height=100, operations=(upper, tag)
    )

    assert [det.text for det in out] == ["PAN!"]
