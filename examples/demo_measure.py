from cammeasure.models import CalibrationData
from cammeasure.pipeline import SilhouettePipeline
from cammeasure.synthetic import SyntheticSceneConfig, generate_synthetic_scene


def main() -> None:
    scene = generate_synthetic_scene(SyntheticSceneConfig(scene="square", width=400, height=400, object_size=100))
    calibration = CalibrationData(pixels_per_mm=10.0, is_calibrated=True)

    run = SilhouettePipeline().run(scene.frame, calibration)

    print("Central object measurement")
    print(f"Outcome: {run.telemetry.outcome}")
    for obj in run.objects:
        dims = obj.dimensions
        print(f"Width: {dims.width:.2f} {dims.unit}")
        print(f"Height: {dims.height:.2f} {dims.unit}")
        print(f"Area: {dims.area:.2f} {dims.unit}^2")
        print(f"Perimeter: {dims.perimeter:.2f} {dims.unit}")
        print(f"Circularity: {obj.geometric_properties.circularity:.3f}")
        if obj.depth is not None:
            print(f"Volume (heuristic): {obj.depth.volume:.2f} {obj.depth.unit}^3")
        print(f"Confidence: {obj.confidence:.2f}")
    print(f"Elapsed: {run.telemetry.elapsed_ms:.1f} ms")


if __name__ == "__main__":
    main()
