"""Command-line interface."""
import logging

from plasmafurnace.controller.simulation import run_to_completion, start
from plasmafurnace.logging_config import setup_logging
from plasmafurnace.model.parameters import MeshResolution, SimulationParameters, TimeControl, TorchParameters
from plasmafurnace.utils import kelvin_to_celsius


def main() -> None:
    logger = setup_logging(level=logging.INFO)

    params = SimulationParameters(
        mesh=MeshResolution(nr=20, ntheta=1, nz=40),
        torches=[TorchParameters(power=150_000.0, efficiency=0.8, r=0.0, theta=0.0, z=1.0, sigma=0.1)],
        material="Carbon Steel",
        time=TimeControl(total_time=60.0, time_step=0.5),
    )

    handle = start(params)
    results = run_to_completion(handle)

    metrics = results.final_metrics
    logger.info(f"Final metrics: {metrics.to_dict()}")
    logger.info(f"Peak temperature: {kelvin_to_celsius(metrics.temperature_stats.max):.1f} °C")
    logger.info(f"Stored {results.frame_count} frames, {len(results.warnings)} convergence warning(s).")


if __name__ == "__main__":
    main()
