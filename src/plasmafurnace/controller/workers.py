"""
Background Workers (Threading)
==============================
This module contains the thread subclass for long-running simulations.

Why is this file needed?
------------------------
1. Responsiveness: A run can take minutes. Pushing it to a background thread
   keeps the caller free to poll progress or request cancellation.
2. Callbacks: Progress, completion and errors are reported through plain
   callables, invoked from the worker thread.

Classes:
    SimulationWorker: Runs the time-stepping loop of one simulation handle.
"""
from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from plasmafurnace.controller.simulation import SimulationHandle
    from plasmafurnace.model.results import ProgressEvent, SimulationResults

logger = logging.getLogger(__name__)


class SimulationWorker(threading.Thread):
    """
    Dedicated thread stepping one simulation until it ends.

    Attributes:
        results: Output of the run once the thread has finished.
        error: The exception that stopped the run, if any.
    """

    def __init__(
        self,
        handle: SimulationHandle,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
        finished_callback: Optional[Callable[[SimulationResults], None]] = None,
        error_callback: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        super().__init__(name="SimulationWorker", daemon=True)
        self.handle = handle
        self.progress_callback = progress_callback
        self.finished_callback = finished_callback
        self.error_callback = error_callback
        self.results: Optional[SimulationResults] = None
        self.error: Optional[Exception] = None

    def run(self) -> None:
        if self.progress_callback is not None:
            self.handle.listeners.append(self.progress_callback)
        try:
            logger.info("Starting simulation in background thread...")
            self.results = self.handle.run_to_completion()
            logger.info(f"Background simulation finished with status '{self.results.status}'.")
            if self.finished_callback is not None:
                self.finished_callback(self.results)
        except Exception as e:
            logger.error(f"Error in SimulationWorker: {e}")
            self.error = e
            self.results = self.handle.results()
            if self.error_callback is not None:
                self.error_callback(e)
        finally:
            if self.progress_callback is not None:
                self.handle.listeners.remove(self.progress_callback)

    def stop(self) -> None:
        """Request cancellation; the loop ends at the next step boundary."""
        self.handle.cancel()
