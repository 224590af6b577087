"""
Ambulance Registry - owns ambulance status transitions, location updates and
movement simulation.

Every mutation runs under the registry lock, so per-ambulance location events
are published in the order the updates were applied. Movement simulations are
per-ambulance daemon threads owned by the registry; a tick re-checks its stop
flag under the same lock before writing, so once stop_movement_simulation()
returns no further tick can touch the ambulance.
"""

import logging
import math
import threading
from typing import Dict, List, Optional

from ambulance_dispatch.services.event_broadcaster import (
    EventBroadcaster, LOCATION_UPDATED, STATUS_CHANGED,
)
from ambulance_dispatch.services.geo_store import GeoStore, interpolate
from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.errors import ConflictError, NotFoundError, ValidationError
from ambulance_dispatch.shared.store import Store
from ambulance_dispatch.shared.types import (
    Ambulance, AmbulanceStatus, MovementRecord, Point, SimulationProgress, utcnow,
)

logger = logging.getLogger(__name__)


class MovementSimulation:
    """State of one straight-line movement simulation."""

    def __init__(self, ambulance_id: int, start: Point, target: Point, distance_meters: float,
                 speed_kmh: float, interval_seconds: float, total_steps: int):
        self.ambulance_id = ambulance_id
        self.start = start
        self.target = target
        self.distance_meters = distance_meters
        self.speed_kmh = speed_kmh
        self.interval_seconds = interval_seconds
        self.total_steps = total_steps
        self.current_step = 0
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def progress(self) -> SimulationProgress:
        remaining_steps = self.total_steps - self.current_step
        return SimulationProgress(
            progress=self.current_step / self.total_steps * 100,
            current_step=self.current_step,
            total_steps=self.total_steps,
            eta_seconds=remaining_steps * self.interval_seconds,
            speed_kmh=self.speed_kmh,
            distance_meters=self.distance_meters,
            remaining_distance_meters=self.distance_meters * remaining_steps / self.total_steps,
            target_location=self.target,
        )


class AmbulanceRegistry:
    """Ambulance lifecycle operations on top of a Store."""

    def __init__(self, store: Store, broadcaster: EventBroadcaster, geo: Optional[GeoStore] = None,
                 tick_seconds: float = config.SIMULATION_TICK_SECONDS,
                 default_speed_kmh: float = config.DEFAULT_SIMULATION_SPEED_KMH):
        self.store = store
        self.broadcaster = broadcaster
        self.geo = geo or GeoStore()
        self.tick_seconds = tick_seconds
        self.default_speed_kmh = default_speed_kmh
        self._lock = threading.RLock()
        self._simulations: Dict[int, MovementSimulation] = {}

    # Queries

    def get(self, ambulance_id: int) -> Ambulance:
        ambulance = self.store.load_ambulance(ambulance_id)
        if ambulance is None:
            raise NotFoundError("Ambulance", ambulance_id)
        return ambulance

    def list_by_status(self, status: Optional[AmbulanceStatus] = None) -> List[Ambulance]:
        return self.store.list_ambulances(status)

    def list_movements(self, ambulance_id: int, limit: Optional[int] = None) -> List[MovementRecord]:
        self.get(ambulance_id)
        return self.store.list_movement_records(ambulance_id, limit)

    # Location

    def update_location(self, ambulance_id: int, point: Point, speed: Optional[float] = None,
                        heading: Optional[float] = None) -> Ambulance:
        with self._lock:
            return self._apply_location(ambulance_id, point, speed, heading)

    def _apply_location(self, ambulance_id: int, point: Point, speed: Optional[float] = None,
                        heading: Optional[float] = None) -> Ambulance:
        ambulance = self.get(ambulance_id)
        previous = ambulance.location
        distance_moved = self.geo.distance(previous, point) if previous is not None else 0.0
        now = utcnow()

        updated = ambulance.model_copy(update={"location": point, "last_updated": now})
        self.store.save_ambulance(updated)

        self._publish_or_restore(ambulance, LOCATION_UPDATED, {
            "ambulance_id": ambulance_id,
            "call_sign": updated.call_sign,
            "location": point.geojson(),
            "previous_location": previous.geojson() if previous is not None else None,
            "distance_moved": distance_moved,
            "speed": speed,
            "heading": heading,
        })
        self.store.append_movement_record(MovementRecord(
            ambulance_id=ambulance_id,
            location=point,
            speed=speed,
            heading=heading,
            timestamp=now,
        ))

        logger.debug(f"Ambulance {ambulance_id} moved {distance_moved:.0f}m to "
                     f"[{point.longitude:.6f}, {point.latitude:.6f}]")
        return updated

    # Status

    def dispatch(self, ambulance_id: int, hospital_id: int) -> Ambulance:
        """Reserve an AVAILABLE ambulance for a hospital (AVAILABLE -> BUSY)."""
        with self._lock:
            ambulance = self.get(ambulance_id)
            if ambulance.status != AmbulanceStatus.AVAILABLE:
                raise ConflictError(
                    f"Ambulance {ambulance.call_sign} is not available "
                    f"(current status: {ambulance.status.value})"
                )
            if self.store.load_hospital(hospital_id) is None:
                raise NotFoundError("Hospital", hospital_id)

            return self._transition(ambulance, AmbulanceStatus.BUSY, assigned_hospital_id=hospital_id)

    def set_status(self, ambulance_id: int, status: AmbulanceStatus) -> Ambulance:
        """Any-to-any status change. AVAILABLE clears the hospital assignment."""
        with self._lock:
            ambulance = self.get(ambulance_id)
            if status == AmbulanceStatus.AVAILABLE:
                return self._transition(ambulance, status, assigned_hospital_id=None)
            return self._transition(ambulance, status, assigned_hospital_id=ambulance.assigned_hospital_id)

    def complete_assignment(self, ambulance_id: int) -> Ambulance:
        return self.set_status(ambulance_id, AmbulanceStatus.AVAILABLE)

    def _transition(self, ambulance: Ambulance, status: AmbulanceStatus,
                    assigned_hospital_id: Optional[int]) -> Ambulance:
        previous_status = ambulance.status
        updated = ambulance.model_copy(update={
            "status": status,
            "assigned_hospital_id": assigned_hospital_id,
            "last_updated": utcnow(),
        })
        self.store.save_ambulance(updated)

        self._publish_or_restore(ambulance, STATUS_CHANGED, {
            "ambulance_id": updated.id,
            "call_sign": updated.call_sign,
            "previous_status": previous_status.value,
            "new_status": status.value,
            "assigned_hospital_id": assigned_hospital_id,
        })

        logger.info(f"Ambulance {updated.call_sign}: {previous_status.value} -> {status.value}")
        return updated

    def _publish_or_restore(self, previous: Ambulance, event_type: str, payload: dict) -> None:
        """Publish an ambulance event; if delivery fails, put the saved ambulance back."""
        try:
            self.broadcaster.publish(event_type, payload, key=str(previous.id))
        except Exception:
            logger.error(f"Publishing {event_type} for ambulance {previous.id} failed, restoring previous state")
            self.store.save_ambulance(previous)
            raise

    # Movement simulation

    def start_movement_simulation(self, ambulance_id: int, target: Point,
                                  speed_kmh: Optional[float] = None) -> SimulationProgress:
        """Move the ambulance towards target in straight-line steps, one per tick.

        Replaces any simulation already running for this ambulance. The last
        step lands exactly on target.
        """
        if speed_kmh is None:
            speed_kmh = self.default_speed_kmh
        if speed_kmh <= 0:
            raise ValidationError(f"Simulation speed must be positive, got {speed_kmh} km/h")

        with self._lock:
            ambulance = self.get(ambulance_id)
            if ambulance.location is None:
                raise ValidationError(f"Ambulance {ambulance.call_sign} has no current location")

            self._cancel_simulation(ambulance_id)

            distance = self.geo.distance(ambulance.location, target)
            meters_per_tick = speed_kmh * 1000 / 3600 * self.tick_seconds
            total_steps = max(1, math.ceil(distance / meters_per_tick))

            simulation = MovementSimulation(
                ambulance_id=ambulance_id,
                start=ambulance.location,
                target=target,
                distance_meters=distance,
                speed_kmh=speed_kmh,
                interval_seconds=self.tick_seconds,
                total_steps=total_steps,
            )
            simulation.thread = threading.Thread(
                target=self._run_simulation,
                args=(simulation,),
                daemon=True,
                name=f"ambulance-{ambulance_id}-simulation",
            )
            self._simulations[ambulance_id] = simulation
            simulation.thread.start()

            logger.info(
                f"Starting simulation for ambulance {ambulance_id}: {total_steps} steps, "
                f"{distance:.0f}m distance, ETA: {distance / (speed_kmh / 3.6):.0f}s"
            )
            return simulation.progress()

    def stop_movement_simulation(self, ambulance_id: int) -> bool:
        """Cancel the ambulance's simulation. Returns False if none was running."""
        with self._lock:
            return self._cancel_simulation(ambulance_id)

    def teleport(self, ambulance_id: int, point: Point) -> Ambulance:
        with self._lock:
            self._cancel_simulation(ambulance_id)
            ambulance = self._apply_location(ambulance_id, point, speed=0)
        logger.info(f"Teleported ambulance {ambulance_id} to [{point.longitude:.6f}, {point.latitude:.6f}]")
        return ambulance

    def get_simulation_progress(self, ambulance_id: int) -> Optional[SimulationProgress]:
        with self._lock:
            simulation = self._simulations.get(ambulance_id)
            return simulation.progress() if simulation else None

    def active_simulations(self) -> List[int]:
        with self._lock:
            return sorted(self._simulations)

    def shutdown(self) -> None:
        """Stop every running simulation."""
        with self._lock:
            for ambulance_id in list(self._simulations):
                self._cancel_simulation(ambulance_id)

    def _cancel_simulation(self, ambulance_id: int) -> bool:
        simulation = self._simulations.pop(ambulance_id, None)
        if simulation is None:
            return False
        simulation.stop_event.set()
        logger.info(f"Stopped simulation for ambulance {ambulance_id}")
        return True

    def _run_simulation(self, simulation: MovementSimulation) -> None:
        while not simulation.stop_event.wait(simulation.interval_seconds):
            with self._lock:
                if simulation.stop_event.is_set() or self._simulations.get(simulation.ambulance_id) is not simulation:
                    return
                try:
                    if self._advance(simulation):
                        return
                except Exception:
                    logger.exception(f"Simulation for ambulance {simulation.ambulance_id} failed")
                    self._finish(simulation)
                    return

    def _advance(self, simulation: MovementSimulation) -> bool:
        """Apply the next step. Returns True once the target is reached."""
        simulation.current_step += 1
        ambulance_id = simulation.ambulance_id

        if simulation.current_step >= simulation.total_steps:
            # Snap to the exact target so interpolation error never leaves the ambulance short
            self._apply_location(ambulance_id, simulation.target, speed=0)
            self._finish(simulation)
            logger.info(
                f"Ambulance {ambulance_id} reached destination at "
                f"[{simulation.target.longitude:.6f}, {simulation.target.latitude:.6f}]"
            )
            return True

        point = interpolate(simulation.start, simulation.target, simulation.current_step / simulation.total_steps)
        self._apply_location(ambulance_id, point, speed=simulation.speed_kmh)

        if simulation.current_step % config.SIMULATION_LOG_EVERY_STEPS == 0:
            progress = simulation.progress()
            logger.info(
                f"Ambulance {ambulance_id} progress: {progress.progress:.0f}% "
                f"({simulation.current_step}/{simulation.total_steps}), ETA: {progress.eta_seconds:.0f}s"
            )
        return False

    def _finish(self, simulation: MovementSimulation) -> None:
        simulation.stop_event.set()
        if self._simulations.get(simulation.ambulance_id) is simulation:
            del self._simulations[simulation.ambulance_id]
