"""
Request Lifecycle - the emergency request state machine.

    PENDING -> ACCEPTED -> EN_ROUTE_TO_USER -> AT_USER_LOCATION
            -> TRANSPORTING -> AT_HOSPITAL -> COMPLETED
    PENDING -> DECLINED
    PENDING .. TRANSPORTING -> CANCELLED

COMPLETED, DECLINED and CANCELLED are terminal. update_status() stays
permissive and accepts any target; describe_transition() is the one place
that says which of those jumps are off the diagram, and they are logged.

Every transition publishes exactly one request event.
"""

import logging
import threading
from enum import Enum
from typing import Optional

from ambulance_dispatch.services.ambulance_registry import AmbulanceRegistry
from ambulance_dispatch.services.event_broadcaster import (
    EventBroadcaster, REQUEST_ACCEPTED, REQUEST_CANCELLED, REQUEST_COMPLETED,
    REQUEST_CREATED, REQUEST_STATUS,
)
from ambulance_dispatch.shared.errors import NotFoundError, ValidationError
from ambulance_dispatch.shared.store import Store
from ambulance_dispatch.shared.types import (
    AmbulanceStatus, EmergencyRequest, Point, RequestPage, RequestStatus,
    TERMINAL_REQUEST_STATUSES, utcnow,
)

logger = logging.getLogger(__name__)

FORWARD_PATH = (
    RequestStatus.PENDING,
    RequestStatus.ACCEPTED,
    RequestStatus.EN_ROUTE_TO_USER,
    RequestStatus.AT_USER_LOCATION,
    RequestStatus.TRANSPORTING,
    RequestStatus.AT_HOSPITAL,
    RequestStatus.COMPLETED,
)

CANCELLABLE_STATUSES = frozenset({
    RequestStatus.PENDING,
    RequestStatus.ACCEPTED,
    RequestStatus.EN_ROUTE_TO_USER,
    RequestStatus.AT_USER_LOCATION,
    RequestStatus.TRANSPORTING,
})


class TransitionKind(str, Enum):
    FORWARD = "forward"
    SIDE_BRANCH = "side_branch"
    PERMISSIVE = "permissive"  # allowed, but not an edge of the state diagram
    TERMINAL_EXIT = "terminal_exit"  # leaving a terminal state


def describe_transition(current: RequestStatus, target: RequestStatus) -> TransitionKind:
    if current in TERMINAL_REQUEST_STATUSES and target != current:
        return TransitionKind.TERMINAL_EXIT
    if current in FORWARD_PATH and target in FORWARD_PATH:
        if FORWARD_PATH.index(target) == FORWARD_PATH.index(current) + 1:
            return TransitionKind.FORWARD
    if current == RequestStatus.PENDING and target == RequestStatus.DECLINED:
        return TransitionKind.SIDE_BRANCH
    if target == RequestStatus.CANCELLED and current in CANCELLABLE_STATUSES:
        return TransitionKind.SIDE_BRANCH
    return TransitionKind.PERMISSIVE


def _holds_ambulance(request: EmergencyRequest) -> bool:
    """True once acceptance has reserved the ambulance for this request and it has not been released."""
    return request.ambulance_reserved and request.ambulance_id is not None


def _payload(request: EmergencyRequest) -> dict:
    return {
        "request_id": request.id,
        "status": request.status.value,
        "user_location": request.user_location.geojson(),
        "ambulance_id": request.ambulance_id,
        "hospital_id": request.hospital_id,
        "updated_at": request.updated_at.isoformat(),
    }


class RequestLifecycle:
    """Creates and transitions emergency requests, reserving and releasing ambulances."""

    def __init__(self, store: Store, registry: AmbulanceRegistry, broadcaster: EventBroadcaster):
        self.store = store
        self.registry = registry
        self.broadcaster = broadcaster
        self._lock = threading.RLock()

    def get(self, request_id: int) -> EmergencyRequest:
        request = self.store.load_request(request_id)
        if request is None:
            raise NotFoundError("Request", request_id)
        return request

    def list(self, status: Optional[RequestStatus] = None, page: Optional[int] = None,
             limit: Optional[int] = None) -> RequestPage:
        requests = self.store.list_requests(status)
        total = len(requests)
        if page is not None and limit is not None:
            if page < 1 or limit < 1:
                raise ValidationError("page and limit must be at least 1")
            start = (page - 1) * limit
            requests = requests[start:start + limit]
        return RequestPage(data=requests, total=total, page=page or 1, limit=limit or total)

    def pending_count(self) -> int:
        return self.store.count_requests(RequestStatus.PENDING)

    def create(self, user_location: Point, ambulance_id: int,
               hospital_id: Optional[int] = None) -> EmergencyRequest:
        """Open a PENDING request against an AVAILABLE ambulance. Nothing is reserved yet."""
        ambulance = self.registry.get(ambulance_id)
        if hospital_id is not None and self.store.load_hospital(hospital_id) is None:
            raise NotFoundError("Hospital", hospital_id)
        if ambulance.status != AmbulanceStatus.AVAILABLE:
            raise ValidationError(f"Ambulance {ambulance.call_sign} is not available")

        request = self.store.save_request(EmergencyRequest(
            user_location=user_location,
            hospital_id=hospital_id,
            ambulance_id=ambulance_id,
            requested_ambulance_id=ambulance_id,
        ))
        self.broadcaster.publish(REQUEST_CREATED, _payload(request), key=str(request.id))
        logger.info(f"Request {request.id} created for ambulance {ambulance.call_sign}")
        return request

    def accept(self, request_id: int, hospital_id: Optional[int] = None) -> EmergencyRequest:
        """Accept a PENDING request and, when a hospital is known, dispatch its ambulance.

        All or nothing: if the dispatch fails the request stays PENDING; if the
        request cannot be saved after the dispatch, the ambulance is released.
        """
        with self._lock:
            request = self.get(request_id)
            if request.status != RequestStatus.PENDING:
                raise ValidationError(f"Cannot accept request with status {request.status.value}")
            if request.ambulance_id is None:
                raise ValidationError("No ambulance specified for this request")

            # Re-check: the ambulance may have been claimed since create()
            ambulance = self.registry.get(request.ambulance_id)
            if ambulance.status != AmbulanceStatus.AVAILABLE:
                raise ValidationError(f"Ambulance {ambulance.call_sign} is not available")

            now = utcnow()
            accepted = request.model_copy(update={
                "status": RequestStatus.ACCEPTED,
                "hospital_id": hospital_id if hospital_id is not None else request.hospital_id,
                "accepted_at": now,
                "updated_at": now,
            })

            reserved = False
            try:
                if accepted.hospital_id is not None:
                    self.registry.dispatch(ambulance.id, accepted.hospital_id)
                    reserved = True
                    accepted = accepted.model_copy(update={"ambulance_reserved": True})
                saved = self.store.save_request(accepted)
            except Exception:
                if reserved:
                    self._release_after_failed_accept(request_id, ambulance.id)
                raise

        self.broadcaster.publish(REQUEST_ACCEPTED, {
            **_payload(saved),
            "accepted_at": saved.accepted_at.isoformat(),
        }, key=str(saved.id))
        logger.info(f"Request {saved.id} accepted (ambulance {saved.ambulance_id}, hospital {saved.hospital_id})")
        return saved

    def _release_after_failed_accept(self, request_id: int, ambulance_id: int) -> None:
        logger.error(f"Saving accepted request {request_id} failed, releasing ambulance {ambulance_id}")
        try:
            self.registry.complete_assignment(ambulance_id)
        except Exception:
            logger.exception(f"Could not release ambulance {ambulance_id} after failed accept")

    def _release_after_save(self, previous: EmergencyRequest, stop_simulation: bool) -> None:
        """Release the ambulance of a request that was just saved; put the request back if that fails."""
        try:
            if stop_simulation:
                self.registry.stop_movement_simulation(previous.ambulance_id)
            self.registry.complete_assignment(previous.ambulance_id)
        except Exception:
            logger.error(f"Releasing ambulance {previous.ambulance_id} for request {previous.id} failed, "
                         f"restoring request status {previous.status.value}")
            self.store.save_request(previous)
            raise

    def decline(self, request_id: int, reason: Optional[str] = None) -> EmergencyRequest:
        with self._lock:
            request = self.get(request_id)
            if request.status != RequestStatus.PENDING:
                raise ValidationError(f"Cannot decline request with status {request.status.value}")

            now = utcnow()
            saved = self.store.save_request(request.model_copy(update={
                "status": RequestStatus.DECLINED,
                "decline_reason": reason,
                "declined_at": now,
                "updated_at": now,
            }))

        self.broadcaster.publish(REQUEST_STATUS, {**_payload(saved), "reason": reason}, key=str(saved.id))
        logger.info(f"Request {saved.id} declined: {reason or 'no reason given'}")
        return saved

    def update_status(self, request_id: int, status: RequestStatus) -> EmergencyRequest:
        """Move a request to any status. COMPLETED and CANCELLED release the ambulance."""
        with self._lock:
            request = self.get(request_id)
            kind = describe_transition(request.status, status)
            if kind in (TransitionKind.PERMISSIVE, TransitionKind.TERMINAL_EXIT):
                logger.warning(f"Request {request_id}: {kind.value} transition "
                               f"{request.status.value} -> {status.value}")

            now = utcnow()
            updates = {"status": status, "updated_at": now}
            if status == RequestStatus.COMPLETED:
                updates["completed_at"] = now

            release = status in (RequestStatus.COMPLETED, RequestStatus.CANCELLED) and _holds_ambulance(request)
            if release:
                updates["ambulance_reserved"] = False

            saved = self.store.save_request(request.model_copy(update=updates))
            if release:
                self._release_after_save(request, stop_simulation=False)

        if status == RequestStatus.COMPLETED:
            self.broadcaster.publish(REQUEST_COMPLETED, {
                **_payload(saved),
                "completed_at": saved.completed_at.isoformat(),
            }, key=str(saved.id))
        elif status == RequestStatus.CANCELLED:
            self.broadcaster.publish(REQUEST_CANCELLED, {
                **_payload(saved),
                "cancelled_at": now.isoformat(),
            }, key=str(saved.id))
        else:
            self.broadcaster.publish(REQUEST_STATUS, _payload(saved), key=str(saved.id))

        logger.info(f"Request {saved.id} status: {saved.status.value}")
        return saved

    def cancel(self, request_id: int) -> EmergencyRequest:
        """Cancel a request, stopping and releasing its ambulance.

        Cancelling an already cancelled request returns it unchanged and
        publishes no event.
        """
        with self._lock:
            request = self.get(request_id)
            if request.status in (RequestStatus.COMPLETED, RequestStatus.DECLINED):
                raise ValidationError(f"Cannot cancel request with status {request.status.value}")
            if request.status == RequestStatus.CANCELLED:
                return request

            release = _holds_ambulance(request)
            now = utcnow()
            saved = self.store.save_request(request.model_copy(update={
                "status": RequestStatus.CANCELLED,
                "updated_at": now,
                "ambulance_reserved": False,
            }))
            if release:
                self._release_after_save(request, stop_simulation=True)

        self.broadcaster.publish(REQUEST_CANCELLED, {
            **_payload(saved),
            "cancelled_at": now.isoformat(),
        }, key=str(saved.id))
        logger.info(f"Request {saved.id} cancelled")
        return saved
