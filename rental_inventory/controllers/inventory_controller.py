"""HTTP controller layer for the device inventory query."""

from __future__ import annotations

import datetime
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from rental_inventory.controllers.dependencies import get_inventory_service
from rental_inventory.domain.models import (
    AllocationOutcome,
    DeviceCategory,
    DeviceStatus,
    InventoryResult,
    Reservation,
    ReservationStatus,
)
from rental_inventory.repository.data_repository import (
    DeviceNotFoundError,
    ReservationNotFoundError,
)
from rental_inventory.services.ingestion_service import IngestionFailure
from rental_inventory.services.inventory_service import (
    InventoryService,
    InventoryValidationError,
)
from rental_inventory.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["inventory"])


class ReservationRow(BaseModel):
    id: int = Field(gt=0)
    reservation_code: str
    category: DeviceCategory
    assigned_tag: str | None = None
    status: ReservationStatus
    pickup_date: date
    pickup_time: str
    return_date: date
    return_time: str
    renter_name: str
    warning: str | None = None


class OverdueReservationRow(ReservationRow):
    days_overdue: int = Field(gt=0)


class OverdueResponse(BaseModel):
    as_of: date
    reservations: list[OverdueReservationRow]


class TimeSlotResponse(BaseModel):
    date: datetime.date
    reservations: list[ReservationRow]


class AllocationDecisionRow(BaseModel):
    reservation_id: int = Field(gt=0)
    tag: str | None = None
    outcome: AllocationOutcome
    reason: str = Field(min_length=1)


class InventoryResponse(BaseModel):
    devices: list[str]
    time_slots: list[TimeSlotResponse]
    decisions: list[AllocationDecisionRow]


class DeviceAvailabilityRow(BaseModel):
    tag: str
    status: DeviceStatus
    is_available: bool
    conflicting_reservation_ids: list[int]


class AvailabilityResponse(BaseModel):
    category: DeviceCategory
    pickup_date: date
    return_date: date
    devices: list[DeviceAvailabilityRow]


class CategoryStatusRow(BaseModel):
    category: DeviceCategory
    total_devices: int = Field(ge=0)
    available_devices: int = Field(ge=0)
    rented_devices: int = Field(ge=0)
    maintenance_devices: int = Field(ge=0)
    utilization_rate: float = Field(ge=0.0, le=100.0)


class InventoryStatusResponse(BaseModel):
    categories: list[CategoryStatusRow]


class AssignmentItem(BaseModel):
    reservation_id: int = Field(gt=0)
    tag: str = Field(min_length=1)


class PersistAssignmentsRequest(BaseModel):
    assignments: list[AssignmentItem] = Field(min_length=1)


class AssignmentResultRow(BaseModel):
    reservation_id: int
    tag: str
    status: str
    detail: str


class PersistAssignmentsResponse(BaseModel):
    results: list[AssignmentResultRow]
    persisted_count: int = Field(ge=0)
    conflict_count: int = Field(ge=0)


def _split_categories(raw: Optional[str]) -> Optional[list[str]]:
    if raw is None:
        return None
    return [item for item in (part.strip() for part in raw.split(",")) if item]


def _reservation_row(reservation: Reservation, warning: str | None) -> ReservationRow:
    return ReservationRow(
        id=reservation.id,
        reservation_code=reservation.reservation_code,
        category=reservation.category,
        assigned_tag=reservation.assigned_tag,
        status=reservation.status,
        pickup_date=reservation.pickup_date,
        pickup_time=reservation.pickup_time,
        return_date=reservation.return_date,
        return_time=reservation.return_time,
        renter_name=reservation.renter_name,
        warning=warning,
    )


def _to_response(result: InventoryResult) -> InventoryResponse:
    warnings = {
        decision.reservation_id: decision.reason
        for decision in result.decisions
        if decision.outcome == AllocationOutcome.NO_CAPACITY
    }
    return InventoryResponse(
        devices=result.devices,
        time_slots=[
            TimeSlotResponse(
                date=slot.date,
                reservations=[
                    _reservation_row(reservation, warnings.get(reservation.id))
                    for reservation in slot.reservations
                ],
            )
            for slot in result.time_slots
        ],
        decisions=[
            AllocationDecisionRow(
                reservation_id=decision.reservation_id,
                tag=decision.tag,
                outcome=decision.outcome,
                reason=decision.reason,
            )
            for decision in result.decisions
        ],
    )


def _validation_error(exc: InventoryValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"kind": "invalid_request", "field": exc.field, "message": str(exc)},
    )


def _ingestion_error(exc: IngestionFailure) -> HTTPException:
    logger.error("Ingestion failed | kind=%s | message=%s", exc.kind, exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"kind": exc.kind, "message": str(exc)},
    )


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/inventory",
    response_model=InventoryResponse,
    status_code=status.HTTP_200_OK,
)
async def query_inventory(
    start_date: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    categories: Optional[str] = Query(default=None, description="Comma-separated categories"),
    service: InventoryService = Depends(get_inventory_service),
) -> InventoryResponse:
    """Allocate untagged reservations and return the day-by-day occupancy grid."""
    try:
        result = service.query_inventory(
            start_date=start_date,
            end_date=end_date,
            categories=_split_categories(categories),
        )
        return _to_response(result)
    except InventoryValidationError as exc:
        raise _validation_error(exc) from exc
    except IngestionFailure as exc:
        raise _ingestion_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected inventory query failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"kind": "internal_error", "message": "Failed to build inventory"},
        ) from exc


@router.get(
    "/inventory/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
async def check_availability(
    category: str = Query(min_length=1),
    pickup_date: Optional[str] = Query(default=None),
    return_date: Optional[str] = Query(default=None),
    exclude_reservation_id: Optional[int] = Query(default=None, gt=0),
    service: InventoryService = Depends(get_inventory_service),
) -> AvailabilityResponse:
    try:
        rows = service.check_availability(
            category=category,
            pickup_date=pickup_date,
            return_date=return_date,
            exclude_reservation_id=exclude_reservation_id,
        )
        return AvailabilityResponse(
            category=category.strip().upper(),
            pickup_date=pickup_date,
            return_date=return_date,
            devices=[
                DeviceAvailabilityRow(
                    tag=row.tag,
                    status=row.status,
                    is_available=row.is_available,
                    conflicting_reservation_ids=row.conflicting_reservation_ids,
                )
                for row in rows
            ],
        )
    except InventoryValidationError as exc:
        raise _validation_error(exc) from exc
    except IngestionFailure as exc:
        raise _ingestion_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected availability check failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"kind": "internal_error", "message": "Failed to check availability"},
        ) from exc


@router.get(
    "/inventory/status",
    response_model=InventoryStatusResponse,
    status_code=status.HTTP_200_OK,
)
async def inventory_status(
    category: Optional[str] = Query(default=None),
    service: InventoryService = Depends(get_inventory_service),
) -> InventoryStatusResponse:
    try:
        rows = service.inventory_status(category=category)
        return InventoryStatusResponse(
            categories=[
                CategoryStatusRow(
                    category=row.category,
                    total_devices=row.total_devices,
                    available_devices=row.available_devices,
                    rented_devices=row.rented_devices,
                    maintenance_devices=row.maintenance_devices,
                    utilization_rate=row.utilization_rate,
                )
                for row in rows
            ]
        )
    except InventoryValidationError as exc:
        raise _validation_error(exc) from exc
    except IngestionFailure as exc:
        raise _ingestion_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected inventory status failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"kind": "internal_error", "message": "Failed to summarise inventory"},
        ) from exc


@router.post(
    "/inventory/assignments",
    response_model=PersistAssignmentsResponse,
    status_code=status.HTTP_200_OK,
)
async def persist_assignments(
    payload: PersistAssignmentsRequest,
    service: InventoryService = Depends(get_inventory_service),
) -> PersistAssignmentsResponse:
    """Persist decided tags; rejected writes are reported per item."""
    try:
        results = service.persist_assignments(
            [(item.reservation_id, item.tag) for item in payload.assignments]
        )
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected assignment write failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"kind": "internal_error", "message": "Failed to persist assignments"},
        ) from exc

    rows = [
        AssignmentResultRow(
            reservation_id=item.reservation_id,
            tag=item.tag,
            status=item.status,
            detail=item.detail,
        )
        for item in results
    ]
    conflict_count = sum(1 for item in results if item.status == "conflict")
    if len(payload.assignments) == 1 and results[0].status in {"conflict", "not_found"}:
        raise HTTPException(
            status_code=(
                status.HTTP_409_CONFLICT
                if results[0].status == "conflict"
                else status.HTTP_404_NOT_FOUND
            ),
            detail={"kind": results[0].status, "message": results[0].detail},
        )
    return PersistAssignmentsResponse(
        results=rows,
        persisted_count=sum(1 for item in results if item.status == "persisted"),
        conflict_count=conflict_count,
    )


@router.get(
    "/inventory/overdue",
    response_model=OverdueResponse,
    status_code=status.HTTP_200_OK,
)
async def overdue_reservations(
    as_of: Optional[str] = Query(default=None, description="YYYY-MM-DD, defaults to today"),
    service: InventoryService = Depends(get_inventory_service),
) -> OverdueResponse:
    """List rentals whose device is still out past the return date."""
    try:
        reference_date = date.fromisoformat(as_of) if as_of else date.today()
        reservations = service.overdue_reservations(as_of=reference_date)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "kind": "invalid_request",
                "field": "as_of",
                "message": f"as_of must follow YYYY-MM-DD format, got {as_of!r}",
            },
        ) from exc
    except IngestionFailure as exc:
        raise _ingestion_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected overdue listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"kind": "internal_error", "message": "Failed to list overdue reservations"},
        ) from exc

    return OverdueResponse(
        as_of=reference_date,
        reservations=[
            OverdueReservationRow(
                **_reservation_row(reservation, None).model_dump(),
                days_overdue=(reference_date - reservation.return_date).days,
            )
            for reservation in reservations
        ],
    )


@router.post(
    "/inventory/reservations/{reservation_id}/return",
    response_model=ReservationRow,
    status_code=status.HTTP_200_OK,
)
async def complete_return(
    reservation_id: int,
    service: InventoryService = Depends(get_inventory_service),
) -> ReservationRow:
    """Mark a rental returned and release its device."""
    try:
        reservation = service.complete_return(reservation_id)
    except (ReservationNotFoundError, DeviceNotFoundError) as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"kind": "not_found", "message": str(exc)},
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected return completion failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"kind": "internal_error", "message": "Failed to complete return"},
        ) from exc
    return _reservation_row(reservation, None)
