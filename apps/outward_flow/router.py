from fastapi import APIRouter, Depends, status, Query
from typing import List, Optional
from datetime import datetime
import math

from apps.outward_flow.models import RequestStatus, Urgency
from apps.outward_flow.schemas import (
    ApprovalDecisionCreate,
    ApprovalHistoryResponse,
    CancellationCreate,
    InstalledPartResponse,
    IssueResult,
    IssuedBatchResponse,
    PartInstallCreate,
    PartRequestCreate,
    PartRequestListResponse,
    PartRequestResponse,
    PartReturnCreate,
    PartReturnResult,
    RejectionCreate,
    ServiceCostBreakdownResponse,
    TechnicianLimitCreate,
    TechnicianLimitResponse,
)
from apps.outward_flow.services import (
    OutwardFlowService,
    TechnicianLimitStore,
    get_outward_flow_service,
    get_technician_limit_store,
)
from apps.outward_flow.costing import CostEngine, get_cost_engine
from core.dependencies import get_current_actor
from core.exceptions import NotFoundError

router = APIRouter()

# ============ PART REQUESTS ============

@router.post(
    "/requests",
    response_model=PartRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a part request",
    description="Auto-approves and reserves stock when the technician's limit and available stock allow"
)
def create_part_request(
    payload: PartRequestCreate,
    service: OutwardFlowService = Depends(get_outward_flow_service),
    actor: str = Depends(get_current_actor),
):
    return service.create_request(payload, actor=actor)

@router.get(
    "/requests",
    response_model=PartRequestListResponse,
    summary="List part requests",
)
def get_part_requests(
    skip: int = Query(0, ge=0, description="Number of items to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Number of items to return"),
    status_filter: Optional[RequestStatus] = Query(None, alias="status", description="Filter by status"),
    urgency: Optional[Urgency] = Query(None, description="Filter by urgency"),
    technician_id: Optional[str] = Query(None, description="Filter by requesting technician"),
    store_id: Optional[str] = Query(None, description="Filter by store"),
    service_request_id: Optional[int] = Query(None, description="Filter by service job"),
    spare_part_id: Optional[int] = Query(None, description="Filter by spare part"),
    created_from: Optional[datetime] = Query(None, description="Created on or after"),
    created_to: Optional[datetime] = Query(None, description="Created on or before"),
    service: OutwardFlowService = Depends(get_outward_flow_service),
):
    requests, total = service.list_requests(
        skip=skip,
        limit=limit,
        status=status_filter,
        urgency=urgency,
        technician_id=technician_id,
        store_id=store_id,
        service_request_id=service_request_id,
        spare_part_id=spare_part_id,
        created_from=created_from,
        created_to=created_to,
    )

    total_pages = math.ceil(total / limit) if limit > 0 else 1
    current_page = (skip // limit) + 1 if limit > 0 else 1

    return PartRequestListResponse(
        items=requests,
        total=total,
        page=current_page,
        size=limit,
        total_pages=total_pages
    )

@router.get(
    "/requests/{request_id}",
    response_model=PartRequestResponse,
    summary="Get part request by ID",
)
def get_part_request(
    request_id: int,
    service: OutwardFlowService = Depends(get_outward_flow_service),
):
    return service.get_request(request_id)

@router.get(
    "/requests/{request_id}/approvals",
    response_model=List[ApprovalHistoryResponse],
    summary="Get approval history",
)
def get_approval_history(
    request_id: int,
    service: OutwardFlowService = Depends(get_outward_flow_service),
):
    return service.get_approval_history(request_id)

@router.post(
    "/requests/{request_id}/approve",
    response_model=PartRequestResponse,
    summary="Approve a pending request",
)
def approve_part_request(
    request_id: int,
    decision: ApprovalDecisionCreate,
    service: OutwardFlowService = Depends(get_outward_flow_service),
    actor: str = Depends(get_current_actor),
):
    return service.approve_request(request_id, actor, decision.comments, decision.conditions)

@router.post(
    "/requests/{request_id}/reject",
    response_model=PartRequestResponse,
    summary="Reject a pending request",
)
def reject_part_request(
    request_id: int,
    rejection: RejectionCreate,
    service: OutwardFlowService = Depends(get_outward_flow_service),
    actor: str = Depends(get_current_actor),
):
    return service.reject_request(request_id, actor, rejection.reason)

@router.post(
    "/requests/{request_id}/cancel",
    response_model=PartRequestResponse,
    summary="Cancel a pending or approved request",
)
def cancel_part_request(
    request_id: int,
    cancellation: CancellationCreate,
    service: OutwardFlowService = Depends(get_outward_flow_service),
    actor: str = Depends(get_current_actor),
):
    return service.cancel_request(request_id, actor, cancellation.reason)

@router.post(
    "/requests/{request_id}/issue",
    response_model=IssueResult,
    summary="Issue parts to the technician",
    description="Consumes stock batches oldest first"
)
def issue_part_request(
    request_id: int,
    service: OutwardFlowService = Depends(get_outward_flow_service),
    actor: str = Depends(get_current_actor),
):
    result = service.issue_request(request_id, actor=actor)
    return IssueResult(
        request_id=request_id,
        issued_quantity=result.issued_quantity,
        total_cost=result.total_cost,
        batches=[
            IssuedBatchResponse(
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                quantity=batch.quantity,
                unit_cost=batch.unit_cost,
            )
            for batch in result.batches
        ],
    )

# ============ INSTALLATION, RETURNS, COST ============

@router.post(
    "/installations",
    response_model=InstalledPartResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a part installation",
)
def install_part(
    payload: PartInstallCreate,
    service: OutwardFlowService = Depends(get_outward_flow_service),
    actor: str = Depends(get_current_actor),
):
    installation = service.install_part(payload, actor=actor)
    service.db.refresh(installation)
    return installation

@router.get(
    "/jobs/{service_request_id}/installed-parts",
    response_model=List[InstalledPartResponse],
    summary="List parts installed on a service job",
)
def get_installed_parts(
    service_request_id: int,
    include_removed: bool = Query(True, description="Include parts later removed or replaced"),
    service: OutwardFlowService = Depends(get_outward_flow_service),
):
    return service.list_installed_parts(service_request_id, include_removed=include_removed)

@router.post(
    "/jobs/{service_request_id}/returns",
    response_model=List[PartReturnResult],
    summary="Return unused parts",
    description="Each item is processed or rejected on its own"
)
def return_parts(
    service_request_id: int,
    payload: PartReturnCreate,
    service: OutwardFlowService = Depends(get_outward_flow_service),
    actor: str = Depends(get_current_actor),
):
    return service.return_parts(
        service_request_id,
        payload.returns,
        technician_id=payload.technician_id,
        actor=actor,
    )

@router.post(
    "/jobs/{service_request_id}/cost",
    response_model=ServiceCostBreakdownResponse,
    summary="Compute the service cost breakdown",
)
def calculate_service_cost(
    service_request_id: int,
    engine: CostEngine = Depends(get_cost_engine),
    actor: str = Depends(get_current_actor),
):
    breakdown = engine.calculate_service_cost(service_request_id, actor=actor)
    engine.db.refresh(breakdown)
    return breakdown

@router.get(
    "/jobs/{service_request_id}/cost",
    response_model=ServiceCostBreakdownResponse,
    summary="Get the last computed cost breakdown",
)
def get_service_cost(
    service_request_id: int,
    engine: CostEngine = Depends(get_cost_engine),
):
    breakdown = engine.get_breakdown(service_request_id)
    if not breakdown:
        raise NotFoundError(f"No cost breakdown computed for service job {service_request_id}")
    return breakdown

# ============ TECHNICIAN LIMITS ============

@router.post(
    "/technician-limits",
    response_model=TechnicianLimitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Set a technician limit",
)
def create_technician_limit(
    payload: TechnicianLimitCreate,
    store: TechnicianLimitStore = Depends(get_technician_limit_store),
):
    return store.create_limit(payload)

@router.get(
    "/technician-limits",
    response_model=List[TechnicianLimitResponse],
    summary="List technician limits",
)
def get_technician_limits(
    technician_id: Optional[str] = Query(None, description="Filter by technician"),
    active_only: bool = Query(True),
    store: TechnicianLimitStore = Depends(get_technician_limit_store),
):
    return store.list_limits(technician_id=technician_id, active_only=active_only)
