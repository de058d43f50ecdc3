import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.enforcement import require_permission
from ..auth.rbac_contract import Permission
from ..dependencies import (
    client_info,
    get_access_evaluator,
    get_current_principal,
    get_db,
    get_permission_resolver,
)
from ..domain.access import AccessDecision, AccessType, Principal, ResourceRef
from ..domain.invariants import InvariantViolation
from ..errors import InvalidRuleDefinitionError, PermissionError
from ..schemas.data_access_rule import (
    AccessCheckRequest,
    AccessCheckResponse,
    BulkRulesRequest,
    DataAccessRuleCreate,
    DataAccessRuleListResponse,
    DataAccessRuleResponse,
    DataAccessRuleUpdate,
    FilterDatabasesRequest,
    FilterResponse,
    FilterTablesRequest,
)
from ..services.access.evaluator import ResourceAccessEvaluator
from ..services.admin.data_access_service import DataAccessService
from ..services.admin.permission_service import PermissionResolver

router = APIRouter(prefix="/rbac/data-access", tags=["rbac-data-access"])


def _invalid(exc: InvariantViolation) -> InvalidRuleDefinitionError:
    return InvalidRuleDefinitionError(str(exc), details={"invariant": exc.invariant})


def _decision_response(decision: AccessDecision) -> AccessCheckResponse:
    return AccessCheckResponse(
        allowed=decision.allowed,
        reason=decision.reason,
        rule_id=decision.rule_id,
        rule_priority=decision.rule_priority,
    )


@router.get("", response_model=DataAccessRuleListResponse)
async def list_rules(
    role_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    connection_id: uuid.UUID | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _: Principal = Depends(require_permission(Permission.ROLES_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> DataAccessRuleListResponse:
    rules, total = await DataAccessService(db).list_rules(
        role_id=role_id,
        user_id=user_id,
        connection_id=connection_id,
        limit=limit,
        offset=offset,
    )
    return DataAccessRuleListResponse(
        items=[DataAccessRuleResponse.from_rule(rule) for rule in rules],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=DataAccessRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: DataAccessRuleCreate,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.ROLES_UPDATE)),
    db: AsyncSession = Depends(get_db),
) -> DataAccessRuleResponse:
    try:
        spec = payload.to_spec()
    except InvariantViolation as exc:
        raise _invalid(exc) from exc
    rule = await DataAccessService(db).create_rule(spec, actor=actor, client=client_info(request))
    return DataAccessRuleResponse.from_rule(rule)


@router.put("/bulk", response_model=list[DataAccessRuleResponse])
async def bulk_set_rules(
    payload: BulkRulesRequest,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.ROLES_UPDATE)),
    db: AsyncSession = Depends(get_db),
) -> list[DataAccessRuleResponse]:
    service = DataAccessService(db)
    specs = payload.to_specs()
    if payload.role_id is not None:
        rules = await service.set_rules_for_role(
            payload.role_id, specs, actor=actor, client=client_info(request)
        )
    else:
        rules = await service.set_rules_for_user(
            payload.user_id, specs, actor=actor, client=client_info(request)
        )
    return [DataAccessRuleResponse.from_rule(rule) for rule in rules]


@router.get("/role/{role_id}", response_model=list[DataAccessRuleResponse])
async def get_role_rules(
    role_id: uuid.UUID,
    _: Principal = Depends(require_permission(Permission.ROLES_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> list[DataAccessRuleResponse]:
    rules = await DataAccessService(db).get_rules_for_role(role_id)
    return [DataAccessRuleResponse.from_rule(rule) for rule in rules]


@router.get("/user/{user_id}", response_model=list[DataAccessRuleResponse])
async def get_user_rules(
    user_id: uuid.UUID,
    _: Principal = Depends(require_permission(Permission.USERS_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> list[DataAccessRuleResponse]:
    rules = await DataAccessService(db).get_rules_for_user(user_id)
    return [DataAccessRuleResponse.from_rule(rule) for rule in rules]


@router.post("/check", response_model=AccessCheckResponse)
async def check_access(
    payload: AccessCheckRequest,
    principal: Principal = Depends(get_current_principal),
    resolver: PermissionResolver = Depends(get_permission_resolver),
    evaluator: ResourceAccessEvaluator = Depends(get_access_evaluator),
    db: AsyncSession = Depends(get_db),
) -> AccessCheckResponse:
    resource = ResourceRef(
        database=payload.database,
        table=payload.table,
        connection_id=payload.connection_id,
    )
    if payload.user_id is None or payload.user_id == principal.id:
        decision = await evaluator.evaluate(principal, resource, payload.access_type)
        return _decision_response(decision)

    # Checking someone else's access is an admin operation.
    if not await resolver.has_permission(principal, Permission.USERS_VIEW.value):
        raise PermissionError(
            f"Permission denied: {Permission.USERS_VIEW.value} required",
            details={"permission": Permission.USERS_VIEW.value},
        )
    decision = await DataAccessService(db).check_access(
        payload.user_id, resource, payload.access_type
    )
    return _decision_response(decision)


@router.post("/filter/databases", response_model=FilterResponse)
async def filter_databases(
    payload: FilterDatabasesRequest,
    principal: Principal = Depends(get_current_principal),
    evaluator: ResourceAccessEvaluator = Depends(get_access_evaluator),
) -> FilterResponse:
    items = await evaluator.filter_databases(
        principal, payload.databases, payload.connection_id, payload.access_type
    )
    return FilterResponse(items=items)


@router.post("/filter/tables", response_model=FilterResponse)
async def filter_tables(
    payload: FilterTablesRequest,
    principal: Principal = Depends(get_current_principal),
    evaluator: ResourceAccessEvaluator = Depends(get_access_evaluator),
) -> FilterResponse:
    items = await evaluator.filter_tables(
        principal, payload.database, payload.tables, payload.connection_id, payload.access_type
    )
    return FilterResponse(items=items)


@router.get("/me/databases", response_model=FilterResponse)
async def my_databases(
    names: list[str] = Query([]),
    connection_id: uuid.UUID | None = None,
    access_type: AccessType = AccessType.READ,
    principal: Principal = Depends(get_current_principal),
    evaluator: ResourceAccessEvaluator = Depends(get_access_evaluator),
) -> FilterResponse:
    """Of the given database names, those the caller may access."""
    items = await evaluator.filter_databases(principal, names, connection_id, access_type)
    return FilterResponse(items=items)


@router.get("/{rule_id}", response_model=DataAccessRuleResponse)
async def get_rule(
    rule_id: uuid.UUID,
    _: Principal = Depends(require_permission(Permission.ROLES_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> DataAccessRuleResponse:
    return DataAccessRuleResponse.from_rule(await DataAccessService(db).get_rule(rule_id))


@router.patch("/{rule_id}", response_model=DataAccessRuleResponse)
async def update_rule(
    rule_id: uuid.UUID,
    payload: DataAccessRuleUpdate,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.ROLES_UPDATE)),
    db: AsyncSession = Depends(get_db),
) -> DataAccessRuleResponse:
    rule = await DataAccessService(db).update_rule(
        rule_id, payload.changes(), actor=actor, client=client_info(request)
    )
    return DataAccessRuleResponse.from_rule(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: uuid.UUID,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.ROLES_UPDATE)),
    db: AsyncSession = Depends(get_db),
) -> None:
    await DataAccessService(db).delete_rule(rule_id, actor=actor, client=client_info(request))
