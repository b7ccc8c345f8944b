from typing import List

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..dependencies import get_current_user, get_staff_service, require_role
from ..services import StaffService

router = APIRouter(prefix="/staff", tags=["Staff"])


# ---------------- Roster views ----------------
@router.get("/", response_model=List[schemas.StaffMember])
def list_staff(
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(require_role("admin")),
):
    return service.list_all()


@router.get("/voting", response_model=List[schemas.StaffMember])
def list_voting_candidates(
    service: StaffService = Depends(get_staff_service),
    current_user: schemas.Principal = Depends(get_current_user),
):
    """Active colleagues the caller may vote for (never the caller)."""
    exclude = current_user.sub if current_user.role == "staff" else None
    return service.list_candidates(exclude_staff_id=exclude)


@router.get("/stats/overview", response_model=schemas.StaffStats)
def staff_stats(
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(require_role("admin")),
):
    return service.stats()


@router.get("/department/{department}", response_model=List[schemas.StaffMember])
def list_department(
    department: str,
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(get_current_user),
):
    return service.list_by_department(department)


@router.get("/{staff_pk}", response_model=schemas.StaffMember)
def get_staff(
    staff_pk: str,
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(get_current_user),
):
    return service.get(staff_pk)


# ---------------- Roster management ----------------
@router.post("/", response_model=schemas.StaffMember, status_code=status.HTTP_201_CREATED)
def create_staff(
    staff_in: schemas.StaffCreate,
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(require_role("admin")),
):
    return service.create(
        staff_id=staff_in.staff_id,
        pin=staff_in.pin,
        name=staff_in.name,
        position=staff_in.position,
        department=staff_in.department,
        email=staff_in.email,
        phone=staff_in.phone,
    )


@router.post("/simple", response_model=schemas.StaffMember, status_code=status.HTTP_201_CREATED)
def create_simple_staff(
    staff_in: schemas.SimpleStaffCreate,
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(require_role("admin")),
):
    """Quick add with just an ID, PIN and name; position and department get defaults."""
    return service.create_simple(staff_in.staff_id, staff_in.pin, staff_in.name)


@router.put("/{staff_pk}", response_model=schemas.StaffMember)
def update_staff(
    staff_pk: str,
    staff_in: schemas.StaffUpdate,
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(require_role("admin")),
):
    return service.update(
        staff_pk,
        name=staff_in.name,
        position=staff_in.position,
        department=staff_in.department,
        email=staff_in.email,
        phone=staff_in.phone,
        is_active=staff_in.is_active,
    )


@router.post("/{staff_pk}/reset-pin", response_model=schemas.PinReset)
def reset_pin(
    staff_pk: str,
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(require_role("admin")),
):
    return service.reset_pin(staff_pk)


@router.delete("/{staff_pk}", status_code=status.HTTP_204_NO_CONTENT)
def delete_staff(
    staff_pk: str,
    service: StaffService = Depends(get_staff_service),
    current_user=Depends(require_role("admin")),
):
    service.delete(staff_pk)
    return None
