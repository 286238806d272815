from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from common.app_factory import create_service_app, limiter
from common.database import get_db
from common.dependencies import get_current_active_user
from common.models import Organization, RoleEnum, User
from common.schemas import OrganizationDetail, OrganizationRead, OrganizationUpdate

app = create_service_app("Organizations Service", "organizations")


def _get_own_organization(db: Session, organization_id: int, current_user: User) -> Organization:
    organization = db.get(Organization, organization_id)
    if not organization or organization.id != current_user.organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return organization


def _require_admin(current_user: User) -> None:
    if current_user.role != RoleEnum.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins only")


@app.get("/organizations", response_model=list[OrganizationRead])
@limiter.limit("30/minute")
def list_organizations(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> list[Organization]:
    return db.query(Organization).filter(Organization.id == current_user.organization_id).all()


@app.get("/organizations/{organization_id}", response_model=OrganizationDetail)
@limiter.limit("30/minute")
def get_organization(
    request: Request,
    organization_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Organization:
    return _get_own_organization(db, organization_id, current_user)


@app.put("/organizations/{organization_id}", response_model=OrganizationRead)
@limiter.limit("10/minute")
def update_organization(
    request: Request,
    organization_id: int,
    organization_update: OrganizationUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Organization:
    organization = _get_own_organization(db, organization_id, current_user)
    _require_admin(current_user)

    data = organization_update.model_dump(exclude_unset=True)
    if data.get("email") and data["email"] != organization.email:
        taken = db.query(Organization).filter(Organization.email == data["email"]).first()
        if taken:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This organization email is already registered")
    for key, value in data.items():
        if value is not None:
            setattr(organization, key, value)
    db.commit()
    db.refresh(organization)
    return organization


@app.delete("/organizations/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("5/minute")
def delete_organization(
    request: Request,
    organization_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> None:
    organization = _get_own_organization(db, organization_id, current_user)
    _require_admin(current_user)
    db.delete(organization)
    db.commit()
