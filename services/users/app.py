from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from common import auth
from common.app_factory import create_service_app, limiter
from common.database import get_db
from common.dependencies import get_current_active_user, refresh_booking_statuses
from common.models import Booking, Organization, RoleEnum, User
from common.schemas import BookingRead, RegisterRequest, Token, UserCreate, UserRead, UserUpdate

app = create_service_app("Users Service", "users")


def _ensure_unique_user(db: Session, username: str, email: str) -> None:
    if db.query(User).filter((User.username == username) | (User.email == email)).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email already exists")


def _get_visible_user(db: Session, username: str, current_user: User) -> User:
    user = db.query(User).filter(User.username == username).first()
    if not user or user.organization_id != current_user.organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if current_user.role != RoleEnum.ADMIN and current_user.id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return user


@app.post("/auth/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register(request: Request, payload: RegisterRequest, db: Session = Depends(get_db)) -> User:
    _ensure_unique_user(db, payload.username, payload.email)
    org_in = payload.organization
    if db.query(Organization).filter(Organization.regon == org_in.regon).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This REGON is already registered")
    if db.query(Organization).filter(Organization.email == org_in.email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This organization email is already registered")

    organization = Organization(name=org_in.name, regon=org_in.regon, email=org_in.email)
    user = User(
        name=payload.name,
        username=payload.username,
        email=payload.email,
        role=RoleEnum.ADMIN,
        hashed_password=auth.get_password_hash(payload.password),
        organization=organization,
    )
    db.add_all([organization, user])
    db.commit()
    db.refresh(user)
    return user


@app.post("/users/login", response_model=Token)
@limiter.limit("10/minute")
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> Token:
    user = auth.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")
    return Token(access_token=auth.create_user_token(user))


@app.get("/auth/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_active_user)) -> User:
    return current_user


@app.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_user(
    request: Request,
    user_in: UserCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> User:
    if current_user.role != RoleEnum.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins only")
    _ensure_unique_user(db, user_in.username, user_in.email)
    user = User(
        name=user_in.name,
        username=user_in.username,
        email=user_in.email,
        role=user_in.role,
        hashed_password=auth.get_password_hash(user_in.password),
        organization_id=current_user.organization_id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@app.get("/users", response_model=list[UserRead])
@limiter.limit("20/minute")
def list_users(request: Request, current_user: User = Depends(get_current_active_user), db: Session = Depends(get_db)) -> list[User]:
    if current_user.role != RoleEnum.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins only")
    return (
        db.query(User)
        .filter(User.organization_id == current_user.organization_id)
        .order_by(User.username)
        .all()
    )


@app.get("/users/{username}", response_model=UserRead)
@limiter.limit("30/minute")
def get_user(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> User:
    return _get_visible_user(db, username, current_user)


@app.put("/users/{username}", response_model=UserRead)
@limiter.limit("10/minute")
def update_user(
    request: Request,
    username: str,
    user_update: UserUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> User:
    user = _get_visible_user(db, username, current_user)
    data = user_update.model_dump(exclude_unset=True)

    if "email" in data and data["email"] != user.email:
        if db.query(User).filter(User.email == data["email"]).first():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email already exists")
        user.email = data["email"]
    if data.get("name"):
        user.name = data["name"]
    if data.get("password"):
        user.hashed_password = auth.get_password_hash(data["password"])
    if current_user.role == RoleEnum.ADMIN:
        if data.get("role"):
            user.role = data["role"]
        if data.get("is_active") is not None:
            user.is_active = data["is_active"]

    db.commit()
    db.refresh(user)
    return user


@app.delete("/users/{username}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("5/minute")
def delete_user(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> None:
    user = _get_visible_user(db, username, current_user)
    db.delete(user)
    db.commit()


@app.get(
    "/users/{username}/bookings",
    response_model=list[BookingRead],
    dependencies=[Depends(refresh_booking_statuses)],
)
@limiter.limit("30/minute")
def user_booking_history(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> list[Booking]:
    user = _get_visible_user(db, username, current_user)
    return (
        db.query(Booking)
        .filter(Booking.user_id == user.id)
        .order_by(Booking.started_at.desc())
        .all()
    )
