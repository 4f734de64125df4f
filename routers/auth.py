import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header
from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlmodel import Session, select

from config import settings
from db import SessionDep
from errors import Conflict, Forbidden, Unauthorized
from models import User, UserRole
from schemas import LoginData, SignupData, TokenResponse, UserRead

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

serializer = URLSafeTimedSerializer(settings.secret_key, salt="access-token")


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def find_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email)).first()


def create_user(session: Session, name: str, email: str, password: str, role: UserRole) -> User:
    if find_by_email(session, email) is not None:
        raise Conflict("User already exists")

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("User %s registered as %s", user.id, user.role.value)
    return user


def create_access_token(user_id: int, role: UserRole) -> str:
    """
    Store user_id + role in the signed token.
    Example data:
        {"user_id": 3, "role": "staff"}
    """
    return serializer.dumps({"user_id": user_id, "role": UserRole(role).value})


def verify_access_token(token: str, max_age_seconds: Optional[int] = None) -> Optional[dict]:
    """
    Returns dict {'user_id': ..., 'role': ...} if valid,
    or None if token is invalid/expired.
    """
    if max_age_seconds is None:
        max_age_seconds = settings.token_max_age_seconds
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None


def get_current_user_and_role(
    session: SessionDep,
    authorization: Optional[str] = Header(default=None),
) -> dict:
    """
    Reads the bearer token, verifies it, looks up the user,
    and returns {"user": User, "role": UserRole}.
    """
    if not authorization:
        raise Unauthorized("Not logged in")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Invalid authorization header")

    data = verify_access_token(token.strip())
    if not data:
        raise Unauthorized("Invalid or expired token")

    try:
        role = UserRole(data["role"])
    except (KeyError, ValueError):
        raise Unauthorized("Invalid or expired token") from None

    user = session.get(User, data.get("user_id"))
    if user is None:
        raise Unauthorized("User not found for this token")

    return {"user": user, "role": role}


CurrentUserRoleDep = Annotated[dict, Depends(get_current_user_and_role)]


def require_roles(*roles: UserRole):
    def dependency(current: CurrentUserRoleDep) -> dict:
        if current["role"] not in roles:
            raise Forbidden("You do not have permission to perform this action")
        return current

    return dependency


AdminDep = Annotated[dict, Depends(require_roles(UserRole.admin))]
StaffDep = Annotated[dict, Depends(require_roles(UserRole.admin, UserRole.staff))]


@router.post("/signup", response_model=UserRead, status_code=201)
def signup(payload: SignupData, session: SessionDep):
    """
    Register a new user with a hashed password.
    """
    return create_user(
        session,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        role=payload.role,
    )


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginData, session: SessionDep):
    """
    Log in with email + password and receive a bearer token.
    """
    user = find_by_email(session, payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login for %s", payload.email)
        raise Unauthorized("Invalid email or password")

    token = create_access_token(user.id, user.role)
    return TokenResponse(token=token, user=UserRead.model_validate(user))


@router.get("/me", response_model=UserRead)
def read_me(current: CurrentUserRoleDep):
    """
    Get info about the currently logged-in user.
    """
    return current["user"]
