from fastapi import APIRouter, Depends, Response, status

from .. import schemas, utils
from ..errors import api_error
from ..profile_store import ProfileStore, get_profile_store
from ..rate_limit import rate_limit_dependency
from ..session import set_session_cookie

router = APIRouter(prefix="/profiles", tags=["Profiles"])


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=schemas.ProfileOut)
def create_profile(
    payload: schemas.ProfileCreate,
    response: Response,
    _: None = rate_limit_dependency("profile_signup"),
    store: ProfileStore = Depends(get_profile_store),
):
    email = str(payload.email).lower()
    if store.find_by_email(email) is not None:
        raise api_error(
            "Email is already registered",
            error_code="email_already_registered",
            status_code=status.HTTP_409_CONFLICT,
        )

    profile = store.create(
        name=payload.name,
        email=email,
        phone=payload.phone,
        secret_code_hash=utils.hash(payload.secret_code),
        proficiencies=payload.proficiencies,
        profile_type="looking",
        is_available=True,
        user_status="available",
    )
    set_session_cookie(response, str(profile.id))
    return profile
