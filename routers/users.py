from fastapi import APIRouter, Depends, HTTPException
from tortoise.exceptions import IntegrityError
import uuid

from models import User
from schemas import UserCreate, UserUpdate, UserRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, to_bool
from deps import get_current_active_user, get_current_admin_user
from services.seeder import pwd_ctx

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserRead], dependencies=[Depends(get_current_admin_user)])
async def list_users(params: RAListParams = Depends()):
    fmap = {
        "q":        lambda q, v: q.filter(username__icontains=str(v)),
        "username": lambda q, v: q.filter(username__icontains=str(v)),
        "role":     lambda q, v: q.filter(role=str(v)),
        "disabled": lambda q, v: q.filter(disabled=to_bool(v)),
    }
    qs = apply_filter_map(User.all(), params.filters, fmap)
    order = parse_sort(params.sort, ["username", "full_name", "role", "disabled", "created_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, UserRead)


# /me before /{user_id}
@router.get("/me", response_model=UserRead)
async def read_me(current_user: User = Depends(get_current_active_user)):
    return UserRead.model_validate(current_user)


@router.get("/{user_id:uuid}", response_model=UserRead, dependencies=[Depends(get_current_admin_user)])
async def get_user(user_id: uuid.UUID):
    obj = await User.get_or_none(id=user_id)
    if not obj:
        raise HTTPException(404, "User not found")
    return respond_item(obj, UserRead)


@router.post("", response_model=UserRead, status_code=201, dependencies=[Depends(get_current_admin_user)])
async def create_user(payload: UserCreate):
    try:
        obj = await User.create(
            username=payload.username,
            full_name=payload.full_name,
            hashed_password=pwd_ctx.hash(payload.password),
            role=payload.role,
        )
    except IntegrityError:
        raise HTTPException(409, f"Username {payload.username} is taken")
    return respond_item(obj, UserRead, status_code=201)


@router.put("/{user_id:uuid}", response_model=UserRead, dependencies=[Depends(get_current_admin_user)])
async def update_user(user_id: uuid.UUID, payload: UserUpdate):
    obj = await User.get_or_none(id=user_id)
    if not obj:
        raise HTTPException(404, "User not found")
    data = payload.model_dump(exclude_unset=True)
    password = data.pop("password", None)
    for k, v in data.items():
        if v is not None:
            setattr(obj, k, v)
    if password:
        obj.hashed_password = pwd_ctx.hash(password)
    await obj.save()
    return respond_item(obj, UserRead)
