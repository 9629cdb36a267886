from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

from database import create_document, get_collection, get_document
from schemas import User
from security import create_token, get_current_user, hash_password, user_summary, verify_password

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


@router.post("/register", status_code=201)
def register(payload: RegisterRequest):
    users = get_collection("user")
    if users.find_one({"email": payload.email.lower()}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(name=payload.name, email=payload.email.lower(), hashed_password=hash_password(payload.password))
    doc = get_document("user", create_document("user", user))
    return {"token": create_token(doc), "user": user_summary(doc)}


@router.post("/login")
def login(payload: LoginRequest):
    user = get_collection("user").find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("hashed_password", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    return {"token": create_token(user), "user": user_summary(user)}


@router.get("/me")
async def me(current_user: dict = Depends(get_current_user)):
    return user_summary(current_user)
