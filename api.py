import logging
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import database
from auth import (
    Identity,
    InvalidToken,
    create_access_token,
    extract_token,
    get_current_identity,
    refresh_access_token,
    require_admin,
)
from catalog import CatalogService
from config import settings
from errors import InvalidCredentials, LibraryError, NotFoundError, StoreFailure
from loans import LoanService
from stores import SqliteStorage
from users import UserService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

storage = SqliteStorage(database.resolve_database_file())
catalog = CatalogService(storage)
users = UserService(storage)
loans = LoanService(storage)

app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---
@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, InvalidCredentials):
        status_code = 401
    elif isinstance(exc, StoreFailure):
        logger.error(f"{request.method} {request.url.path} failed in the store: {exc}")
        status_code = 500
    else:
        status_code = 400
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# --- Models ---
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserModel(BaseModel):
    id: int
    name: str
    email: str
    is_admin: bool
    created_at: datetime
    updated_at: datetime


class UserCreateModel(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=100)
    password: str = Field(min_length=6)


class UserUpdateModel(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    password: Optional[str] = Field(default=None, min_length=6)


class LoginModel(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str


class TokenModel(BaseModel):
    token: str
    expire: datetime


class BookModel(BaseModel):
    id: int
    title: str
    author: str
    description: str
    quantity: int
    available: int
    created_at: datetime
    updated_at: datetime


class BookCreateModel(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=100)
    description: str = ""
    quantity: int = Field(default=1, ge=1)


class BookUpdateModel(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    author: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)


class LoanModel(BaseModel):
    id: int
    book_id: int
    book_title: str
    user_id: int
    user_name: str
    loan_date: datetime
    return_date: datetime
    returned_at: Optional[datetime] = None
    is_returned: bool
    created_at: datetime
    updated_at: datetime


class LoanCreateModel(BaseModel):
    book_id: int
    return_date: datetime


class LoanReturnModel(BaseModel):
    message: str
    loan: LoanModel


# --- Health ---
@app.get("/api/health")
def health():
    """Lightweight health check that also pings the database."""
    db_ok = True
    try:
        conn = database.get_db_connection(storage.db_file)
        conn.execute("SELECT 1")
        conn.close()
    except Exception as e:
        logger.warning(f"Health check could not reach the database: {e}")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": db_ok,
        "timestamp": datetime.now().isoformat(),
    }


# --- Authentication ---
def _token_response(response: Response, token: str, expire: datetime) -> TokenModel:
    response.set_cookie(
        key=settings.jwt_cookie_name,
        value=token,
        max_age=settings.jwt_expiration_minutes * 60,
        httponly=True,
        samesite="lax",
    )
    return TokenModel(token=token, expire=expire)


@app.post("/api/auth/register", response_model=UserModel, status_code=201)
def register(payload: UserCreateModel):
    """Create an account. The first account becomes an administrator."""
    user = users.register(payload.name, payload.email, payload.password)
    return UserModel(**user.to_dict())


@app.post("/api/auth/login", response_model=TokenModel)
def login(payload: LoginModel, response: Response):
    user = users.authenticate(payload.email, payload.password)
    logger.info(f"User {user.id} logged in")
    token, expire = create_access_token(Identity.from_user(user))
    return _token_response(response, token, expire)


@app.get("/api/auth/refresh", response_model=TokenModel)
def refresh(request: Request, response: Response):
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")
    try:
        new_token, expire = refresh_access_token(token)
    except InvalidToken as e:
        raise HTTPException(status_code=401, detail=str(e))
    return _token_response(response, new_token, expire)


# --- Books (public) ---
@app.get("/api/books", response_model=List[BookModel])
def list_books():
    return [BookModel(**b.to_dict()) for b in catalog.list_books()]


@app.get("/api/books/{book_id}", response_model=BookModel)
def get_book(book_id: int):
    return BookModel(**catalog.get_book(book_id).to_dict())


# --- Books (admin) ---
@app.post("/api/admin/books", response_model=BookModel, status_code=201, dependencies=[Depends(require_admin)])
def create_book(payload: BookCreateModel):
    book = catalog.create_book(payload.title, payload.author, payload.description, payload.quantity)
    return BookModel(**book.to_dict())


@app.put("/api/admin/books/{book_id}", response_model=BookModel, dependencies=[Depends(require_admin)])
def update_book(book_id: int, update: BookUpdateModel):
    book = catalog.update_book(
        book_id,
        title=update.title,
        author=update.author,
        description=update.description,
        quantity=update.quantity,
    )
    return BookModel(**book.to_dict())


@app.delete("/api/admin/books/{book_id}", dependencies=[Depends(require_admin)])
def delete_book(book_id: int):
    catalog.delete_book(book_id)
    return {"message": "Book removed."}


# --- Loans ---
@app.get("/api/loans", response_model=List[LoanModel])
def list_loans(identity: Identity = Depends(get_current_identity)):
    return [LoanModel(**loan.to_dict()) for loan in loans.list_loans_for_user(identity.user_id)]


@app.post("/api/loans", response_model=LoanModel, status_code=201)
def create_loan(payload: LoanCreateModel, identity: Identity = Depends(get_current_identity)):
    loan = loans.create_loan(identity.user_id, payload.book_id, payload.return_date)
    return LoanModel(**loan.to_dict())


@app.get("/api/loans/{loan_id}", response_model=LoanModel)
def get_loan(loan_id: int, identity: Identity = Depends(get_current_identity)):
    return LoanModel(**loans.get_loan(loan_id, identity.user_id).to_dict())


@app.put("/api/loans/{loan_id}/return", response_model=LoanReturnModel)
def return_loan(loan_id: int, identity: Identity = Depends(get_current_identity)):
    loan = loans.return_loan(loan_id, identity.user_id)
    return LoanReturnModel(message="Book returned successfully", loan=LoanModel(**loan.to_dict()))


# --- Users (self) ---
@app.get("/api/users/me", response_model=UserModel)
def get_me(identity: Identity = Depends(get_current_identity)):
    return UserModel(**users.get_user(identity.user_id).to_dict())


@app.put("/api/users/me", response_model=UserModel)
def update_me(update: UserUpdateModel, identity: Identity = Depends(get_current_identity)):
    user = users.update_user(identity.user_id, name=update.name, password=update.password)
    return UserModel(**user.to_dict())


# --- Users (admin) ---
@app.get("/api/admin/users", response_model=List[UserModel], dependencies=[Depends(require_admin)])
def list_users():
    return [UserModel(**u.to_dict()) for u in users.list_users()]


@app.get("/api/admin/users/{user_id}", response_model=UserModel, dependencies=[Depends(require_admin)])
def get_user(user_id: int):
    return UserModel(**users.get_user(user_id).to_dict())


@app.put("/api/admin/users/{user_id}", response_model=UserModel, dependencies=[Depends(require_admin)])
def update_user(user_id: int, update: UserUpdateModel):
    user = users.update_user(user_id, name=update.name, password=update.password)
    return UserModel(**user.to_dict())


@app.delete("/api/admin/users/{user_id}", dependencies=[Depends(require_admin)])
def delete_user(user_id: int):
    users.delete_user(user_id)
    return {"message": "User removed."}


@app.put("/api/admin/users/{user_id}/promote", dependencies=[Depends(require_admin)])
def promote_user(user_id: int):
    user = users.promote_to_admin(user_id)
    return {"message": "User promoted to admin", "user": UserModel(**user.to_dict())}


@app.get("/")
def read_root():
    return {"name": settings.app_name, "version": settings.app_version, "docs": "/docs"}
