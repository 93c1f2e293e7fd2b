from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from periods import resolve_month
from scheduler import SchedulerManager
from schemas import (
    BalanceReportOut,
    CategoryIn,
    CategoryOut,
    CategoryPageOut,
    CategoryReportOut,
    CategoryUpdate,
    DefaultCategoryOut,
    LoginIn,
    RegisterIn,
    SummaryReportOut,
    TokenOut,
    TransactionIn,
    TransactionOut,
    TransactionPageOut,
    TransactionQuery,
    TransactionUpdate,
    UserOut,
    UserUpdate,
)
from services import (
    AuthService,
    CategoryNotFound,
    CategoryService,
    CategoryTypeMismatch,
    DefaultCategoryProtected,
    EmailAlreadyRegistered,
    NotFound,
    ReportService,
    TransactionService,
    UserService,
)

app = FastAPI(title="Finance Tracker")
bearer_scheme = HTTPBearer(auto_error=False)
scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "")})
    return JSONResponse(
        status_code=422,
        content={"code": "VALIDATION_ERROR", "message": "Validation failed", "errors": errors},
    )


def error_detail(code: str, exc: Exception) -> dict[str, str]:
    return {"code": code, "message": str(exc)}


def current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> int:
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = AuthService(db).resolve_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def clamp_limit(raw: Optional[str]) -> int:
    settings = get_settings()
    try:
        limit = int(raw) if raw else settings.page_size
    except ValueError:
        limit = settings.page_size
    return min(max(limit, 1), settings.max_page_size)


def query_from_request(request: Request) -> TransactionQuery:
    params = request.query_params
    raw = {
        "type": params.get("type"),
        "category_id": params.get("category_id") or params.get("category"),
        "start_date": params.get("start_date"),
        "end_date": params.get("end_date"),
        "min_amount": params.get("min_amount"),
        "max_amount": params.get("max_amount"),
        "description": params.get("description"),
        "sort_by": params.get("sort_by"),
        "sort_order": params.get("sort_order"),
        "page": params.get("page"),
    }
    payload = {k: v for k, v in raw.items() if v not in (None, "")}
    payload["limit"] = clamp_limit(params.get("limit"))
    try:
        return TransactionQuery(**payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


def month_from_request(value: Optional[str], *, default_current: bool) -> Optional[str]:
    if not value and not default_current:
        return None
    try:
        return resolve_month(value)
    except ValueError as exc:
        raise RequestValidationError(
            [{"loc": ("query", "month"), "msg": str(exc), "type": "value_error"}]
        ) from exc


@app.post("/auth/register", response_model=UserOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    try:
        return AuthService(db).register(payload)
    except EmailAlreadyRegistered as exc:
        raise HTTPException(
            status_code=409, detail=error_detail("EMAIL_ALREADY_EXISTS", exc)
        ) from exc


@app.post("/auth/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    service = AuthService(db)
    user = service.authenticate(payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenOut(access_token=service.issue_token(user))


@app.get("/users/profile", response_model=UserOut)
def get_profile(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    try:
        return UserService(db, user_id).profile()
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/users/profile", response_model=UserOut)
def update_profile(
    payload: UserUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return UserService(db, user_id).update_profile(payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except EmailAlreadyRegistered as exc:
        raise HTTPException(
            status_code=409, detail=error_detail("EMAIL_ALREADY_EXISTS", exc)
        ) from exc


@app.get("/categories/defaults", response_model=list[DefaultCategoryOut])
def list_default_categories():
    return [DefaultCategoryOut.model_validate(c) for c in CategoryService.list_defaults()]


@app.get("/categories", response_model=CategoryPageOut)
def list_categories(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        page = max(int(request.query_params.get("page", "1")), 1)
    except ValueError:
        page = 1
    limit = clamp_limit(request.query_params.get("limit"))
    categories = CategoryService(db, user_id).list_for_owner(page=page, limit=limit)
    return {"page": page, "limit": limit, "categories": categories}


@app.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).create(payload)


@app.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return CategoryService(db, user_id).get_for_owner(category_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return CategoryService(db, user_id).update(category_id, payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DefaultCategoryProtected as exc:
        raise HTTPException(
            status_code=403, detail=error_detail("DEFAULT_CATEGORY_PROTECTED", exc)
        ) from exc
    except CategoryTypeMismatch as exc:
        raise HTTPException(
            status_code=400, detail=error_detail("CATEGORY_TYPE_MISMATCH", exc)
        ) from exc


@app.delete("/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        deleted = CategoryService(db, user_id).delete(category_id)
    except DefaultCategoryProtected as exc:
        raise HTTPException(
            status_code=403, detail=error_detail("DEFAULT_CATEGORY_PROTECTED", exc)
        ) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Category not found")
    return Response(status_code=204)


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).create(payload)
    except CategoryNotFound as exc:
        raise HTTPException(
            status_code=400, detail=error_detail("CATEGORY_NOT_FOUND", exc)
        ) from exc
    except CategoryTypeMismatch as exc:
        raise HTTPException(
            status_code=400, detail=error_detail("CATEGORY_TYPE_MISMATCH", exc)
        ) from exc


@app.get("/transactions", response_model=TransactionPageOut)
def list_transactions(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    query = query_from_request(request)
    page = TransactionService(db, user_id).list(query)
    return TransactionPageOut.model_validate(page)


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).get(transaction_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).update(transaction_id, payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except CategoryNotFound as exc:
        raise HTTPException(
            status_code=400, detail=error_detail("CATEGORY_NOT_FOUND", exc)
        ) from exc
    except CategoryTypeMismatch as exc:
        raise HTTPException(
            status_code=400, detail=error_detail("CATEGORY_TYPE_MISMATCH", exc)
        ) from exc


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if not TransactionService(db, user_id).delete(transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return Response(status_code=204)


@app.get("/reports/summary", response_model=SummaryReportOut)
def summary_report(
    month: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    resolved = month_from_request(month, default_current=True)
    report = ReportService(db, user_id).summary(resolved)
    return SummaryReportOut.model_validate(report)


@app.get("/reports/categories", response_model=CategoryReportOut)
def categories_report(
    month: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    resolved = month_from_request(month, default_current=False)
    report = ReportService(db, user_id).category_report(resolved)
    return CategoryReportOut.model_validate(report)


@app.get("/reports/balance", response_model=BalanceReportOut)
def balance_report(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    report = ReportService(db, user_id).balance()
    return BalanceReportOut.model_validate(report)
