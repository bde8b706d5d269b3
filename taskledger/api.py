from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .accounts import AdminActor, UserActor
from .errors import (
    AboveMaximumError,
    AccountPendingError,
    AlreadyActiveError,
    AlreadyCompletedError,
    BelowMinimumError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidCredentialsError,
    InvalidSettingsError,
    LedgerServiceError,
    MissingDestinationError,
    NotPendingError,
    PersistenceError,
    UnknownTaskError,
    UnknownUserError,
    UnknownWithdrawalError,
    UsernameTakenError,
)
from .models import (
    BalanceResponse,
    ChangePasswordRequest,
    CompletionRecord,
    DashboardStats,
    DecideWithdrawalRequest,
    LedgerHistoryResponse,
    LoginRequest,
    RegisterRequest,
    SessionState,
    Settings,
    SettingsRequest,
    StartSessionRequest,
    SubmitWithdrawalRequest,
    Task,
    TaskRequest,
    TaskSession,
    UserProfile,
    UserStatus,
    Withdrawal,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .service import TaskLedgerService


ERROR_STATUS = {
    UnknownUserError: status.HTTP_404_NOT_FOUND,
    UnknownTaskError: status.HTTP_404_NOT_FOUND,
    UnknownWithdrawalError: status.HTTP_404_NOT_FOUND,
    AlreadyActiveError: status.HTTP_409_CONFLICT,
    AlreadyCompletedError: status.HTTP_409_CONFLICT,
    NotPendingError: status.HTTP_409_CONFLICT,
    UsernameTakenError: status.HTTP_409_CONFLICT,
    InvalidAmountError: status.HTTP_400_BAD_REQUEST,
    BelowMinimumError: status.HTTP_400_BAD_REQUEST,
    AboveMaximumError: status.HTTP_400_BAD_REQUEST,
    MissingDestinationError: status.HTTP_400_BAD_REQUEST,
    InsufficientBalanceError: status.HTTP_400_BAD_REQUEST,
    InvalidSettingsError: status.HTTP_400_BAD_REQUEST,
    InvalidCredentialsError: status.HTTP_401_UNAUTHORIZED,
    AccountPendingError: status.HTTP_403_FORBIDDEN,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_service(request: Request) -> TaskLedgerService:
    return request.app.state.service


def current_actor(x_user_id: UUID = Header(...), service: TaskLedgerService = Depends(get_service)):
    try:
        actor = service.actor_for(x_user_id)
    except UnknownUserError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    if actor.profile().status == UserStatus.PENDING:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Your account is pending admin approval")
    return actor


def current_user(actor=Depends(current_actor)) -> UserActor:
    if not isinstance(actor, UserActor):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account required")
    return actor


def current_admin(actor=Depends(current_actor)) -> AdminActor:
    if not isinstance(actor, AdminActor):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin account required")
    return actor


def create_app(service: Optional[TaskLedgerService] = None, root_path: str = "") -> FastAPI:
    app = FastAPI(
        title="Task Ledger API",
        description="Ad-viewing tasks with timed sessions, idempotent rewards and withdrawals",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service or TaskLedgerService.from_config()

    @app.exception_handler(LedgerServiceError)
    async def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
        code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
        return JSONResponse(status_code=code, content={"error": exc.code, "detail": str(exc)})

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "taskledger", "currency": config.CURRENCY}

    # Accounts

    @app.post("/auth/register", response_model=UserProfile, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
    def register(request: RegisterRequest, service: TaskLedgerService = Depends(get_service)) -> UserProfile:
        return UserProfile.from_user(service.register(request.username, request.password, request.name))

    @app.post("/auth/login", response_model=UserProfile, tags=["Accounts"])
    def login(request: LoginRequest, service: TaskLedgerService = Depends(get_service)) -> UserProfile:
        return service.login(request.username, request.password).profile()

    @app.post("/me/password", status_code=status.HTTP_204_NO_CONTENT, tags=["Accounts"])
    def change_password(request: ChangePasswordRequest, actor=Depends(current_actor)) -> None:
        actor.change_password(request.current_password, request.new_password)

    # Tasks and sessions

    @app.get("/tasks", response_model=list[Task], tags=["Tasks"])
    def list_tasks(actor=Depends(current_actor), service: TaskLedgerService = Depends(get_service)) -> list[Task]:
        return service.list_tasks()

    @app.get("/tasks/available", response_model=list[Task], tags=["Tasks"])
    def list_available_tasks(user: UserActor = Depends(current_user)) -> list[Task]:
        return user.available_tasks()

    @app.post("/sessions", response_model=TaskSession, status_code=status.HTTP_201_CREATED, tags=["Sessions"])
    def start_session(request: StartSessionRequest, user: UserActor = Depends(current_user)) -> TaskSession:
        return user.start_task(request.task_id)

    @app.post("/sessions/tick", response_model=SessionState, tags=["Sessions"])
    def tick(user: UserActor = Depends(current_user)) -> SessionState:
        return user.tick()

    @app.post("/sessions/cancel", response_model=SessionState, tags=["Sessions"])
    def cancel(user: UserActor = Depends(current_user)) -> SessionState:
        return user.cancel()

    @app.get("/sessions/active", response_model=Optional[TaskSession], tags=["Sessions"])
    def active_session(user: UserActor = Depends(current_user)) -> Optional[TaskSession]:
        return user.active_session()

    # Balance

    @app.get("/me", response_model=UserProfile, tags=["Users"])
    def me(actor=Depends(current_actor)) -> UserProfile:
        return actor.profile()

    @app.get("/me/balance", response_model=BalanceResponse, tags=["Users"])
    def balance(user: UserActor = Depends(current_user), service: TaskLedgerService = Depends(get_service)) -> BalanceResponse:
        return service.ledger.get_balance(user.user_id)

    @app.get("/me/completions", response_model=list[CompletionRecord], tags=["Users"])
    def completions(user: UserActor = Depends(current_user)) -> list[CompletionRecord]:
        return user.completions()

    @app.get("/me/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
    def ledger_history(limit: int = Query(50, ge=0), offset: int = Query(0, ge=0),
                       user: UserActor = Depends(current_user)) -> LedgerHistoryResponse:
        return user.ledger_history(limit, offset)

    # Withdrawals

    @app.post("/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
    def submit_withdrawal(request: SubmitWithdrawalRequest,
                          user: UserActor = Depends(current_user)) -> WithdrawalResponse:
        return user.request_withdrawal(request)

    @app.get("/withdrawals", response_model=list[Withdrawal], tags=["Withdrawals"])
    def my_withdrawals(user: UserActor = Depends(current_user)) -> list[Withdrawal]:
        return user.withdrawals()

    # Admin

    @app.get("/admin/stats", response_model=DashboardStats, tags=["Admin"])
    def stats(admin: AdminActor = Depends(current_admin)) -> DashboardStats:
        return admin.stats()

    @app.get("/admin/users", response_model=list[UserProfile], tags=["Admin"])
    def list_users(admin: AdminActor = Depends(current_admin)) -> list[UserProfile]:
        return admin.list_users()

    @app.post("/admin/users/{user_id}/approve", response_model=UserProfile, tags=["Admin"])
    def approve_user(user_id: UUID, admin: AdminActor = Depends(current_admin)) -> UserProfile:
        return UserProfile.from_user(admin.approve_user(user_id))

    @app.post("/admin/users/{user_id}/block", response_model=UserProfile, tags=["Admin"])
    def block_user(user_id: UUID, admin: AdminActor = Depends(current_admin)) -> UserProfile:
        return UserProfile.from_user(admin.block_user(user_id))

    @app.delete("/admin/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
    def delete_user(user_id: UUID, admin: AdminActor = Depends(current_admin)) -> None:
        admin.delete_user(user_id)

    @app.post("/admin/tasks", response_model=Task, status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def create_task(request: TaskRequest, admin: AdminActor = Depends(current_admin)) -> Task:
        return admin.create_task(request)

    @app.put("/admin/tasks/{task_id}", response_model=Task, tags=["Admin"])
    def edit_task(task_id: UUID, request: TaskRequest, admin: AdminActor = Depends(current_admin)) -> Task:
        return admin.edit_task(task_id, request)

    @app.delete("/admin/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
    def delete_task(task_id: UUID, admin: AdminActor = Depends(current_admin)) -> None:
        admin.delete_task(task_id)

    @app.put("/admin/settings", response_model=Settings, tags=["Admin"])
    def update_settings(request: SettingsRequest, admin: AdminActor = Depends(current_admin)) -> Settings:
        return admin.update_settings(request)

    @app.get("/admin/withdrawals", response_model=list[Withdrawal], tags=["Admin"])
    def admin_withdrawals(withdrawal_status: Optional[WithdrawalStatus] = None,
                          admin: AdminActor = Depends(current_admin)) -> list[Withdrawal]:
        return admin.withdrawals(withdrawal_status)

    @app.post("/admin/withdrawals/{withdrawal_id}/decide", response_model=WithdrawalResponse, tags=["Admin"])
    def decide_withdrawal(withdrawal_id: UUID, request: DecideWithdrawalRequest,
                          admin: AdminActor = Depends(current_admin)) -> WithdrawalResponse:
        return admin.decide_withdrawal(withdrawal_id, request.decision)

    return app


if __name__ == "__main__":
    import uvicorn
    config.configure_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
