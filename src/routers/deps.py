"""Shared dependencies for routers."""

from typing import Annotated

from fastapi import Depends

from src.clients.record_store import get_record_store
from src.clients.sms import get_sms_service
from src.core.auth import AuthenticatedUser, get_current_user
from src.services.account_request_service import AccountRequestService
from src.services.dashboard_service import DashboardService
from src.services.export_service import ExportService
from src.services.record_store_service import RecordStoreService
from src.services.sms_service import SmsService
from src.services.user_service import UserService

# Typed dependency aliases for use in endpoint signatures
RecordStoreDep = Annotated[RecordStoreService, Depends(get_record_store)]
SmsServiceDep = Annotated[SmsService, Depends(get_sms_service)]
CurrentUserDep = Annotated[AuthenticatedUser, Depends(get_current_user)]


def get_user_service(store: RecordStoreDep, sms: SmsServiceDep) -> UserService:
    return UserService(store, sms)


def get_account_request_service(
    store: RecordStoreDep, sms: SmsServiceDep
) -> AccountRequestService:
    return AccountRequestService(store, notifier=sms)


def get_dashboard_service(store: RecordStoreDep) -> DashboardService:
    return DashboardService(store)


def get_export_service(store: RecordStoreDep) -> ExportService:
    return ExportService(store)


UserServiceDep = Annotated[UserService, Depends(get_user_service)]
AccountRequestServiceDep = Annotated[
    AccountRequestService, Depends(get_account_request_service)
]
DashboardServiceDep = Annotated[DashboardService, Depends(get_dashboard_service)]
ExportServiceDep = Annotated[ExportService, Depends(get_export_service)]
