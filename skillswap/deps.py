from typing import Callable

from dependency_injector.wiring import inject, Provide
from fastapi import Depends
from sqlalchemy.orm import Session

from skillswap.containers import Container
from skillswap.database.session import get_db
from skillswap.services.credit_service import CreditService
from skillswap.services.session_service import SessionService


@inject
def get_session_service(
    db: Session = Depends(get_db),
    factory: Callable[..., SessionService] = Depends(
        Provide[Container.services.session_service.provider]
    ),
) -> SessionService:
    return factory(db=db)


@inject
def get_credit_service(
    db: Session = Depends(get_db),
    factory: Callable[..., CreditService] = Depends(
        Provide[Container.services.credit_service.provider]
    ),
) -> CreditService:
    return factory(db=db)
