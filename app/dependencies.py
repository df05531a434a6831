from typing import Annotated

from fastapi import Depends, Request

from app.sessions import PricingSessionStore


def get_session_store(request: Request) -> PricingSessionStore:
    return request.app.state.session_store


SessionStoreDep = Annotated[PricingSessionStore, Depends(get_session_store)]
