"""Shared router dependencies."""

from typing import Annotated

from fastapi import Depends, Header, Request

from app.services.container import AppServices


def get_services(request: Request) -> AppServices:
    """Services built in the application lifespan."""
    return request.app.state.services


def get_actor_id(x_actor_id: Annotated[str, Header(min_length=1, max_length=36)]) -> str:
    """Acting user id, supplied by the authenticating proxy."""
    return x_actor_id


Services = Annotated[AppServices, Depends(get_services)]
ActorId = Annotated[str, Depends(get_actor_id)]
