"""
Collaborator dependencies.

The application lifespan attaches settings, clients and the call store
to app.state; routes reach them through these functions so tests can
swap them with dependency_overrides.
"""
from fastapi import Request

from relayapi.config import Settings
from relayapi.services.call_gateway import CallGateway
from relayapi.services.dispatch_client import DispatchClient
from relayapi.services.ivr import IVRStateMachine


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatch_client(request: Request) -> DispatchClient:
    return request.app.state.dispatch_client


def get_call_gateway(request: Request) -> CallGateway:
    return request.app.state.call_gateway


def get_ivr(request: Request) -> IVRStateMachine:
    return IVRStateMachine(request.app.state.call_store, request.app.state.settings.BASE_URL)
