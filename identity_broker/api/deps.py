"""Dependencies resolving the services constructed by ``create_app``."""
from fastapi import Request

from identity_broker.config import Settings
from identity_broker.flow import AuthorizationFlow
from identity_broker.store import CustomerStore
from identity_broker.validators import AccountingCredentialValidator, WorkspaceTokenValidator


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> CustomerStore:
    return request.app.state.store


def get_flow(request: Request) -> AuthorizationFlow:
    return request.app.state.flow


def get_workspace_validator(request: Request) -> WorkspaceTokenValidator:
    return request.app.state.workspace_validator


def get_accounting_validator(request: Request) -> AccountingCredentialValidator:
    return request.app.state.accounting_validator
