"""MCP connector API endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from agent_runner.core.auth import get_user_id, verify_api_key
from agent_runner.core.errors import ValidationError
from agent_runner.services import ConnectorService

router = APIRouter(dependencies=[Depends(verify_api_key)])


class ConnectorCreate(BaseModel):
    name: str
    type: str = "remote"
    description: str | None = None
    base_url: str | None = None
    command: str | None = None
    env: dict[str, str] | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None


class ConnectorResponse(BaseModel):
    """Connector without its secrets."""

    model_config = {"from_attributes": True}

    id: str
    name: str
    type: str
    description: str | None
    base_url: str | None
    command: str | None
    oauth_client_id: str | None
    status: str
    created_at: datetime


@router.post(
    "/connectors", response_model=ConnectorResponse, status_code=status.HTTP_201_CREATED
)
def create_connector(body: ConnectorCreate, user_id: str = Depends(get_user_id)):
    try:
        connector = ConnectorService.create_connector(user_id, **body.model_dump())
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)
        ) from e
    except ValueError as e:
        # No ENCRYPTION_KEY configured
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e
    return ConnectorResponse.model_validate(connector)


@router.get("/connectors", response_model=list[ConnectorResponse])
def list_connectors(user_id: str = Depends(get_user_id)):
    return [
        ConnectorResponse.model_validate(c)
        for c in ConnectorService.list_connectors(user_id)
    ]
