"""MCP connector configuration owned by a user."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel

from agent_runner.models.task import generate_id, utcnow


class Connector(SQLModel, table=True):
    """An MCP server the agent can use.

    ``local`` connectors run a stdio command inside the sandbox; ``remote``
    connectors are reached over HTTP at ``base_url``. Secrets are stored
    encrypted with the service's Fernet key.
    """

    __tablename__ = "connectors"

    id: str = Field(default_factory=generate_id, primary_key=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True)),
    )

    user_id: str = Field(index=True)
    name: str
    description: str | None = None
    type: str = Field(
        default="remote",
        sa_column=Column(String, nullable=False),
        description="local or remote",
    )
    base_url: str | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    command: str | None = None
    env: str | None = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Encrypted JSON object of environment variables",
    )
    status: str = Field(default="connected", description="connected or disconnected")
