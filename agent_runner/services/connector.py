"""MCP connector storage."""

import logging
from dataclasses import dataclass, field

from sqlmodel import select

from agent_runner.core.database import get_session
from agent_runner.core.encryption import decrypt_data, decrypt_json, encrypt_data, encrypt_json
from agent_runner.core.errors import ValidationError
from agent_runner.models import Connector

logger = logging.getLogger(__name__)

CONNECTOR_TYPES = ("local", "remote")


@dataclass
class McpServerConfig:
    """Decrypted connector settings handed to the agent."""

    name: str
    type: str
    base_url: str | None = None
    command: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None


class ConnectorService:
    """Service for MCP connector records."""

    @staticmethod
    def create_connector(
        user_id: str,
        name: str,
        type: str = "remote",
        description: str | None = None,
        base_url: str | None = None,
        command: str | None = None,
        env: dict[str, str] | None = None,
        oauth_client_id: str | None = None,
        oauth_client_secret: str | None = None,
    ) -> Connector:
        """Store a connector, encrypting its secrets.

        Raises:
            ValidationError: If the connector is incomplete for its type
        """
        if not name or not name.strip():
            raise ValidationError("Connector name is required")
        if type not in CONNECTOR_TYPES:
            raise ValidationError(f"Connector type must be one of {CONNECTOR_TYPES}")
        if type == "local" and not command:
            raise ValidationError("Local connectors require a command")
        if type == "remote" and not base_url:
            raise ValidationError("Remote connectors require a base URL")

        with get_session() as session:
            connector = Connector(
                user_id=user_id,
                name=name.strip(),
                type=type,
                description=description,
                base_url=base_url,
                command=command,
                env=encrypt_json(env) if env else None,
                oauth_client_id=oauth_client_id,
                oauth_client_secret=(
                    encrypt_data(oauth_client_secret) if oauth_client_secret else None
                ),
            )
            session.add(connector)
            session.commit()
            session.refresh(connector)
            return connector

    @staticmethod
    def list_connectors(user_id: str) -> list[Connector]:
        with get_session() as session:
            statement = (
                select(Connector)
                .where(Connector.user_id == user_id)
                .order_by(Connector.created_at.asc())
            )
            return list(session.execute(statement).scalars().all())

    @staticmethod
    def get_connected_configs(user_id: str) -> list[McpServerConfig]:
        """Decrypted configs of the user's connected connectors.

        Connectors whose secrets cannot be decrypted are skipped.
        """
        configs = []
        for connector in ConnectorService.list_connectors(user_id):
            if connector.status != "connected":
                continue
            try:
                configs.append(
                    McpServerConfig(
                        name=connector.name,
                        type=connector.type,
                        base_url=connector.base_url,
                        command=connector.command,
                        env=decrypt_json(connector.env) if connector.env else {},
                        oauth_client_id=connector.oauth_client_id,
                        oauth_client_secret=(
                            decrypt_data(connector.oauth_client_secret)
                            if connector.oauth_client_secret
                            else None
                        ),
                    )
                )
            except Exception as e:
                logger.warning(f"Skipping connector {connector.id}: {e}")
        return configs
