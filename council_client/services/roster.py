from __future__ import annotations

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from council_client import api_client
from council_client.api_client import ClientFactory
from council_client.models.schemas import RosterResponse
from council_client.models.session import CouncilMember


class CouncilRoster:
    """Council member reference data, fetched once per roster lifetime.

    A failed fetch yields an empty roster and is retried on the next call.
    """

    def __init__(self, client_factory: ClientFactory | None = None):
        self._client_factory = client_factory or api_client.get_client
        self._members: dict[str, CouncilMember] | None = None

    async def members(self) -> dict[str, CouncilMember]:
        if self._members is not None:
            return self._members

        try:
            async with self._client_factory() as client:
                response = await client.get(api_client.COUNCIL_PATH)
                response.raise_for_status()
                payload = RosterResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError, PydanticValidationError) as e:
            logger.warning(f"Failed to fetch council roster: {e}")
            return {}

        if not payload.success:
            logger.warning(f"Council roster request rejected: {payload.error or 'unknown error'}")
            return {}

        self._members = {
            member_id: CouncilMember(
                id=member_id,
                name=entry.name,
                strength=entry.strength,
                model=entry.id,
                color=entry.color,
            )
            for member_id, entry in payload.council.items()
        }
        logger.info(f"Council roster loaded: {list(self._members)}")
        return self._members

    @property
    def cached(self) -> dict[str, CouncilMember]:
        return dict(self._members or {})
