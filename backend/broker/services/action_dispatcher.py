"""Calls the downstream handler for each provisioning action."""

import logging
from typing import Any

import httpx

from broker.config import Settings
from broker.models import JobAction, ProvisioningJob

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Raised when a downstream handler call fails for this attempt."""

    pass


# Action -> (settings attribute holding the handler URL, handler name for errors)
HANDLERS: dict[str, tuple[str, str]] = {
    JobAction.PROVISION_VPS.value: ("provision_vps_url", "provision-vps"),
    JobAction.DEPLOY_AGENTS.value: ("deploy_agents_url", "deploy-agents"),
    JobAction.ACTIVATE_WORKFLOWS.value: ("activate_workflows_url", "activate-workflows"),
}


def build_request_body(job: ProvisioningJob) -> dict[str, Any]:
    """JSON body sent to the handler for a job's action."""
    payload = dict(job.payload or {})
    if job.action == JobAction.PROVISION_VPS.value:
        return {
            "user_id": job.user_id,
            "activation_id": job.activation_id,
            **payload,
        }
    if job.action == JobAction.DEPLOY_AGENTS.value:
        return {"action": "deploy", **payload}
    return payload


class ActionDispatcher:
    """One bounded POST per job, authenticated with the service role key."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport

    async def dispatch(self, job: ProvisioningJob) -> None:
        """Run a job's action.

        Raises:
            DispatchError: Unknown action, missing configuration, network
                failure, a malformed handler URL or a non-2xx answer from
                the handler.
        """
        handler = HANDLERS.get(job.action)
        if handler is None:
            raise DispatchError(f"Unknown action: {job.action}")
        url_setting, name = handler

        url = getattr(self.settings, url_setting)
        if not url:
            raise DispatchError(f"{url_setting.upper()} not configured")
        if not self.settings.service_role_key:
            raise DispatchError("SERVICE_ROLE_KEY not configured")

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.outbound_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    url,
                    json=build_request_body(job),
                    headers={"Authorization": f"Bearer {self.settings.service_role_key}"},
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DispatchError(f"{name} request failed: {type(e).__name__}") from e

        if not response.is_success:
            raise DispatchError(f"{name} returned {response.status_code}: {response.text[:200]}")
        logger.debug(f"{name} accepted job {job.id}")
