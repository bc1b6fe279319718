"""Prefect REST API client.

The scheduler is optional: with no base URL configured, services record
runs locally and never call this client.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from app.core.config import settings
from app.core.exceptions import PrefectError
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

RETRYABLE_STATUS_CODES = {502, 503, 504}


class DeploymentInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str


class DeploymentDetails(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    version: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    parameter_schema: Optional[Dict[str, Any]] = Field(default=None, alias="parameter_openapi_schema")
    flow_id: Optional[str] = None
    entrypoint: Optional[str] = None
    work_pool_name: Optional[str] = None


class FlowRunState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    name: str = ""
    message: Optional[str] = None


class FlowRun(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    state: Optional[FlowRunState] = None
    state_type: Optional[str] = None


def _decode(response: httpx.Response, what: str) -> Any:
    """JSON body of a 2xx response; undecodable bodies become PrefectError."""
    try:
        return response.json()
    except ValueError as e:
        raise PrefectError(
            f"{what}: invalid response body: {response.text[:200]}",
            status_code=response.status_code,
            original_error=e,
        ) from e


def _validate(model: Any, data: Any, what: str) -> Any:
    try:
        return TypeAdapter(model).validate_python(data)
    except ValidationError as e:
        raise PrefectError(f"{what}: unexpected response shape: {e}", original_error=e) from e


DeploymentList = List[DeploymentInfo]
DeploymentDetailsList = List[DeploymentDetails]


class PrefectClient:
    """Async client for the subset of the Prefect API this service uses."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: int = 3,
        retry_delay: float = 2.0,
    ):
        """Initialize the client.

        Args:
            base_url: Prefect server URL; defaults to settings
            timeout: Per-request timeout in seconds
            max_retries: Retries for create_flow_run on transient failures
            retry_delay: Base delay for exponential backoff (2s, 4s, 8s)
        """
        self.base_url = (base_url if base_url is not None else settings.prefect.base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.prefect.timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def _send(
        self, method: str, path: str, json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        async with httpx.AsyncClient() as client:
            return await client.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )

    async def get_deployment_by_name(self, flow_name: str, deployment_name: str) -> DeploymentInfo:
        """Resolve a deployment by its name.

        Raises:
            PrefectError: If the query fails or no deployment matches
        """
        body = {
            "deployments": {"name": {"any_": [deployment_name]}},
            "limit": 10,
        }
        try:
            response = await self._send("POST", "/api/deployments/filter", json=body)
        except httpx.HTTPError as e:
            raise PrefectError(f"failed to query deployment: {e}", original_error=e) from e

        if response.status_code != 200:
            raise PrefectError(
                f"deployment query failed: status {response.status_code}, body: {response.text}",
                status_code=response.status_code,
            )

        deployments = _validate(DeploymentList, _decode(response, "deployment query") or [], "deployment query")
        if not deployments:
            raise PrefectError(f"deployment not found: {deployment_name}", status_code=404)

        LOGGER.debug(f"Resolved deployment {deployment_name} for flow {flow_name}: {deployments[0].id}")
        return deployments[0]

    async def create_flow_run(self, deployment_id: str, params: Optional[Dict[str, Any]] = None) -> FlowRun:
        """Create a flow run, retrying network errors and 502/503/504.

        Raises:
            PrefectError: On a non-retryable status or after all retries
        """
        body: Dict[str, Any] = {}
        if params is not None:
            body["parameters"] = params

        path = f"/api/deployments/{deployment_id}/create_flow_run"
        last_error: Optional[PrefectError] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                LOGGER.warning(
                    f"Retrying create_flow_run (attempt {attempt}/{self.max_retries})",
                    extra={"deployment_id": deployment_id},
                )
                await self._wait_before_retry(attempt - 1)

            try:
                response = await self._send("POST", path, json=body)
            except httpx.HTTPError as e:
                last_error = PrefectError(f"failed to create flow run: {e}", original_error=e)
                continue

            if response.status_code in (200, 201):
                return _validate(FlowRun, _decode(response, "create flow run"), "create flow run")

            message = f"create flow run failed: status {response.status_code}, body: {response.text}"
            if response.status_code in RETRYABLE_STATUS_CODES:
                last_error = PrefectError(message, status_code=response.status_code)
                continue

            raise PrefectError(message, status_code=response.status_code)

        raise PrefectError(
            f"after {self.max_retries} retries: {last_error}",
            status_code=last_error.status_code if last_error else None,
            original_error=last_error,
        )

    async def _wait_before_retry(self, attempt: int) -> None:
        """Wait with exponential backoff."""
        wait_time = self.retry_delay * (2 ** attempt)
        LOGGER.debug("Waiting before retry", extra={"wait_seconds": wait_time})
        await asyncio.sleep(wait_time)

    async def get_flow_run(self, flow_run_id: str) -> FlowRun:
        try:
            response = await self._send("GET", f"/api/flow_runs/{flow_run_id}")
        except httpx.HTTPError as e:
            raise PrefectError(f"failed to get flow run: {e}", original_error=e) from e
        if response.status_code != 200:
            raise PrefectError(
                f"get flow run failed: status {response.status_code}, body: {response.text}",
                status_code=response.status_code,
            )
        return _validate(FlowRun, _decode(response, "get flow run"), "get flow run")

    async def health_check(self) -> None:
        """Raise PrefectError unless the server reports healthy."""
        try:
            response = await self._send("GET", "/api/health")
        except httpx.HTTPError as e:
            raise PrefectError(f"prefect server unreachable: {e}", original_error=e) from e
        if response.status_code != 200:
            raise PrefectError(
                f"prefect server health check failed: status {response.status_code}",
                status_code=response.status_code,
            )

    async def list_deployments(self, tag_filters: Optional[List[str]] = None) -> List[DeploymentDetails]:
        body: Dict[str, Any] = {"limit": 100, "offset": 0}
        if tag_filters:
            body["deployments"] = {"tags": {"any_": tag_filters}}

        try:
            response = await self._send("POST", "/api/deployments/filter", json=body)
        except httpx.HTTPError as e:
            raise PrefectError(f"failed to list deployments: {e}", original_error=e) from e

        if response.status_code != 200:
            raise PrefectError(
                f"list deployments failed: status {response.status_code}, body: {response.text}",
                status_code=response.status_code,
            )
        return _validate(DeploymentDetailsList, _decode(response, "list deployments") or [], "list deployments")

    async def get_deployment(self, deployment_id: str) -> DeploymentDetails:
        try:
            response = await self._send("GET", f"/api/deployments/{deployment_id}")
        except httpx.HTTPError as e:
            raise PrefectError(f"failed to get deployment: {e}", original_error=e) from e
        if response.status_code != 200:
            raise PrefectError(
                f"get deployment failed: status {response.status_code}, body: {response.text}",
                status_code=response.status_code,
            )
        return _validate(DeploymentDetails, _decode(response, "get deployment"), "get deployment")

    async def cancel_flow_run(self, flow_run_id: str) -> None:
        """Ask Prefect to cancel a flow run; 404/409 mean it is already terminal."""
        body = {"state": {"type": "CANCELLING"}}
        try:
            response = await self._send("POST", f"/api/flow_runs/{flow_run_id}/set_state", json=body)
        except httpx.HTTPError as e:
            raise PrefectError(f"failed to cancel flow run: {e}", original_error=e) from e

        if response.status_code in (200, 201):
            return
        if response.status_code in (404, 409):
            LOGGER.info(
                f"Cancel flow run {flow_run_id}: status {response.status_code} (treated as already terminal)"
            )
            return
        raise PrefectError(
            f"cancel flow run failed: status {response.status_code}, body: {response.text}",
            status_code=response.status_code,
        )


# Global Prefect client instance
prefect_client = PrefectClient()


def get_prefect_client() -> PrefectClient:
    """FastAPI dependency returning the shared Prefect client."""
    return prefect_client
