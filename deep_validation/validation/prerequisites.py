"""Prerequisite checks run before a validation session.

Each factory returns a ``PrerequisiteCheck`` whose callable resolves to an
``(ok, message)`` pair. Vendor error responses are reported as a failed
prerequisite; transport failures propagate.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from deep_validation.clients.base import VendorClient
from deep_validation.core.exceptions import VendorApiError


CheckFn = Callable[[], Awaitable[Tuple[bool, str]]]


@dataclass(frozen=True)
class PrerequisiteCheck:
    name: str
    check: CheckFn
    required: bool = True


def _service_check(
    client: VendorClient,
    name: str,
    product: str,
    sid: Optional[str],
    env_var: str,
    label: str,
) -> PrerequisiteCheck:
    async def run() -> Tuple[bool, str]:
        if not sid:
            return False, f"{env_var} not set"
        try:
            await client.fetch_service(product, sid)
        except VendorApiError as e:
            return False, f"{label} {sid} not found or inaccessible: {e.message}"
        return True, f"{label} {sid} exists"

    return PrerequisiteCheck(name=name, check=run)


def intelligence_service(client: VendorClient, service_sid: Optional[str]) -> PrerequisiteCheck:
    return _service_check(
        client, "Conversational Intelligence Service", "intelligence",
        service_sid, "TWILIO_INTELLIGENCE_SERVICE_SID", "Service",
    )


def sync_service(client: VendorClient, service_sid: Optional[str]) -> PrerequisiteCheck:
    return _service_check(
        client, "Twilio Sync Service", "sync",
        service_sid, "TWILIO_SYNC_SERVICE_SID", "Sync service",
    )


def verify_service(client: VendorClient, service_sid: Optional[str]) -> PrerequisiteCheck:
    return _service_check(
        client, "Twilio Verify Service", "verify",
        service_sid, "TWILIO_VERIFY_SERVICE_SID", "Verify service",
    )


def serverless_service(client: VendorClient, service_sid: Optional[str]) -> PrerequisiteCheck:
    return _service_check(
        client, "Twilio Serverless Service", "serverless",
        service_sid, "TWILIO_SERVERLESS_SERVICE_SID", "Serverless service",
    )


def messaging_service(client: VendorClient, service_sid: Optional[str]) -> PrerequisiteCheck:
    return _service_check(
        client, "Messaging Service", "messaging",
        service_sid, "TWILIO_MESSAGING_SERVICE_SID", "Messaging service",
    )


def taskrouter_workspace(client: VendorClient, workspace_sid: Optional[str]) -> PrerequisiteCheck:
    return _service_check(
        client, "TaskRouter Workspace", "taskrouter",
        workspace_sid, "TWILIO_TASKROUTER_WORKSPACE_SID", "Workspace",
    )


def phone_number(client: VendorClient, number: Optional[str]) -> PrerequisiteCheck:
    async def run() -> Tuple[bool, str]:
        if not number:
            return False, "TWILIO_PHONE_NUMBER not set"
        try:
            numbers = await client.list_incoming_phone_numbers(number)
        except VendorApiError as e:
            return False, f"Error checking phone number: {e.message}"
        if not numbers:
            return False, f"Phone number {number} not found in account"
        return True, f"Phone number {number} owned"

    return PrerequisiteCheck(name="Phone Number Ownership", check=run)


def env_var(name: str, value: Optional[str], required: bool = True) -> PrerequisiteCheck:
    async def run() -> Tuple[bool, str]:
        if not value:
            return False, f"{name} not set"
        return True, f"{name} is set"

    return PrerequisiteCheck(name=f"Environment Variable: {name}", check=run, required=required)
