from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = Field(..., description="Process is alive.")


class ReadinessResponse(BaseModel):
    ready: bool = Field(..., description="True when the mirror is connected to the Hue Bridge.")
    reason: str | None = Field(
        default=None,
        description="When not ready, a short machine-readable reason (e.g. missing_bridge_host).",
    )
    details: Any | None = Field(
        default=None,
        description="Optional extra details for debugging; do not rely on this shape.",
    )


class _BaseActionRequest(BaseModel):
    requestId: str | None = Field(
        default=None,
        description="Optional client-provided id used for correlating logs and responses.",
        examples=["req-123"],
    )


class BridgeDiscoverArgs(BaseModel):
    timeoutMs: int = Field(default=5000, gt=0, description="Search timeout in milliseconds.")


class BridgeDiscoverRequest(_BaseActionRequest):
    action: Literal["bridge.discover"] = Field("bridge.discover", description="Search the LAN for Hue Bridges.")
    args: BridgeDiscoverArgs = Field(default_factory=BridgeDiscoverArgs)


class BridgeCreateUserArgs(BaseModel):
    address: str = Field(..., description="Hue Bridge IP/hostname (no scheme/path).", examples=["192.168.1.29"])
    port: int | None = Field(default=None, description="Bridge port; defaults to HUE_BRIDGE_PORT.")
    devicetype: str | None = Field(
        default="hue-mirror#docker",
        description="Bridge registration device type (free-form string).",
    )


class BridgeCreateUserRequest(_BaseActionRequest):
    action: Literal["bridge.create_user"] = Field(
        "bridge.create_user", description="Create and store a bridge user (press the link button first)."
    )
    args: BridgeCreateUserArgs


class StateGetArgs(BaseModel):
    id: str = Field(..., description="Mirrored state id.", examples=["Lamp.bri"])


class StateGetRequest(_BaseActionRequest):
    action: Literal["state.get"] = Field("state.get", description="Read one mirrored state.")
    args: StateGetArgs


class StateSetArgs(BaseModel):
    id: str = Field(..., description="Mirrored state id.", examples=["Lamp.on"])
    val: Any = Field(..., description="New value; sent to the bridge and confirmed by the next read.")


class StateSetRequest(_BaseActionRequest):
    action: Literal["state.set"] = Field("state.set", description="Write one mirrored state.")
    args: StateSetArgs


ActionRequest = Annotated[
    Union[
        BridgeDiscoverRequest,
        BridgeCreateUserRequest,
        StateGetRequest,
        StateSetRequest,
    ],
    Field(discriminator="action"),
]


class ActionError(BaseModel):
    code: str = Field(..., description="Machine-readable error code.")
    message: str = Field(..., description="Human-readable error message.")
    details: dict[str, Any] = Field(default_factory=dict)


class ActionSuccessResponse(BaseModel):
    requestId: str | None = Field(default=None, description="Echoed from the request (if provided).")
    action: str
    ok: Literal[True] = True
    result: dict[str, Any]


class ActionFailureResponse(BaseModel):
    requestId: str | None = Field(default=None, description="Echoed from the request (if provided).")
    action: str = Field(..., description="Echoed action name.")
    ok: Literal[False] = False
    error: ActionError


ActionResponse = ActionSuccessResponse | ActionFailureResponse


class StateItem(BaseModel):
    id: str
    val: Any = None
    ack: bool
    ts: float


class StatesResponse(BaseModel):
    items: list[StateItem]


class UnauthorizedResponse(BaseModel):
    detail: dict[str, Any] = Field(..., examples=[{"error": "unauthorized"}])
