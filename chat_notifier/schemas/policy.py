from pydantic import BaseModel, ConfigDict, Field


class _PolicySection(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ImmediatePolicy(_PolicySection):
    enabled: bool = False
    only_first_message_in_thread: bool = Field(default=False, alias="onlyFirstMessageInThread")


class DelayedPolicy(_PolicySection):
    enabled: bool = False
    delay_minutes: int = Field(default=30, ge=1, alias="delayMinutes")


class ThrottlePolicy(_PolicySection):
    max_per_window: int = Field(default=3, ge=1, alias="maxPerWindow")
    window_minutes: int = Field(default=60, ge=1, alias="windowMinutes")


class NotificationPolicy(_PolicySection):
    """Operator-controlled chat notification behaviour.

    Serialized with camelCase names (``model_dump(by_alias=True)``) so the
    stored JSON matches what the admin tooling writes.
    """

    enabled: bool = False
    immediate: ImmediatePolicy = Field(default_factory=ImmediatePolicy)
    delayed: DelayedPolicy = Field(default_factory=DelayedPolicy)
    throttle: ThrottlePolicy = Field(default_factory=ThrottlePolicy)


DISABLED_POLICY = NotificationPolicy()
