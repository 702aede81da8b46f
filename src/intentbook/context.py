from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace


class _ContextAdapter(logging.LoggerAdapter):
    def __init__(self, logger: logging.Logger, fields: Mapping[str, object]) -> None:
        super().__init__(logger, extra={})
        self._fields = dict(fields)

    def process(self, msg: str, kwargs: dict[str, object]) -> tuple[str, dict[str, object]]:
        extra = kwargs.setdefault("extra", {})
        if not isinstance(extra, dict):
            extra = {}
            kwargs["extra"] = extra
        base_extra = extra.get("extra")
        if not isinstance(base_extra, dict):
            base_extra = {}
            extra["extra"] = base_extra
        for key, value in self._fields.items():
            base_extra.setdefault(key, value)
        for key in ("request_id", "component"):
            if key in self._fields:
                extra.setdefault(key, self._fields[key])
        return msg, kwargs


@dataclass(frozen=True)
class OperationContext:
    """Per-invocation context passed explicitly through every operation.

    Each external trigger (lifecycle poll, controller run, query) builds its own
    context; nothing here is shared between invocations.
    """

    request_id: str
    component: str
    fields: Mapping[str, object] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        component: str,
        *,
        request_id: str | None = None,
        **fields: object,
    ) -> OperationContext:
        return cls(
            request_id=request_id or str(uuid.uuid4()),
            component=component,
            fields={key: value for key, value in fields.items() if value is not None},
        )

    def bind(self, **fields: object) -> OperationContext:
        merged = dict(self.fields)
        merged.update({key: value for key, value in fields.items() if value is not None})
        return replace(self, fields=merged)

    @property
    def logger(self) -> logging.LoggerAdapter:
        payload: dict[str, object] = {"request_id": self.request_id, "component": self.component}
        payload.update(self.fields)
        return _ContextAdapter(logging.getLogger(f"intentbook.{self.component}"), payload)
