"""Execution context the node runs against.

A workflow host hands the node its input items, parameter values and
credentials through :class:`ExecuteContext`. :class:`LocalExecuteContext`
provides the same surface for the CLI and for tests.
"""

from __future__ import annotations

import re
from typing import Any, Protocol

from .description import CREDENTIAL_NAME, NODE_DESCRIPTION
from .types import NodeOperationError

_CREDENTIAL_EXPRESSION = re.compile(r"^=\{\{\s*\$credentials\.(\w+)\s*\}\}$")


class ExecuteContext(Protocol):
    def get_input_data(self) -> list[dict[str, Any]]: ...

    def get_node_parameter(self, name: str, index: int) -> Any: ...

    async def get_credentials(self, name: str) -> dict[str, Any]: ...

    def continue_on_fail(self) -> bool: ...


class LocalExecuteContext:
    """In-process :class:`ExecuteContext`.

    Args:
        parameters: Parameter values shared by every item
        credentials: Credential fields (``mintUrl``, ``seed``, ``wsUrl``)
        items: Input items; one empty item when omitted
        item_parameters: Per-item overrides, indexed like ``items``
        continue_on_fail: Whether failed items become error records
        description: Node description supplying parameter defaults
    """

    def __init__(
        self,
        parameters: dict[str, Any] | None = None,
        credentials: dict[str, Any] | None = None,
        *,
        items: list[dict[str, Any]] | None = None,
        item_parameters: list[dict[str, Any]] | None = None,
        continue_on_fail: bool = False,
        description: dict[str, Any] = NODE_DESCRIPTION,
    ) -> None:
        self.parameters = dict(parameters or {})
        self.credentials = dict(credentials or {})
        self.items = items if items is not None else [{"json": {}}]
        self.item_parameters = item_parameters or []
        self._continue_on_fail = continue_on_fail
        self.description = description

    def get_input_data(self) -> list[dict[str, Any]]:
        return self.items

    async def get_credentials(self, name: str) -> dict[str, Any]:
        if name != CREDENTIAL_NAME:
            raise NodeOperationError(f"Node does not have credentials of type '{name}'")
        return self.credentials

    def continue_on_fail(self) -> bool:
        return self._continue_on_fail

    def get_node_parameter(self, name: str, index: int) -> Any:
        value = self._raw_parameter(name, index)
        return self._resolve(value)

    def _raw_parameter(self, name: str, index: int) -> Any:
        if index < len(self.item_parameters) and name in self.item_parameters[index]:
            return self.item_parameters[index][name]
        if name in self.parameters:
            return self.parameters[name]

        for prop in self.description.get("properties", []):
            if prop["name"] == name and self._is_shown(prop, index):
                return prop.get("default")
        raise NodeOperationError(f"Could not get parameter '{name}'", item_index=index)

    def _is_shown(self, prop: dict[str, Any], index: int) -> bool:
        show = prop.get("displayOptions", {}).get("show", {})
        for field, allowed in show.items():
            if self.get_node_parameter(field, index) not in allowed:
                return False
        return True

    def _resolve(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        match = _CREDENTIAL_EXPRESSION.match(value)
        if match is None:
            return value
        return self.credentials.get(match.group(1))
