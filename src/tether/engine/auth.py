"""Helpers for the auth methods an agent advertises on connect or in an authRequired error."""

from __future__ import annotations

from typing import Any

from acp.schema import AuthMethod

Method = AuthMethod | dict[str, Any]


def _field(method: Any, *keys: str) -> Any:
    for key in keys:
        value = method.get(key) if isinstance(method, dict) else getattr(method, key, None)
        if value not in (None, ""):
            return value
    return None


def _meta(method: Any) -> dict[str, Any]:
    raw = method.get("_meta") if isinstance(method, dict) else getattr(method, "field_meta", None)
    return raw if isinstance(raw, dict) else {}


def method_id(method: Any) -> str:
    return str(_field(method, "id") or "").strip()


def method_name(method: Any) -> str:
    return str(_field(method, "name") or method_id(method)).strip()


def method_description(method: Any) -> str:
    return str(_field(method, "description") or "").strip()


def method_env_var(method: Any) -> str | None:
    value = _field(method, "varName", "var_name") or _meta(method).get("varName")
    return str(value).strip() or None if value else None


def method_link(method: Any) -> str | None:
    value = _field(method, "link") or _meta(method).get("link")
    return str(value).strip() or None if value else None


def extract_auth_methods(source: Any) -> list[Method]:
    """Auth methods from an initialize result or error payload, dropping entries without an id."""
    raw = _field(source, "authMethods", "auth_methods")
    if not isinstance(raw, list):
        return []
    return [method for method in raw if method_id(method)]


def find_auth_method(methods: list[Method], wanted: str) -> Method | None:
    target = wanted.strip().lower()
    for method in methods:
        if method_id(method).lower() == target:
            return method
    return None


def describe_auth_method(method: Any) -> str:
    label = f"{method_name(method)} ({method_id(method)})"
    description = method_description(method)
    if description:
        label = f"{label} - {description}"
    env_var = method_env_var(method)
    if env_var:
        label = f"{label} [env {env_var}]"
    return label
