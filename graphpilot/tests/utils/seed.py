from __future__ import annotations

from datetime import date, datetime, timezone
import json
from typing import Any
from uuid import uuid4

from graphpilot.domain.models import AiOrgPolicy, AiUsageMonthly, Canvas, OrgMember, Profile
from graphpilot.persistence.db import SessionLocal


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex}"


async def create_profile(
    user_id: str,
    plan: str | None = "pro",
    *,
    is_developer: bool = False,
    is_admin: bool = False,
) -> None:
    async with SessionLocal() as session:
        session.add(Profile(id=user_id, plan=plan, is_developer=is_developer, is_admin=is_admin))
        await session.commit()


async def create_membership(
    org_id: str,
    user_id: str,
    *,
    joined_at: datetime | None = None,
    role: str = "member",
) -> None:
    async with SessionLocal() as session:
        session.add(
            OrgMember(
                org_id=org_id,
                user_id=user_id,
                role=role,
                joined_at=joined_at or datetime.now(timezone.utc),
            )
        )
        await session.commit()


async def create_org_policy(org_id: str, **values: Any) -> None:
    async with SessionLocal() as session:
        session.add(AiOrgPolicy(org_id=org_id, **values))
        await session.commit()


async def create_usage(
    owner_id: str,
    period_start: date,
    *,
    tokens_in: int = 0,
    tokens_out: int = 0,
    requests: int = 0,
) -> None:
    async with SessionLocal() as session:
        session.add(
            AiUsageMonthly(
                owner_id=owner_id,
                period_start=period_start,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                requests=requests,
            )
        )
        await session.commit()


async def create_canvas(
    canvas_id: str,
    *,
    owner_id: str,
    project_id: str,
    nodes: list[dict[str, Any]] | None = None,
    edges: list[dict[str, Any]] | None = None,
    raw_document: str | None = None,
) -> None:
    document = raw_document if raw_document is not None else json.dumps(
        {"nodes": nodes or [], "edges": edges or []}
    )
    async with SessionLocal() as session:
        session.add(Canvas(id=canvas_id, project_id=project_id, owner_id=owner_id, document=document))
        await session.commit()


def number_node(node_id: str, value: float | None = None, label: str | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {"blockType": "number"}
    if label is not None:
        data["label"] = label
    if value is not None:
        data["value"] = value
    return {"id": node_id, "type": "csSource", "position": {"x": 0, "y": 0}, "data": data}


def edge(edge_id: str, source: str, target: str, target_handle: str = "a") -> dict[str, Any]:
    return {
        "id": edge_id,
        "source": source,
        "sourceHandle": "out",
        "target": target,
        "targetHandle": target_handle,
    }
