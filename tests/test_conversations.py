"""Conversation CRUD tests."""

import uuid

import pytest
from conftest import auth_headers
from httpx import AsyncClient
from sqlmodel import select

from app.models.conversation import Conversation
from app.models.message import Message, MessageRole
from app.models.usage_record import UsageRecord


@pytest.mark.asyncio
async def test_create_and_get_conversation(client: AsyncClient, headers):
    resp = await client.post("/v1/conversations", json={}, headers=headers)
    assert resp.status_code == 201
    conv = resp.json()
    assert conv["title"] == "New conversation"
    assert conv["system_prompt"] is None

    resp = await client.get(f"/v1/conversations/{conv['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["id"] == conv["id"]


@pytest.mark.asyncio
async def test_create_with_title_and_prompt(client: AsyncClient, headers):
    resp = await client.post("/v1/conversations", json={
        "title": "Recipes",
        "system_prompt": "You are a chef.",
    }, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["title"] == "Recipes"
    assert resp.json()["system_prompt"] == "You are a chef."


@pytest.mark.asyncio
async def test_create_validates_lengths(client: AsyncClient, headers):
    resp = await client.post("/v1/conversations", json={"title": "x" * 201}, headers=headers)
    assert resp.status_code == 422
    resp = await client.post("/v1/conversations", json={"system_prompt": "x" * 8001}, headers=headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_is_scoped_and_newest_first(client: AsyncClient, headers):
    first = (await client.post("/v1/conversations", json={"title": "First"}, headers=headers)).json()
    await client.post("/v1/conversations", json={"title": "Second"}, headers=headers)
    await client.post("/v1/conversations", json={"title": "Not mine"}, headers=auth_headers(uuid.uuid4()))

    # Touching the first one moves it to the top
    await client.patch(f"/v1/conversations/{first['id']}", json={"title": "First (edited)"}, headers=headers)

    resp = await client.get("/v1/conversations", headers=headers)
    assert resp.status_code == 200
    assert [c["title"] for c in resp.json()] == ["First (edited)", "Second"]


@pytest.mark.asyncio
async def test_update_conversation(client: AsyncClient, headers):
    conv = (await client.post("/v1/conversations", json={}, headers=headers)).json()

    resp = await client.patch(f"/v1/conversations/{conv['id']}", json={
        "system_prompt": "Be terse.",
    }, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["system_prompt"] == "Be terse."
    assert resp.json()["title"] == "New conversation"


@pytest.mark.asyncio
async def test_other_account_cannot_read_or_modify(client: AsyncClient, headers):
    conv = (await client.post("/v1/conversations", json={}, headers=headers)).json()
    intruder = auth_headers(uuid.uuid4())

    assert (await client.get(f"/v1/conversations/{conv['id']}", headers=intruder)).status_code == 404
    assert (await client.get(f"/v1/conversations/{conv['id']}/messages", headers=intruder)).status_code == 404
    assert (await client.patch(
        f"/v1/conversations/{conv['id']}", json={"title": "pwned"}, headers=intruder,
    )).status_code == 404
    assert (await client.delete(f"/v1/conversations/{conv['id']}", headers=intruder)).status_code == 404


@pytest.mark.asyncio
async def test_delete_keeps_usage_for_quota(client: AsyncClient, headers, session, account_id):
    conv = (await client.post("/v1/conversations", json={}, headers=headers)).json()
    conversation_id = uuid.UUID(conv["id"])
    msg = Message(
        conversation_id=conversation_id, account_id=account_id,
        role=MessageRole.ASSISTANT, content="answer",
    )
    session.add(msg)
    await session.commit()
    session.add(UsageRecord(
        account_id=account_id, conversation_id=conversation_id, message_id=msg.id,
        model="claude-sonnet-4-20250514", input_tokens=5, output_tokens=5,
    ))
    await session.commit()

    resp = await client.delete(f"/v1/conversations/{conv['id']}", headers=headers)
    assert resp.status_code == 204
    assert (await client.get(f"/v1/conversations/{conv['id']}", headers=headers)).status_code == 404

    session.expire_all()
    records = (await session.execute(
        select(UsageRecord).where(UsageRecord.account_id == account_id)
    )).scalars().all()
    assert len(records) == 1
    assert records[0].conversation_id is None
    assert records[0].message_id is None

    remaining = (await session.execute(
        select(Message).where(Message.conversation_id == conversation_id)
    )).scalars().all()
    assert remaining == []


@pytest.mark.asyncio
async def test_timestamps_round_trip_as_naive_utc(session, account_id):
    conversation = Conversation(account_id=account_id)
    session.add(conversation)
    await session.commit()

    session.expire_all()
    stored = await session.get(Conversation, conversation.id)
    assert stored.created_at.tzinfo is None
    assert stored.updated_at >= stored.created_at
