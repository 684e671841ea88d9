"""Tests for action cost resolution and per-organization overrides."""

import pytest
from sqlalchemy import func, select

from tests.conftest import seed_cost
from tokenledger.core.errors import UnknownActionError, ValidationError
from tokenledger.models.action_cost import ActionCost
from tokenledger.services import action_cost_service


class TestResolveCost:
    async def test_global_default_applies_without_override(self, db, org):
        resolved = await action_cost_service.resolve_cost(db, org.id, "ai_summary")
        assert resolved.cost == 15
        assert resolved.enabled is True
        assert resolved.admin_only is False
        assert resolved.source == "global"

    async def test_org_override_wins(self, db, org, other_org):
        await seed_cost(db, "ai_summary", 3, org=org, admin_only=True)
        await db.commit()

        resolved = await action_cost_service.resolve_cost(db, org.id, "ai_summary")
        assert resolved.cost == 3
        assert resolved.admin_only is True
        assert resolved.source == "organization"

        # Other organizations still see the global price
        unaffected = await action_cost_service.resolve_cost(db, other_org.id, "ai_summary")
        assert unaffected.cost == 15
        assert unaffected.source == "global"

    async def test_disabled_override_reported(self, db, org):
        await seed_cost(db, "broadcast", 1, org=org, is_enabled=False)
        await db.commit()

        resolved = await action_cost_service.resolve_cost(db, org.id, "broadcast")
        assert resolved.enabled is False

    async def test_unknown_action_raises(self, db, org):
        with pytest.raises(UnknownActionError) as exc_info:
            await action_cost_service.resolve_cost(db, org.id, "teleport")
        assert exc_info.value.code == "bad_action"
        assert exc_info.value.detail["action_type"] == "teleport"

    async def test_resolution_does_not_write(self, db, org):
        before = (await db.execute(select(func.count()).select_from(ActionCost))).scalar()
        for _ in range(3):
            await action_cost_service.resolve_cost(db, org.id, "message_text")
        after = (await db.execute(select(func.count()).select_from(ActionCost))).scalar()
        assert before == after
        assert not db.new and not db.dirty


class TestListEffectiveCosts:
    async def test_merges_overrides_over_defaults(self, db, org):
        await seed_cost(db, "voice_note", 7, org=org)
        await db.commit()

        costs = {c.action_type: c for c in await action_cost_service.list_effective_costs(db, org.id)}
        assert len(costs) == 9
        assert costs["voice_note"].cost == 7
        assert costs["voice_note"].source == "organization"
        assert costs["file_share"].cost == 2
        assert costs["file_share"].source == "global"


class TestOverrides:
    async def test_set_override_creates_then_updates(self, db, org):
        await action_cost_service.set_override(db, org.id, "ai_summary", 10)
        await db.commit()
        await action_cost_service.set_override(db, org.id, "ai_summary", 12, is_enabled=False)
        await db.commit()

        rows = (
            await db.execute(
                select(ActionCost).where(ActionCost.organization_id == org.id, ActionCost.action_type == "ai_summary")
            )
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].token_cost == 12
        assert rows[0].is_enabled is False

    async def test_rejects_unknown_action(self, db, org):
        with pytest.raises(UnknownActionError):
            await action_cost_service.set_override(db, org.id, "teleport", 1)

    async def test_rejects_negative_cost(self, db, org):
        with pytest.raises(ValidationError):
            await action_cost_service.set_override(db, org.id, "ai_summary", -1)

    async def test_delete_restores_global_default(self, db, org):
        await seed_cost(db, "ai_summary", 3, org=org)
        await db.commit()

        assert await action_cost_service.delete_override(db, org.id, "ai_summary") is True
        await db.commit()
        resolved = await action_cost_service.resolve_cost(db, org.id, "ai_summary")
        assert resolved.cost == 15

        assert await action_cost_service.delete_override(db, org.id, "ai_summary") is False
