# tests/unit/test_roster_service.py

import pytest


class TestRosterService:

    @pytest.mark.asyncio
    async def test_find_member_ignores_case(self, ctx):
        from chapter_portal.services.roster_service import RosterService

        member = await RosterService(ctx).find_member("  BOB@example.org ")

        assert member is not None
        assert member.name == "Bob"
        assert member.holds("Rho")

    @pytest.mark.asyncio
    async def test_email_validation_is_cached(self, ctx, records_backend):
        from chapter_portal.services.roster_service import RosterService

        service = RosterService(ctx)
        assert await service.is_valid_email("alice@example.org") is True
        records_backend.sheets["Sigma"].pop(1)
        ctx.records.invalidate("Sigma")

        # Served from the validation cache, not the table
        assert await service.is_valid_email("alice@example.org") is True
        assert await service.is_valid_email("nobody@example.org") is False

    @pytest.mark.asyncio
    async def test_list_members_sorted_by_name(self, ctx):
        from chapter_portal.services.roster_service import RosterService

        names = [m["name"] for m in await RosterService(ctx).list_members()]

        assert names == sorted(names, key=str.lower)
        assert len(names) == 5

    @pytest.mark.asyncio
    async def test_add_member_conflict(self, ctx):
        from chapter_portal.middleware.error_handler import ConflictError
        from chapter_portal.services.roster_service import RosterService

        with pytest.raises(ConflictError):
            await RosterService(ctx).add_member("Alice@Example.org", "Alice Again", "")

    @pytest.mark.asyncio
    async def test_add_then_delete_member(self, ctx, records_backend):
        from chapter_portal.services.roster_service import RosterService

        service = RosterService(ctx)
        await service.add_member("erin@example.org", "Erin", "Tau")
        assert await service.find_member("erin@example.org") is not None

        await service.delete_member("erin@example.org")
        assert await service.find_member("erin@example.org") is None
        assert len(records_backend.sheets["Sigma"]) == 6

    @pytest.mark.asyncio
    async def test_delete_unknown_member(self, ctx):
        from chapter_portal.middleware.error_handler import NotFoundError
        from chapter_portal.services.roster_service import RosterService

        with pytest.raises(NotFoundError):
            await RosterService(ctx).delete_member("ghost@example.org")

    @pytest.mark.asyncio
    async def test_deactivate_alumni(self, ctx, records_backend):
        from chapter_portal.services.roster_service import RosterService

        assert await RosterService(ctx).deactivate_alumni() == 1
        emails = [r[0] for r in records_backend.sheets["Sigma"][1:]]
        assert "dave@example.org" not in emails
        assert len(emails) == 4

    @pytest.mark.asyncio
    async def test_export_csv(self, ctx):
        from chapter_portal.services.roster_service import RosterService

        csv_text = await RosterService(ctx).export_csv()
        lines = csv_text.strip().split("\n")

        assert lines[0] == '"Email","Name","Position"'
        assert lines[1] == '"alice@example.org","Alice","Chi"'

    def test_roster_managers(self):
        from chapter_portal.services.roster_service import Member, can_manage_roster

        assert can_manage_roster("Tau, Sigma")
        assert not can_manage_roster("Associate Rho")
        assert Member("p@x", "P", "Pledge").is_pledge
