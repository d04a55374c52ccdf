# tests/unit/test_buttons_service.py

import pytest

from chapter_portal.constants import BUTTON_HEADERS

LEGACY_ROW = ["btn_legacy1", "Old Link", "All", "[]", "https://example.org", "alice@example.org", "Chi", "2023-01-01"]


@pytest.fixture
def buttons_ctx(ctx, records_backend):
    records_backend._create("Buttons")
    records_backend.sheets["Buttons"] = [list(BUTTON_HEADERS)]
    return ctx


def _button(**overrides):
    data = {
        "button_name": "Study Hours",
        "description": "",
        "icon": "",
        "color": "",
        "access_type": "All",
        "access_list": [],
        "content": "https://example.org/hours",
        "owner_position": "",
        "exclude_pledges": False,
    }
    data.update(overrides)
    return data


class TestButtonParsing:

    def test_legacy_row_is_detected(self):
        from chapter_portal.services.buttons_service import is_legacy_row, parse_button

        assert is_legacy_row(LEGACY_ROW)
        parsed = parse_button(LEGACY_ROW)
        assert parsed["access_type"] == "All"
        assert parsed["content"] == "https://example.org"
        assert parsed["created_by"] == "alice@example.org"
        assert parsed["color"] == "#ffd700"
        assert parsed["exclude_pledges"] is False

    def test_current_row(self):
        from chapter_portal.services.buttons_service import is_legacy_row, parse_button

        cells = ["btn_1", "Dues", "Pay here", "💰", "", "Specific Bros", '["Bob"]',
                 "x", "bob@example.org", "", "TRUE", "2024-01-01"]

        assert not is_legacy_row(cells)
        parsed = parse_button(cells)
        assert parsed["access_list"] == ["Bob"]
        assert parsed["exclude_pledges"] is True
        assert parsed["color"] == "#ffd700"

    def test_bad_access_list_reads_empty(self):
        from chapter_portal.services.buttons_service import parse_button

        cells = ["btn_1", "X", "", "", "", "Specific Bros", "not json", "", "", "", "", ""]

        assert parse_button(cells)["access_list"] == []


class TestButtonsService:

    @pytest.mark.asyncio
    async def test_visibility_rules(self, buttons_ctx, member):
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        alice = member("Alice", "Chi")
        await service.save(_button(button_name="Everyone"), alice)
        await service.save(_button(button_name="Bob only", access_type="Specific Bros", access_list=["bob"]), alice)
        await service.save(_button(button_name="Officers", access_type="Specific Officers", access_list=["Rho"]), alice)
        await service.save(_button(button_name="No pledges", exclude_pledges=True), alice)

        bob = [b["name"] for b in await service.for_display(member("Bob", "Rho"))]
        pat = [b["name"] for b in await service.for_display(member("Pat", "Pledge"))]

        assert bob == ["Everyone", "Bob only", "Officers", "No pledges"]
        assert pat == ["Everyone"]

    @pytest.mark.asyncio
    async def test_long_html_goes_to_blob(self, buttons_ctx, blobs, records_backend, member):
        from chapter_portal.services.buttons_service import ButtonsService

        html = "<div>" + "x" * 2000 + "</div>"
        service = ButtonsService(buttons_ctx)
        button_id = await service.save(_button(content=html), member("Alice"))

        stored = records_backend.sheets["Buttons"][1][7]
        assert stored.startswith("https://storage.googleapis.com/button-htmls/")
        assert blobs.objects[("button-htmls", f"button_{button_id}.html")] == html

        shown = await service.for_display(member("Bob", "Rho"))
        assert shown[0]["content"] == html
        assert shown[0]["is_html"] is True

    @pytest.mark.asyncio
    async def test_short_content_stays_inline(self, buttons_ctx, blobs, records_backend, member):
        from chapter_portal.services.buttons_service import ButtonsService

        await ButtonsService(buttons_ctx).save(_button(content="<b>hi</b>"), member("Alice"))

        assert records_backend.sheets["Buttons"][1][7] == "<b>hi</b>"
        assert blobs.objects == {}

    @pytest.mark.asyncio
    async def test_update_requires_manager(self, buttons_ctx, member):
        from chapter_portal.middleware.error_handler import ForbiddenError, NotFoundError
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        button_id = await service.save(_button(owner_position="Tau"), member("Alice"))

        with pytest.raises(ForbiddenError):
            await service.update(_button(button_id=button_id, button_name="Hijack"), member("Bob", "Rho"))
        await service.update(_button(button_id=button_id, button_name="Renamed"), member("Tina", "Tau"))
        with pytest.raises(NotFoundError):
            await service.update(_button(button_id="btn_missing"), member("Alice"))

        assert (await service.find(button_id))["button_name"] == "Renamed"

    @pytest.mark.asyncio
    async def test_delete_drops_blob(self, buttons_ctx, blobs, records_backend, member):
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        button_id = await service.save(_button(content="<p>" + "y" * 1500 + "</p>"), member("Alice"))

        await service.delete(button_id, member("Alice"))

        assert blobs.deleted == [("button-htmls", f"button_{button_id}.html")]
        assert len(records_backend.sheets["Buttons"]) == 1

    @pytest.mark.asyncio
    async def test_bulk_personalises_names(self, buttons_ctx, member):
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        count = await service.save_bulk({
            "button_name_template": "Grades for {{name}}",
            "access_type": "Specific Bros",
            "items": [{"name": "Bob", "content": "B+"}, {"name": "Carol", "content": "A"}],
        }, member("Alice"))

        assert count == 2
        shown = await service.for_display(member("Carol", "Beta"))
        assert [(b["name"], b["content"]) for b in shown] == [("Grades for Carol", "A")]

    @pytest.mark.asyncio
    async def test_saved_order_is_applied(self, buttons_ctx, member):
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        first = await service.save(_button(button_name="First"), member("Alice"))
        second = await service.save(_button(button_name="Second"), member("Alice"))

        service.set_order("Bob@example.org", [second, first])

        shown = await service.for_display(member("Bob", "Rho"))
        assert [b["id"] for b in shown] == [second, first]


class TestButtonContentLifecycle:

    @pytest.mark.asyncio
    async def test_failed_update_keeps_the_old_blob(self, buttons_ctx, blobs, records_backend, member):
        from chapter_portal.middleware.error_handler import BackingServiceError
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        html = "<p>" + "y" * 1500 + "</p>"
        button_id = await service.save(_button(content=html), member("Alice"))
        records_backend.fail_on.add("update_values")

        with pytest.raises(BackingServiceError):
            await service.update(_button(button_id=button_id, content="short"), member("Alice"))

        assert blobs.deleted == []
        assert blobs.objects[("button-htmls", f"button_{button_id}.html")] == html

    @pytest.mark.asyncio
    async def test_update_to_inline_drops_the_blob(self, buttons_ctx, blobs, records_backend, member):
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        button_id = await service.save(_button(content="<p>" + "y" * 1500 + "</p>"), member("Alice"))

        await service.update(_button(button_id=button_id, content="short"), member("Alice"))

        assert blobs.deleted == [("button-htmls", f"button_{button_id}.html")]
        assert records_backend.sheets["Buttons"][1][7] == "short"

    @pytest.mark.asyncio
    async def test_reupload_keeps_the_object(self, buttons_ctx, blobs, member):
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        button_id = await service.save(_button(content="<p>" + "y" * 1500 + "</p>"), member("Alice"))
        html = "<div>" + "z" * 1500 + "</div>"

        await service.update(_button(button_id=button_id, content=html), member("Alice"))

        assert blobs.deleted == []
        assert blobs.objects[("button-htmls", f"button_{button_id}.html")] == html

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_the_blob(self, buttons_ctx, blobs, records_backend, member):
        from chapter_portal.middleware.error_handler import BackingServiceError
        from chapter_portal.services.buttons_service import ButtonsService

        service = ButtonsService(buttons_ctx)
        button_id = await service.save(_button(content="<p>" + "y" * 1500 + "</p>"), member("Alice"))
        records_backend.fail_on.add("delete_rows")

        with pytest.raises(BackingServiceError):
            await service.delete(button_id, member("Alice"))
        assert blobs.deleted == []

    @pytest.mark.asyncio
    async def test_listing_read_during_a_write_is_not_cached(self, buttons_ctx, records_backend, member):
        import asyncio

        from chapter_portal.services.buttons_service import BUTTONS_CACHE_KEY, ButtonsService

        service = ButtonsService(buttons_ctx)
        gate = records_backend.hold("get_values")
        slow_list = asyncio.ensure_future(service.list_buttons())
        await gate.entered.wait()

        await service.save(_button(button_name="Fresh"), member("Alice"))
        gate.released.set()

        assert await slow_list == []
        assert not buttons_ctx.cache.contains(BUTTONS_CACHE_KEY)
        assert [b["button_name"] for b in await service.list_buttons()] == ["Fresh"]

    def test_listing_never_outlives_table_reads(self, buttons_ctx):
        from chapter_portal.services.buttons_service import ButtonsService

        assert ButtonsService(buttons_ctx).cache_ttl == 60
