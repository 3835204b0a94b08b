"""Tests for TimelineFanoutEngine."""

from datetime import datetime, timezone

import pytest

from party_feed.ingestion.schemas import PostDomain, Scope
from party_feed.storage.database import StoreFailure
from party_feed.timeline.fanout import PlanLimitExceeded, TimelineFanoutEngine
from party_feed.timeline.schemas import FilterPreference

CREATED = datetime(2025, 9, 1, tzinfo=timezone.utc)


def _view_row(view_id: int, user_id: str, **filters) -> dict:
    return {
        "id": view_id,
        "user_id": user_id,
        "name": f"view-{view_id}",
        "news_categories": filters.get("news", []),
        "event_categories": filters.get("event", []),
        "sns_categories": filters.get("sns", []),
        "prefectures": filters.get("prefectures", []),
        "created_at": CREATED,
    }


def _post_record(post, post_id: int) -> dict:
    return {
        **post.model_dump(),
        "id": post_id,
        "domain": post.domain.value,
        "platform": post.platform.value,
        "scope": post.scope.value,
        "media_urls": list(post.media_urls),
        "hashtags": sorted(post.hashtags),
        "mentions": sorted(post.mentions),
        "attributes": {},
    }


@pytest.fixture
def engine(mock_database) -> TimelineFanoutEngine:
    return TimelineFanoutEngine(mock_database, default_max_custom_timelines=3, batch_limit=100)


@pytest.fixture
def stored_posts(post_factory):
    return [
        post_factory(id=1),
        post_factory(
            url="https://twitter.com/osaka/status/2",
            scope=Scope.PREFECTURE,
            owner_ref="27",
            prefecture="27",
            id=2,
        ),
        post_factory(
            url="https://new-kokumin.jp/news/policy/3",
            domain=PostDomain.NEWS,
            category="policy",
            id=3,
        ),
    ]


class TestMaterializeView:
    @pytest.mark.asyncio
    async def test_creates_within_cap(self, engine, mock_database):
        mock_database.fetchrow.side_effect = [None, _view_row(11, "u1", prefectures=["13"])]
        mock_database.fetchval.return_value = 0

        view = await engine.materialize_view(FilterPreference(user_id="u1", prefectures={"13"}))

        assert view.id == 11
        assert view.prefectures == frozenset({"13"})

    @pytest.mark.asyncio
    async def test_at_cap_raises(self, mock_database):
        engine = TimelineFanoutEngine(mock_database, default_max_custom_timelines=1)
        mock_database.fetchval.return_value = 1

        with pytest.raises(PlanLimitExceeded) as exc_info:
            await engine.materialize_view(FilterPreference(user_id="u1", prefectures={"13"}))

        assert exc_info.value.limit == 1
        assert exc_info.value.requested == 2
        # Nothing was inserted
        assert mock_database.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_existing_filter_does_not_count(self, mock_database):
        engine = TimelineFanoutEngine(mock_database, default_max_custom_timelines=1)
        mock_database.fetchrow.return_value = _view_row(5, "u1", prefectures=["13"])
        mock_database.fetchval.return_value = 1

        view = await engine.materialize_view(FilterPreference(user_id="u1", prefectures={"13"}))

        assert view.id == 5
        mock_database.fetchval.assert_not_called()

    @pytest.mark.asyncio
    async def test_plan_limit_from_subscription(self, engine, mock_database):
        mock_database.fetch.return_value = [{"user_id": "u1", "max_custom_timelines": 10}]
        assert await engine.plan_limit("u1") == 10

        mock_database.fetch.return_value = []
        assert await engine.plan_limit("u2") == 3

    @pytest.mark.asyncio
    async def test_lost_race_at_cap(self, engine, mock_database):
        mock_database.fetchrow.side_effect = [None, None, None]
        mock_database.fetchval.return_value = 2

        with pytest.raises(PlanLimitExceeded):
            await engine.materialize_view(FilterPreference(user_id="u1"))


class TestFanOut:
    @pytest.mark.asyncio
    async def test_entries_per_domain(self, engine, mock_database, stored_posts):
        mock_database.fetch.side_effect = [
            [_view_row(1, "u1")],  # list_views
            [],  # plan_limits
            [{"post_id": 1, "domain": "sns"}, {"post_id": 2, "domain": "sns"}, {"post_id": 3, "domain": "news"}],
        ]

        result = await engine.fan_out(stored_posts)

        assert result.posts_considered == 3
        assert result.users_considered == 1
        assert result.entries_created == {"sns": 2, "news": 1}
        assert result.total_entries == 3
        assert result.plan_limit_errors == []
        mark_sql, post_ids = mock_database.execute.call_args[0]
        assert "fanned_out_at = NOW()" in mark_sql
        assert post_ids == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_only_matching_posts_are_inserted(self, engine, mock_database, stored_posts):
        mock_database.fetch.side_effect = [
            [_view_row(1, "u1", prefectures=["13"])],
            [],
            [{"post_id": 1, "domain": "sns"}, {"post_id": 3, "domain": "news"}],
        ]

        await engine.fan_out(stored_posts)

        insert_args = mock_database.fetch.call_args_list[2][0]
        # Osaka post is filtered out; nationwide posts pass
        assert insert_args[2] == [1, 3]
        assert insert_args[4] == [1, 1]

    @pytest.mark.asyncio
    async def test_over_cap_user_is_reported(self, mock_database, stored_posts):
        engine = TimelineFanoutEngine(mock_database, default_max_custom_timelines=1)
        mock_database.fetch.side_effect = [
            [
                _view_row(1, "u1", sns=["prefecture"], news=["election"]),
                _view_row(2, "u1", news=["policy"]),
                _view_row(3, "u2"),
            ],
            [],
            [{"post_id": 2, "domain": "sns"}],
            [{"post_id": 1, "domain": "sns"}],
        ]

        result = await engine.fan_out(stored_posts)

        assert len(result.plan_limit_errors) == 1
        error = result.plan_limit_errors[0]
        assert (error.user_id, error.limit, error.requested) == ("u1", 1, 2)
        # u1 still receives entries for the view inside the cap only
        u1_insert = mock_database.fetch.call_args_list[2][0]
        assert u1_insert[2] == [2]
        assert result.users_considered == 2

    @pytest.mark.asyncio
    async def test_zero_cap_user_gets_nothing(self, engine, mock_database, stored_posts):
        mock_database.fetch.side_effect = [
            [_view_row(1, "u1")],
            [{"user_id": "u1", "max_custom_timelines": 0}],
        ]

        result = await engine.fan_out(stored_posts)

        assert result.total_entries == 0
        assert len(result.plan_limit_errors) == 1
        assert mock_database.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_posts_without_id_ignored(self, engine, mock_database, post_factory):
        result = await engine.fan_out([post_factory()])

        assert result.posts_considered == 0
        mock_database.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_loads_pending_posts_when_none_given(self, engine, mock_database, sample_post):
        mock_database.fetch.side_effect = [[_post_record(sample_post, 9)], [], []]

        result = await engine.fan_out()

        assert result.posts_considered == 1
        assert "fanned_out_at IS NULL" in mock_database.fetch.call_args_list[0][0][0]
        assert mock_database.fetch.call_args_list[0][0][1] == 100

    @pytest.mark.asyncio
    async def test_drains_every_pending_page(self, mock_database, post_factory):
        engine = TimelineFanoutEngine(mock_database, default_max_custom_timelines=3, batch_limit=2)
        pending = [
            _post_record(post_factory(url=f"https://twitter.com/party/status/{i}"), i)
            for i in (1, 2, 3)
        ]
        mock_database.fetch.side_effect = [
            pending[:2],  # first page
            [_view_row(1, "u1")],  # list_views
            [],  # plan_limits
            [{"post_id": 1, "domain": "sns"}, {"post_id": 2, "domain": "sns"}],
            pending[2:],  # second page, shorter than the limit
            [{"post_id": 3, "domain": "sns"}],
        ]

        result = await engine.fan_out()

        assert result.posts_considered == 3
        assert result.users_considered == 1
        assert result.entries_created == {"sns": 3}
        page_calls = [c[0] for c in mock_database.fetch.call_args_list if "fanned_out_at IS NULL" in c[0][0]]
        assert [args[1:] for args in page_calls] == [(2, 0), (2, 2)]
        marked = [c[0][1] for c in mock_database.execute.call_args_list]
        assert marked == [[1, 2], [3]]

    @pytest.mark.asyncio
    async def test_full_last_page_triggers_one_more_read(self, mock_database, post_factory):
        engine = TimelineFanoutEngine(mock_database, default_max_custom_timelines=3, batch_limit=1)
        mock_database.fetch.side_effect = [
            [_post_record(post_factory(), 5)],
            [],  # list_views: nobody to fan out to
            [],  # next page is empty
        ]

        result = await engine.fan_out()

        assert result.posts_considered == 1
        assert mock_database.fetch.call_args_list[2][0][1:] == (1, 5)
        assert mock_database.execute.call_args[0][1] == [5]

    @pytest.mark.asyncio
    async def test_invalid_stored_view_does_not_block_other_users(
        self, engine, mock_database, stored_posts
    ):
        mock_database.fetch.side_effect = [
            [
                _view_row(1, "alice"),
                _view_row(2, "bob", event=["no_such_category"]),
            ],
            [],
            [{"post_id": 1, "domain": "sns"}, {"post_id": 2, "domain": "sns"}, {"post_id": 3, "domain": "news"}],
        ]

        result = await engine.fan_out(stored_posts)

        assert result.users_considered == 1
        assert result.total_entries == 3
        insert_args = mock_database.fetch.call_args_list[2][0]
        assert insert_args[1] == ["alice"] * 3

    @pytest.mark.asyncio
    async def test_regular_posting_view_is_used(self, engine, mock_database, post_factory):
        event = post_factory(
            url="https://team.new-kokumin.jp/evinfo/55",
            domain=PostDomain.EVENT,
            category="party_hq_regular_posting",
            id=4,
        )
        mock_database.fetch.side_effect = [
            [_view_row(1, "bob", event=["party_hq_regular_posting"])],
            [],
            [{"post_id": 4, "domain": "event"}],
        ]

        result = await engine.fan_out([event])

        assert result.entries_created == {"event": 1}

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, engine, mock_database, stored_posts):
        mock_database.fetch.side_effect = StoreFailure("down")

        with pytest.raises(StoreFailure):
            await engine.fan_out(stored_posts)
